"""Unit tests for docvault.documents.metadata and docvault.documents.lifecycle."""

import pytest

from docvault.documents.lifecycle import (
    DocumentStatus,
    can_transition,
    check_transition,
    initial_status,
)
from docvault.documents.metadata import count_words, extract_metadata, is_text
from docvault.engine.errors import ConflictError


class TestWordCount:
    def test_single_chunk(self):
        assert count_words([b"one two three\nfour\n"]) == {"word_count": 4, "line_count": 2}

    def test_word_split_across_chunks(self):
        assert count_words([b"hello wo", b"rld foo\n"]) == {"word_count": 3, "line_count": 1}

    def test_chunk_boundary_on_whitespace(self):
        assert count_words([b"alpha ", b"beta"]) == {"word_count": 2, "line_count": 0}

    def test_multibyte_character_split(self):
        data = "héllo wörld".encode("utf-8")
        chunks = [data[:2], data[2:8], data[8:]]
        assert count_words(chunks)["word_count"] == 2

    def test_empty(self):
        assert count_words([]) == {"word_count": 0, "line_count": 0}


class TestExtractMetadata:
    def test_text_by_mime(self):
        assert is_text("text/csv", "dat")

    def test_text_by_extension(self):
        assert is_text("application/octet-stream", "MD")

    def test_binary_types_are_empty(self):
        assert extract_metadata([b"%PDF-1.7"], "application/pdf", "pdf") == {}

    def test_text_types_are_counted(self):
        assert extract_metadata([b"a b c"], "text/plain", "txt")["word_count"] == 3

    def test_extraction_failure_is_absorbed(self):
        def exploding():
            yield b"start "
            raise OSError("read failed")

        assert extract_metadata(exploding(), "text/plain", "txt") == {}


class TestLifecycle:
    def test_initial_status(self):
        assert initial_status(True) == DocumentStatus.PENDING
        assert initial_status(False) == DocumentStatus.APPROVED

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            ("pending", "approved", True),
            ("pending", "rejected", True),
            ("approved", "rejected", False),
            ("approved", "approved", False),
            ("rejected", "approved", False),
            ("draft", "approved", False),
            ("archived", "pending", False),
            ("pending", "bogus", False),
        ],
    )
    def test_transition_table(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_check_transition_names_current_status(self):
        with pytest.raises(ConflictError) as exc:
            check_transition("approved", "rejected")
        assert exc.value.current_status == "approved"
        assert "current status: approved" in exc.value.message

    def test_check_transition_returns_target(self):
        assert check_transition("pending", "rejected") == DocumentStatus.REJECTED
