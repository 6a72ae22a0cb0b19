"""
Best-effort metadata extraction for stored versions.

Plain-text payloads get a word and line count, computed over the blob's
chunks so nothing is loaded whole. Every other type yields an empty map.
Extraction never fails an upload.
"""

from __future__ import annotations

import codecs
import logging
import re
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger("docvault.documents.metadata")

TEXT_EXTENSIONS = frozenset({"txt", "md", "csv", "log", "json", "xml", "yaml", "yml"})

_WORD = re.compile(r"\S+")


def is_text(mime_type: Optional[str], extension: str) -> bool:
    if mime_type and mime_type.startswith("text/"):
        return True
    return extension.lower() in TEXT_EXTENSIONS


def count_words(chunks: Iterable[bytes]) -> Dict[str, int]:
    """Word and line counts over a UTF-8 byte stream split at arbitrary points."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    words = 0
    lines = 0
    in_word = False

    def feed(text: str) -> None:
        nonlocal words, lines, in_word
        if not text:
            return
        found = len(_WORD.findall(text))
        # A word split across two chunks was counted on both sides
        if in_word and not text[0].isspace():
            found -= 1
        words += found
        lines += text.count("\n")
        in_word = not text[-1].isspace()

    for chunk in chunks:
        feed(decoder.decode(chunk))
    feed(decoder.decode(b"", final=True))
    return {"word_count": max(words, 0), "line_count": lines}


def extract_metadata(
    chunks: Iterable[bytes],
    mime_type: Optional[str],
    extension: str,
) -> Dict[str, Any]:
    if not is_text(mime_type, extension):
        return {}
    try:
        return count_words(chunks)
    except Exception as e:
        logger.warning(f"Metadata extraction failed ({mime_type}, .{extension}): {e}")
        return {}
