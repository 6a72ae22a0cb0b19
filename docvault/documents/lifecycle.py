"""
docvault Document Lifecycle — Status values and the guarded transitions.

    upload (category requires approval)      → pending
    upload (no approval required)            → approved
    pending  → approved   (admin / manager; sets approver + timestamp)
    pending  → rejected   (admin / manager; requires a reason)

Draft is only reachable through explicit creation flows. No transition
leaves approved, rejected or archived; archival is a manual status set.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from docvault.engine.errors import ConflictError


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED}),
}

DECISIONS = frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED})


def initial_status(requires_approval: bool) -> DocumentStatus:
    return DocumentStatus.PENDING if requires_approval else DocumentStatus.APPROVED


def can_transition(current: str, target: str) -> bool:
    try:
        return DocumentStatus(target) in TRANSITIONS.get(DocumentStatus(current), frozenset())
    except ValueError:
        return False


def check_transition(current: str, target: str) -> DocumentStatus:
    """
    Validate ``current → target``.

    Raises:
        ConflictError naming the current status when the move is not allowed.
    """
    if not can_transition(current, target):
        raise ConflictError(
            f"Document is not pending approval (current status: {current})",
            resource="document",
            current_status=current,
            requested_status=target,
        )
    return DocumentStatus(target)
