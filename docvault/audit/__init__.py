"""
docvault Audit Trail.

Only the vocabulary is re-exported here; the writer lives in
docvault.audit.service because it depends on the models.
"""

from docvault.audit.actions import AuditAction, Outcome, ResourceKind  # noqa: F401

__all__ = ["AuditAction", "Outcome", "ResourceKind"]
