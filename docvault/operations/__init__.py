"""
docvault Operations — every gated operation, registered on import.
"""

from docvault.operations import audit, auth, categories, documents, users  # noqa: F401

__all__ = ["audit", "auth", "categories", "documents", "users"]
