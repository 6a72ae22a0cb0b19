"""
docvault Documents — Upload pipeline, versions, lifecycle.

Physical storage: {storage.root}/{YYYY}/{MM}/{DD}/{random}-{name}
"""

from docvault.documents.lifecycle import DocumentStatus  # noqa: F401
from docvault.documents.service import Download, DocumentService, IncomingFile  # noqa: F401

__all__ = ["DocumentStatus", "Download", "DocumentService", "IncomingFile"]
