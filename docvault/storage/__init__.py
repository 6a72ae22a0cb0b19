"""docvault blob storage."""

from docvault.storage.local import BlobNotFoundError, LocalBlobStore, StoredBlob  # noqa: F401

__all__ = ["BlobNotFoundError", "LocalBlobStore", "StoredBlob"]
