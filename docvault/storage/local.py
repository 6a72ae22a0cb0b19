"""
docvault Local Blob Store — Filesystem storage for document versions.

Blobs are addressed by a relative path under the store root:
    {root}/{YYYY}/{MM}/{DD}/{random}-{safe_name}

Writes are streamed in fixed-size chunks while the SHA-256 digest and the
byte count are computed, so no payload is ever held in memory whole.
A write that fails part way removes the partial file before raising.
"""

from __future__ import annotations

import hashlib
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from docvault.engine.errors import InfrastructureError, NotFoundError

logger = logging.getLogger("docvault.storage.local")

DEFAULT_CHUNK_SIZE = 64 * 1024


class BlobNotFoundError(NotFoundError):
    """The path does not resolve to a stored blob."""


@dataclass(frozen=True)
class StoredBlob:
    path: str
    size: int
    checksum: str

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


def safe_filename(filename: str) -> str:
    """
    Sanitize a filename for safe filesystem storage.

    Removes path separators, null bytes, and leading dots.
    Preserves extension.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
    name = name.lstrip(".").strip()
    if not name:
        name = "unnamed_document"
    if len(name) > 200:
        base, ext = os.path.splitext(name)
        name = base[:200 - len(ext)] + ext
    return name


class LocalBlobStore:
    """Blob store rooted at a local directory."""

    def __init__(self, root: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._root = Path(root)
        self._chunk_size = chunk_size
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _full_path(self, path: str) -> Path:
        full = (self._root / path.lstrip("/")).resolve()
        if self._root.resolve() not in full.parents:
            raise BlobNotFoundError(f"Blob not found: {path}", resource="blob")
        return full

    def _new_relative_path(self, original_name: str) -> str:
        now = datetime.now(timezone.utc)
        token = secrets.token_hex(8)
        return f"{now:%Y/%m/%d}/{token}-{safe_filename(original_name)}"

    def put(self, stream: BinaryIO, original_name: str) -> StoredBlob:
        """
        Stream ``stream`` into a new blob.

        Returns:
            StoredBlob with the relative path, byte count and SHA-256 hex digest.

        Raises:
            InfrastructureError if the write fails; nothing is left on disk.
        """
        relative = self._new_relative_path(original_name)
        full = self._root / relative
        digest = hashlib.sha256()
        size = 0

        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            with open(full, "wb") as f:
                while True:
                    chunk = stream.read(self._chunk_size)
                    if not chunk:
                        break
                    f.write(chunk)
                    digest.update(chunk)
                    size += len(chunk)
        except Exception as e:
            self._remove_quietly(full)
            logger.error(f"Blob write failed for {relative}: {e}")
            raise InfrastructureError(detail=f"blob write failed: {e}", resource="blob") from e

        checksum = digest.hexdigest()
        logger.info(f"Stored blob: {relative} ({size} bytes, sha256={checksum[:12]})")
        return StoredBlob(path=relative, size=size, checksum=checksum)

    def open(self, path: str, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        """
        Yield the blob's bytes in chunks.

        Existence is checked before the first chunk so a missing blob
        surfaces as BlobNotFoundError at call time, not mid-stream.
        """
        full = self._full_path(path)
        if not full.is_file():
            raise BlobNotFoundError(f"Blob not found: {path}", resource="blob")
        return self._iter_file(full, chunk_size or self._chunk_size)

    @staticmethod
    def _iter_file(full: Path, chunk_size: int) -> Iterator[bytes]:
        with open(full, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def delete(self, path: str) -> bool:
        """
        Remove a blob. A missing blob counts as success.

        Returns:
            True if a file was removed, False if it was already gone.
        """
        full = self._full_path(path)
        try:
            full.unlink()
            logger.info(f"Deleted blob: {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise InfrastructureError(detail=f"blob delete failed: {e}", resource="blob") from e

    def exists(self, path: str) -> bool:
        try:
            return self._full_path(path).is_file()
        except BlobNotFoundError:
            return False

    def checksum(self, path: str) -> str:
        digest = hashlib.sha256()
        for chunk in self.open(path):
            digest.update(chunk)
        return digest.hexdigest()

    @staticmethod
    def _remove_quietly(full: Path) -> None:
        try:
            full.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove partial blob {full}: {e}")

    def __repr__(self) -> str:
        return f"<LocalBlobStore root='{self._root}'>"
