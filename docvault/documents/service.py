"""
docvault Document Service — Upload pipeline, versioning, approval, sharing.

Handles:
- Upload into a category: blob streamed to storage with SHA-256, then
  checked against the category's extension and size constraints; any
  failure removes the blob before the error propagates
- Document Record + version 1 + category document count in one transaction
- New versions: next number = max + 1 under the (document, version)
  unique key, retried with a fresh number when a concurrent writer wins
- Listing with filters, sorting and pagination through the gate's
  listing constraint
- Soft delete, approval decisions, rollback, sharing

Ownership checks always run after the document resolves, so a missing or
soft-deleted id is reported as not found before any access verdict.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docvault.categories.service import CategoryService
from docvault.db.base import utcnow
from docvault.db.models import Category, Document, DocumentTag, DocumentVersion, User
from docvault.db.query import paginate
from docvault.documents.lifecycle import DocumentStatus, check_transition, initial_status
from docvault.documents.metadata import extract_metadata
from docvault.engine.context import ExecutionContext
from docvault.engine.errors import (
    ConflictError,
    ConstraintError,
    NotFoundError,
    ValidationError,
)
from docvault.engine.gate import AuthorizationGate, Capability
from docvault.storage.local import BlobNotFoundError, LocalBlobStore, StoredBlob

logger = logging.getLogger("docvault.documents.service")

VERSION_ALLOCATION_ATTEMPTS = 3

SORT_COLUMNS = {
    "created_at": Document.created_at,
    "title": Document.title,
    "file_size": Document.file_size,
    "download_count": Document.download_count,
}


class IncomingFile:
    """A binary payload as it arrives: a readable stream plus declared facts."""

    def __init__(
        self,
        stream: BinaryIO,
        original_name: str,
        mime_type: Optional[str] = None,
        size: Optional[int] = None,
    ):
        self.stream = stream
        self.original_name = original_name
        self.mime_type = mime_type
        self.size = size

    def __repr__(self) -> str:
        return f"<IncomingFile name='{self.original_name}' mime={self.mime_type}>"

    @property
    def extension(self) -> str:
        return os.path.splitext(self.original_name)[1].lower().lstrip(".")

    def detect_mime_type(self) -> str:
        if self.mime_type:
            return self.mime_type
        mime, _ = mimetypes.guess_type(self.original_name)
        return mime or "application/octet-stream"


@dataclass
class Download:
    """A blob ready to stream back to the caller."""

    file_name: str
    mime_type: Optional[str]
    size: int
    checksum: str
    chunks: Iterator[bytes]
    version_number: int


class DocumentService:
    """
    Document Record and Version Store operations.

    Usage:
        service = DocumentService(store, gate, categories)
        doc = service.upload(session, ctx, IncomingFile(fh, "q3.pdf"),
                             title="Q3 report", category_id=7)
    """

    def __init__(
        self,
        store: LocalBlobStore,
        gate: AuthorizationGate,
        categories: CategoryService,
    ):
        self._store = store
        self._gate = gate
        self._categories = categories

    @property
    def store(self) -> LocalBlobStore:
        return self._store

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def get_live(self, session: Session, document_id: int) -> Document:
        """Resolve a non-deleted document or raise NotFoundError."""
        document = session.get(Document, document_id)
        if document is None or document.is_deleted:
            raise NotFoundError("Document not found", resource="document", resource_id=document_id)
        return document

    def _authorized(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        capability: Capability,
        operation_name: str,
    ) -> Document:
        document = self.get_live(session, document_id)
        self._gate.require_document(ctx, document, capability, operation_name)
        return document

    def current_version(self, session: Session, document: Document) -> Optional[DocumentVersion]:
        """The active version with the highest number."""
        return (
            session.query(DocumentVersion)
            .filter(
                DocumentVersion.document_id == document.id,
                DocumentVersion.is_active.is_(True),
            )
            .order_by(DocumentVersion.version_number.desc())
            .first()
        )

    def get_version(self, session: Session, document: Document, version_number: int) -> DocumentVersion:
        version = (
            session.query(DocumentVersion)
            .filter(
                DocumentVersion.document_id == document.id,
                DocumentVersion.version_number == version_number,
            )
            .first()
        )
        if version is None:
            raise NotFoundError(
                f"Version {version_number} not found",
                resource="version",
                resource_id=document.id,
            )
        return version

    # -------------------------------------------------------------------
    # Upload pipeline
    # -------------------------------------------------------------------

    def _check_constraints(self, category: Category, incoming: IncomingFile, blob: StoredBlob) -> None:
        extension = incoming.extension
        if not category.accepts_extension(extension):
            allowed = ", ".join(category.allowed_file_types or [])
            raise ConstraintError(
                f"File type .{extension} not allowed in this category. Allowed types: {allowed}",
                constraint="file_type",
                extension=extension,
                allowed=allowed,
            )

        size = blob.size
        if incoming.size is not None:
            size = max(size, incoming.size)
        if size > category.max_file_size:
            limit_mb = round(category.max_file_size / 1024 / 1024)
            raise ConstraintError(
                f"File size exceeds category limit of {limit_mb}MB "
                f"({size} > {category.max_file_size} bytes)",
                constraint="file_size",
                limit=category.max_file_size,
                size=size,
            )

    def _store_checked(
        self,
        session: Session,
        incoming: IncomingFile,
        category_id: int,
    ) -> tuple:
        """
        Write the blob, then resolve and check the category.

        Returns (category, blob). On any failure the blob is removed before
        the error propagates.
        """
        blob = self._store.put(incoming.stream, incoming.original_name)
        try:
            category = self._categories.get_active(session, category_id)
            self._check_constraints(category, incoming, blob)
        except Exception:
            self._store.delete(blob.path)
            raise
        return category, blob

    def _extract(self, blob: StoredBlob, mime_type: Optional[str], extension: str) -> Dict[str, Any]:
        try:
            return extract_metadata(self._store.open(blob.path), mime_type, extension)
        except BlobNotFoundError:
            return {}

    def upload(
        self,
        session: Session,
        ctx: ExecutionContext,
        incoming: IncomingFile,
        title: str,
        category_id: int,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        department: Optional[str] = None,
        expiry_date: Optional[datetime] = None,
    ) -> Document:
        """
        Initial upload.

        Order: store blob (checksum + size) → resolve category → extension
        check → size check → Document Record → version 1 → category count.
        """
        category, blob = self._store_checked(session, incoming, category_id)
        try:
            mime_type = incoming.detect_mime_type()
            status = initial_status(category.requires_approval)

            document = Document(
                title=title.strip(),
                description=description,
                original_name=incoming.original_name,
                file_name=blob.file_name,
                file_path=blob.path,
                file_size=blob.size,
                mime_type=mime_type,
                file_extension=incoming.extension,
                checksum=blob.checksum,
                category_id=category.id,
                uploaded_by=ctx.user_id,
                department=department or ctx.department,
                version=1,
                status=status.value,
                expiry_date=expiry_date,
                is_public=False,
                created_by=ctx.user_id,
            )
            document.set_tags(tags or [])
            session.add(document)
            session.flush()

            session.add(DocumentVersion(
                document_id=document.id,
                version_number=1,
                original_name=incoming.original_name,
                file_name=blob.file_name,
                file_path=blob.path,
                file_size=blob.size,
                mime_type=mime_type,
                file_extension=incoming.extension,
                checksum=blob.checksum,
                uploaded_by=ctx.user_id,
                change_description="Initial upload",
                extracted_metadata=self._extract(blob, mime_type, incoming.extension),
            ))
            self._categories.adjust_document_count(category, +1)
            session.flush()
        except Exception:
            self._store.delete(blob.path)
            raise

        logger.info(
            f"Document uploaded: id={document.id} category={category.id} "
            f"status={document.status} size={blob.size}"
        )
        return document

    def _next_version_number(self, session: Session, document_id: int) -> int:
        # Inactive versions count, so numbering never reuses a rolled-back number
        current = (
            session.query(func.max(DocumentVersion.version_number))
            .filter(DocumentVersion.document_id == document_id)
            .scalar()
        )
        return (current or 0) + 1

    def upload_version(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        incoming: IncomingFile,
        change_description: Optional[str] = None,
    ) -> DocumentVersion:
        """
        Store a new version and repoint the document at it.

        Prior versions stay intact. Status is left unchanged.
        """
        document = self._authorized(session, ctx, document_id, Capability.WRITE, "documents.upload_version")
        _, blob = self._store_checked(session, incoming, document.category_id)
        mime_type = incoming.detect_mime_type()

        try:
            metadata = self._extract(blob, mime_type, incoming.extension)
            document.updated_at = utcnow()
            session.flush()

            version: Optional[DocumentVersion] = None
            for attempt in range(1, VERSION_ALLOCATION_ATTEMPTS + 1):
                number = self._next_version_number(session, document.id)
                candidate = DocumentVersion(
                    document_id=document.id,
                    version_number=number,
                    original_name=incoming.original_name,
                    file_name=blob.file_name,
                    file_path=blob.path,
                    file_size=blob.size,
                    mime_type=mime_type,
                    file_extension=incoming.extension,
                    checksum=blob.checksum,
                    uploaded_by=ctx.user_id,
                    change_description=change_description or f"Version {number}",
                    extracted_metadata=metadata,
                )
                try:
                    with session.begin_nested():
                        session.add(candidate)
                        session.flush()
                except IntegrityError:
                    logger.warning(
                        f"Version {number} of document {document.id} taken by a concurrent "
                        f"writer (attempt {attempt}/{VERSION_ALLOCATION_ATTEMPTS})"
                    )
                    continue
                version = candidate
                break

            if version is None:
                raise ConflictError(
                    "Could not allocate a version number, please retry",
                    resource="document",
                    resource_id=document.id,
                )

            document.version = version.version_number
            document.original_name = incoming.original_name
            document.file_name = blob.file_name
            document.file_path = blob.path
            document.file_size = blob.size
            document.mime_type = mime_type
            document.file_extension = incoming.extension
            document.checksum = blob.checksum
            session.flush()
        except Exception:
            self._store.delete(blob.path)
            raise

        logger.info(f"Document {document.id} now at version {version.version_number}")
        return version

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def list_documents(
        self,
        session: Session,
        ctx: ExecutionContext,
        page: int = 1,
        limit: int = 10,
        category_id: Optional[int] = None,
        status: Optional[str] = None,
        department: Optional[str] = None,
        uploaded_by: Optional[int] = None,
        tags: Optional[List[str]] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        query = session.query(Document).filter(Document.is_deleted.is_(False))

        if category_id is not None:
            query = query.filter(Document.category_id == category_id)
        if status:
            query = query.filter(Document.status == status)
        if department:
            query = query.filter(Document.department.ilike(f"%{department}%"))
        if uploaded_by is not None:
            query = query.filter(Document.uploaded_by == uploaded_by)
        if tags:
            wanted = [t.strip().lower() for t in tags if t and t.strip()]
            query = query.filter(
                exists().where(
                    and_(DocumentTag.document_id == Document.id, DocumentTag.tag.in_(wanted))
                )
            )
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(Document.title.ilike(pattern), Document.description.ilike(pattern))
            )

        query = self._gate.filter_documents(query, ctx, explicit_status=bool(status))

        column = SORT_COLUMNS.get(sort_by, Document.created_at)
        if sort_order == "asc":
            query = query.order_by(column.asc(), Document.id.asc())
        else:
            query = query.order_by(column.desc(), Document.id.desc())

        result = paginate(query, page, limit)
        return {
            "documents": [d.to_dict() for d in result.items],
            "pagination": result.pagination(),
        }

    def version_history(self, session: Session, document: Document, active_only: bool = True) -> List[Dict[str, Any]]:
        query = session.query(DocumentVersion).filter(DocumentVersion.document_id == document.id)
        if active_only:
            query = query.filter(DocumentVersion.is_active.is_(True))
        return [
            v.to_dict()
            for v in query.order_by(DocumentVersion.version_number.desc()).all()
        ]

    def get(self, session: Session, ctx: ExecutionContext, document_id: int) -> Dict[str, Any]:
        document = self._authorized(session, ctx, document_id, Capability.READ, "documents.get")
        document.view_count = (document.view_count or 0) + 1
        session.flush()
        return {
            "document": document.to_dict(),
            "versions": self.version_history(session, document),
        }

    def versions(self, session: Session, ctx: ExecutionContext, document_id: int) -> List[Dict[str, Any]]:
        document = self._authorized(session, ctx, document_id, Capability.READ, "documents.versions")
        return self.version_history(session, document, active_only=False)

    def _open(self, path: str, document_id: int) -> Iterator[bytes]:
        try:
            return self._store.open(path)
        except BlobNotFoundError:
            raise NotFoundError(
                "File not found on server",
                resource="document",
                resource_id=document_id,
            )

    def download(self, session: Session, ctx: ExecutionContext, document_id: int) -> Download:
        """Stream the current version. Counters move only once the blob opens."""
        document = self._authorized(session, ctx, document_id, Capability.READ, "documents.download")
        version = self.current_version(session, document)
        chunks = self._open(document.file_path, document.id)

        document.download_count = (document.download_count or 0) + 1
        if version is not None:
            version.download_count = (version.download_count or 0) + 1
        session.flush()

        return Download(
            file_name=document.original_name,
            mime_type=document.mime_type,
            size=document.file_size,
            checksum=document.checksum,
            chunks=chunks,
            version_number=document.version,
        )

    def download_version(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        version_number: int,
    ) -> Download:
        document = self._authorized(session, ctx, document_id, Capability.READ, "documents.download_version")
        version = self.get_version(session, document, version_number)
        chunks = self._open(version.file_path, document.id)

        version.download_count = (version.download_count or 0) + 1
        session.flush()

        return Download(
            file_name=version.original_name,
            mime_type=version.mime_type,
            size=version.file_size,
            checksum=version.checksum,
            chunks=chunks,
            version_number=version.version_number,
        )

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def update(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        changes: Dict[str, Any],
    ) -> Document:
        """Metadata edit: title, description, tags, expiry_date, is_public."""
        document = self._authorized(session, ctx, document_id, Capability.WRITE, "documents.update")

        if changes.get("title") is not None:
            document.title = changes["title"].strip()
        if "description" in changes:
            document.description = changes["description"]
        if changes.get("tags") is not None:
            document.set_tags(changes["tags"])
        if changes.get("expiry_date") is not None:
            document.expiry_date = changes["expiry_date"]
        if changes.get("is_public") is not None:
            document.is_public = changes["is_public"]

        session.flush()
        return document

    def delete(self, session: Session, ctx: ExecutionContext, document_id: int) -> Document:
        """
        Soft delete. A second delete of the same id raises NotFoundError,
        leaving the first deletion's fields untouched.
        """
        document = self._authorized(session, ctx, document_id, Capability.DELETE, "documents.delete")
        document.is_deleted = True
        document.deleted_at = utcnow()
        document.deleted_by = ctx.user_id

        category = session.get(Category, document.category_id)
        if category is not None:
            self._categories.adjust_document_count(category, -1)

        session.flush()
        logger.info(f"Document soft-deleted: id={document.id} by user {ctx.user_id}")
        return document

    def decide(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        decision: str,
        reason: Optional[str] = None,
    ) -> Document:
        """Approval decision: pending → approved | rejected."""
        document = self.get_live(session, document_id)
        target = check_transition(document.status, decision)

        if target == DocumentStatus.REJECTED and not (reason and reason.strip()):
            raise ValidationError(
                "A rejection reason is required",
                field_errors=[("rejection_reason", "is required when rejecting")],
            )

        document.status = target.value
        document.approved_by = ctx.user_id
        document.approved_at = utcnow()
        if target == DocumentStatus.REJECTED:
            document.rejection_reason = reason.strip()

        session.flush()
        logger.info(f"Document {document.id} {target.value} by user {ctx.user_id}")
        return document

    def rollback(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        version_number: int,
    ) -> Document:
        """
        Make ``version_number`` current: every version above it is
        deactivated and the document's file pointers move back to it.
        """
        document = self._authorized(session, ctx, document_id, Capability.WRITE, "documents.rollback")
        target = self.get_version(session, document, version_number)
        if not target.is_active:
            raise ConflictError(
                f"Version {version_number} is not active",
                resource="document",
                resource_id=document.id,
            )
        current = self.current_version(session, document)
        if current is not None and current.version_number == target.version_number:
            raise ConflictError(
                f"Version {version_number} is already current",
                resource="document",
                resource_id=document.id,
            )

        newer = (
            session.query(DocumentVersion)
            .filter(
                DocumentVersion.document_id == document.id,
                DocumentVersion.version_number > target.version_number,
                DocumentVersion.is_active.is_(True),
            )
            .all()
        )
        for version in newer:
            version.is_active = False

        document.version = target.version_number
        document.original_name = target.original_name
        document.file_name = target.file_name
        document.file_path = target.file_path
        document.file_size = target.file_size
        document.mime_type = target.mime_type
        document.file_extension = target.file_extension
        document.checksum = target.checksum
        session.flush()
        logger.info(
            f"Document {document.id} rolled back to version {target.version_number} "
            f"({len(newer)} version(s) deactivated)"
        )
        return document

    def _check_users(self, session: Session, user_ids: List[int]) -> None:
        found = {row.id for row in session.query(User.id).filter(User.id.in_(user_ids))}
        missing = sorted(set(user_ids) - found)
        if missing:
            raise ValidationError(
                "Unknown users",
                field_errors=[("user_ids", f"unknown user ids: {missing}")],
            )

    def share(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        user_ids: List[int],
        capability: str = "read",
    ) -> List[int]:
        """Grant ``capability``. Returns the ids newly added."""
        document = self.get_live(session, document_id)
        self._gate.require_document_owner(ctx, document, "documents.share")
        self._check_users(session, user_ids)

        added = document.grant(Capability(capability).value, user_ids)
        document.share_count = (document.share_count or 0) + 1
        session.flush()
        return added

    def revoke(
        self,
        session: Session,
        ctx: ExecutionContext,
        document_id: int,
        user_ids: List[int],
        capability: str = "read",
    ) -> List[int]:
        """Remove ``capability``. Returns the ids removed."""
        document = self.get_live(session, document_id)
        self._gate.require_document_owner(ctx, document, "documents.revoke")
        removed = document.revoke(Capability(capability).value, user_ids)
        session.flush()
        return removed
