"""
Document Record and Version Store operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from docvault.audit.actions import AuditAction, ResourceKind
from docvault.documents.service import IncomingFile
from docvault.engine.executor import OperationCall
from docvault.engine.registry import operation

DocumentStatusValue = Literal["draft", "pending", "approved", "rejected", "archived"]
CapabilityValue = Literal["read", "write", "delete"]


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------

class UploadInput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    file: IncomingFile
    title: str = Field(min_length=2, max_length=200)
    category_id: int = Field(ge=1)
    description: Optional[str] = Field(default=None, max_length=1000)
    tags: List[str] = Field(default_factory=list)
    department: Optional[str] = Field(default=None, max_length=100)
    expiry_date: Optional[datetime] = None


class VersionUploadInput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    file: IncomingFile
    change_description: Optional[str] = Field(default=None, max_length=500)


class DocumentListInput(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    category_id: Optional[int] = Field(default=None, ge=1)
    status: Optional[DocumentStatusValue] = None
    search: Optional[str] = Field(default=None, max_length=200)
    tags: Optional[List[str]] = None
    department: Optional[str] = Field(default=None, max_length=100)
    uploaded_by: Optional[int] = Field(default=None, ge=1)
    sort_by: Literal["created_at", "title", "file_size", "download_count"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class DocumentUpdateInput(BaseModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[List[str]] = None
    expiry_date: Optional[datetime] = None
    is_public: Optional[bool] = None


class ApprovalInput(BaseModel):
    status: Literal["approved", "rejected"]
    rejection_reason: Optional[str] = Field(default=None, max_length=500)


class VersionInput(BaseModel):
    version: int = Field(ge=1)


class ShareInput(BaseModel):
    user_ids: List[int] = Field(min_length=1)
    capability: CapabilityValue = "read"


def _download_body(download):
    return {
        "file_name": download.file_name,
        "mime_type": download.mime_type,
        "size": download.size,
        "checksum": download.checksum,
        "version": download.version_number,
        "stream": download.chunks,
    }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@operation(
    "documents.upload",
    action=AuditAction.DOCUMENT_UPLOAD,
    resource=ResourceKind.DOCUMENT,
    schema=UploadInput,
    success_status=201,
)
def upload(call: OperationCall):
    """Upload pipeline: store, check category constraints, record version 1."""
    p = call.params
    call.audit.details.update({"title": p.title, "category_id": p.category_id})
    document = call.services.documents.upload(
        call.session,
        call.ctx,
        p.file,
        title=p.title,
        category_id=p.category_id,
        description=p.description,
        tags=p.tags,
        department=p.department,
        expiry_date=p.expiry_date,
    )
    blob_path = document.file_path
    call.on_rollback(lambda: call.services.store.delete(blob_path))
    call.audit.resource_id = document.id
    call.audit.details.update({"file_size": document.file_size, "status": document.status})
    return document.to_dict()


@operation("documents.list", resource=ResourceKind.DOCUMENT, schema=DocumentListInput)
def list_documents(call: OperationCall):
    p = call.params
    return call.services.documents.list_documents(
        call.session,
        call.ctx,
        page=p.page,
        limit=p.limit,
        category_id=p.category_id,
        status=p.status,
        department=p.department,
        uploaded_by=p.uploaded_by,
        tags=p.tags,
        search=p.search,
        sort_by=p.sort_by,
        sort_order=p.sort_order,
    )


@operation("documents.get", action=AuditAction.DOCUMENT_VIEW, resource=ResourceKind.DOCUMENT)
def get_document(call: OperationCall):
    """Document plus active version history; counts a view."""
    return call.services.documents.get(call.session, call.ctx, call.require_resource_id())


@operation("documents.download", action=AuditAction.DOCUMENT_DOWNLOAD, resource=ResourceKind.DOCUMENT)
def download(call: OperationCall):
    """Chunk stream of the current version."""
    result = call.services.documents.download(call.session, call.ctx, call.require_resource_id())
    call.audit.details["version"] = result.version_number
    return _download_body(result)


@operation(
    "documents.update",
    action=AuditAction.DOCUMENT_UPDATE,
    resource=ResourceKind.DOCUMENT,
    schema=DocumentUpdateInput,
)
def update_document(call: OperationCall):
    changes = call.params.model_dump(exclude_unset=True)
    call.audit.details["fields"] = sorted(changes)
    document = call.services.documents.update(call.session, call.ctx, call.require_resource_id(), changes)
    return document.to_dict()


@operation("documents.delete", action=AuditAction.DOCUMENT_DELETE, resource=ResourceKind.DOCUMENT)
def delete_document(call: OperationCall):
    """Soft delete."""
    document = call.services.documents.delete(call.session, call.ctx, call.require_resource_id())
    return {"message": "Document deleted successfully", "id": document.id}


@operation(
    "documents.approval",
    action=AuditAction.DOCUMENT_APPROVE,
    resource=ResourceKind.DOCUMENT,
    roles=("admin", "manager"),
    schema=ApprovalInput,
)
def approval(call: OperationCall):
    """pending → approved | rejected."""
    p = call.params
    if p.status == "rejected":
        call.audit.action = AuditAction.DOCUMENT_REJECT
        call.audit.details["reason"] = p.rejection_reason
    documents = call.services.documents
    document_id = call.require_resource_id()
    previous = documents.get_live(call.session, document_id).status
    call.audit.details["previous_status"] = previous
    document = documents.decide(call.session, call.ctx, document_id, p.status, p.rejection_reason)
    call.audit.details["title"] = document.title
    return document.to_dict()


@operation(
    "documents.upload_version",
    action=AuditAction.VERSION_CREATE,
    resource=ResourceKind.DOCUMENT,
    schema=VersionUploadInput,
    success_status=201,
)
def upload_version(call: OperationCall):
    """New version; next number is max + 1."""
    p = call.params
    version = call.services.documents.upload_version(
        call.session,
        call.ctx,
        call.require_resource_id(),
        p.file,
        change_description=p.change_description,
    )
    blob_path = version.file_path
    call.on_rollback(lambda: call.services.store.delete(blob_path))
    call.audit.details.update({"version": version.version_number, "file_size": version.file_size})
    return version.to_dict()


@operation("documents.versions", resource=ResourceKind.DOCUMENT)
def versions(call: OperationCall):
    """Every version, newest first, with its active flag."""
    return call.services.documents.versions(call.session, call.ctx, call.require_resource_id())


@operation(
    "documents.download_version",
    action=AuditAction.DOCUMENT_DOWNLOAD,
    resource=ResourceKind.DOCUMENT,
    schema=VersionInput,
)
def download_version(call: OperationCall):
    call.audit.details["version"] = call.params.version
    result = call.services.documents.download_version(
        call.session,
        call.ctx,
        call.require_resource_id(),
        call.params.version,
    )
    return _download_body(result)


@operation(
    "documents.rollback",
    action=AuditAction.VERSION_ROLLBACK,
    resource=ResourceKind.DOCUMENT,
    schema=VersionInput,
)
def rollback(call: OperationCall):
    """Make an earlier version current."""
    documents = call.services.documents
    document_id = call.require_resource_id()
    call.audit.details["version"] = call.params.version
    call.audit.details["previous_version"] = documents.get_live(call.session, document_id).version
    document = documents.rollback(call.session, call.ctx, document_id, call.params.version)
    return document.to_dict()


@operation(
    "documents.share",
    action=AuditAction.PERMISSION_GRANT,
    resource=ResourceKind.DOCUMENT,
    schema=ShareInput,
)
def share(call: OperationCall):
    """Owner or admin/manager adds identities to a permission list."""
    p = call.params
    call.audit.details.update({"user_ids": p.user_ids, "capability": p.capability})
    added = call.services.documents.share(
        call.session, call.ctx, call.require_resource_id(), p.user_ids, p.capability,
    )
    return {"added": added, "capability": p.capability}


@operation(
    "documents.revoke",
    action=AuditAction.PERMISSION_REVOKE,
    resource=ResourceKind.DOCUMENT,
    schema=ShareInput,
)
def revoke(call: OperationCall):
    p = call.params
    call.audit.details.update({"user_ids": p.user_ids, "capability": p.capability})
    removed = call.services.documents.revoke(
        call.session, call.ctx, call.require_resource_id(), p.user_ids, p.capability,
    )
    return {"removed": removed, "capability": p.capability}
