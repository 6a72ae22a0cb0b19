"""
docvault Models — All SQLAlchemy models for the docvault database.

Tables defined here:
1. users                 — Identities (admin / manager / user)
2. categories            — Hierarchical classification with upload constraints
3. category_permissions  — Category ↔ User upload/view/manage lists
4. documents             — Document records (soft-deletable)
5. document_tags         — Document tag set
6. document_permissions  — Document ↔ User read/write/delete lists
7. document_versions     — Append-only version history
8. audit_log             — Append-only audit trail
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from docvault.audit.actions import Outcome, ResourceKind, action_values
from docvault.db.base import AuditMixin, Base, SoftDeleteMixin, TimestampMixin, utcnow

ROLES = ("admin", "manager", "user")
DOCUMENT_STATUSES = ("draft", "pending", "approved", "rejected", "archived")
CATEGORY_CAPABILITIES = ("upload", "view", "manage")
DOCUMENT_CAPABILITIES = ("read", "write", "delete")

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


def _iso(value) -> Any:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="user", nullable=False, index=True)
    department = Column(String(100), nullable=True, index=True)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    must_change_password = Column(Boolean, default=False, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(_in_list("role", ROLES), name="ck_users_role"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Public view. The password hash is never serialized."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "phone": self.phone,
            "is_active": self.is_active,
            "must_change_password": self.must_change_password,
            "last_login": _iso(self.last_login),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# 2. Categories
# ---------------------------------------------------------------------------

class Category(Base, AuditMixin):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(150), unique=True, nullable=False, index=True)
    description = Column(String(500), nullable=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    level = Column(Integer, default=0, nullable=False)
    path = Column(String(1000), nullable=False, index=True)
    icon = Column(String(50), default="folder", nullable=False)
    color = Column(String(7), default="#007bff", nullable=False)
    allowed_file_types = Column(JSON, default=list, nullable=False)
    max_file_size = Column(BigInteger, default=DEFAULT_MAX_FILE_SIZE, nullable=False)
    requires_approval = Column(Boolean, default=True, nullable=False)
    document_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    parent = relationship("Category", remote_side=[id], lazy="select")
    permissions = relationship(
        "CategoryPermission",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("document_count >= 0", name="ck_categories_document_count"),
    )

    def permission_ids(self, capability: str) -> List[int]:
        return sorted(p.user_id for p in self.permissions if p.capability == capability)

    def set_permission_ids(self, capability: str, user_ids) -> None:
        """Replace one capability list, keeping rows that survive."""
        wanted = set(user_ids)
        kept = [
            p for p in self.permissions
            if p.capability != capability or p.user_id in wanted
        ]
        have = {p.user_id for p in kept if p.capability == capability}
        self.permissions = kept + [
            CategoryPermission(capability=capability, user_id=uid)
            for uid in sorted(wanted - have)
        ]

    def accepts_extension(self, extension: str) -> bool:
        """Empty allowed list means no restriction."""
        allowed = self.allowed_file_types or []
        if not allowed:
            return True
        return extension.lower() in allowed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "parent_id": self.parent_id,
            "level": self.level,
            "path": self.path,
            "icon": self.icon,
            "color": self.color,
            "allowed_file_types": list(self.allowed_file_types or []),
            "max_file_size": self.max_file_size,
            "requires_approval": self.requires_approval,
            "permissions": {
                cap: self.permission_ids(cap) for cap in CATEGORY_CAPABILITIES
            },
            "document_count": self.document_count,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, slug='{self.slug}', path='{self.path}')>"


class CategoryPermission(Base):
    __tablename__ = "category_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    capability = Column(String(10), nullable=False)

    __table_args__ = (
        UniqueConstraint("category_id", "user_id", "capability", name="uq_category_permission"),
        CheckConstraint(_in_list("capability", CATEGORY_CAPABILITIES), name="ck_category_permission_cap"),
        Index("idx_catperm_category", "category_id"),
    )


# ---------------------------------------------------------------------------
# 3. Documents
# ---------------------------------------------------------------------------

class Document(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=True)
    original_name = Column(String(255), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String(100), nullable=True)
    file_extension = Column(String(20), nullable=False)
    checksum = Column(String(64), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    department = Column(String(100), nullable=True, index=True)
    version = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    is_public = Column(Boolean, default=False, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    share_count = Column(Integer, default=0, nullable=False)

    category = relationship("Category", lazy="joined")
    uploader = relationship("User", foreign_keys=[uploaded_by], lazy="joined")
    tag_rows = relationship("DocumentTag", cascade="all, delete-orphan", lazy="selectin")
    permissions = relationship(
        "DocumentPermission",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_in_list("status", DOCUMENT_STATUSES), name="ck_documents_status"),
        Index("idx_documents_category_status", "category_id", "status"),
        Index("idx_documents_deleted_created", "is_deleted", "created_at"),
    )

    @property
    def tags(self) -> List[str]:
        return sorted(t.tag for t in self.tag_rows)

    def set_tags(self, tags) -> None:
        wanted = {t.strip().lower() for t in tags if t and t.strip()}
        # Keep surviving rows so the (document_id, tag) key is never re-inserted
        kept = [row for row in self.tag_rows if row.tag in wanted]
        have = {row.tag for row in kept}
        self.tag_rows = kept + [DocumentTag(tag=t) for t in sorted(wanted - have)]

    def permission_ids(self, capability: str) -> List[int]:
        return sorted(p.user_id for p in self.permissions if p.capability == capability)

    def grant(self, capability: str, user_ids) -> List[int]:
        """Add identities to a capability list. Returns the ids actually added."""
        have = set(self.permission_ids(capability))
        added = sorted(set(user_ids) - have)
        for uid in added:
            self.permissions.append(DocumentPermission(capability=capability, user_id=uid))
        return added

    def revoke(self, capability: str, user_ids) -> List[int]:
        """Remove identities from a capability list. Returns the ids removed."""
        drop = set(user_ids)
        removed = sorted(
            p.user_id for p in self.permissions
            if p.capability == capability and p.user_id in drop
        )
        self.permissions = [
            p for p in self.permissions
            if not (p.capability == capability and p.user_id in drop)
        ]
        return removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "original_name": self.original_name,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "file_extension": self.file_extension,
            "checksum": self.checksum,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "tags": self.tags,
            "uploaded_by": self.uploaded_by,
            "uploader_name": self.uploader.name if self.uploader else None,
            "department": self.department,
            "version": self.version,
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "expiry_date": _iso(self.expiry_date),
            "is_public": self.is_public,
            "permissions": {
                cap: self.permission_ids(cap) for cap in DOCUMENT_CAPABILITIES
            },
            "view_count": self.view_count,
            "download_count": self.download_count,
            "share_count": self.share_count,
            "is_deleted": self.is_deleted,
            "deleted_at": _iso(self.deleted_at),
            "deleted_by": self.deleted_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, title='{self.title}', status='{self.status}', v={self.version})>"


class DocumentTag(Base):
    __tablename__ = "document_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    tag = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("document_id", "tag", name="uq_document_tag"),
        Index("idx_doctag_tag", "tag"),
    )


class DocumentPermission(Base):
    __tablename__ = "document_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    capability = Column(String(10), nullable=False)

    __table_args__ = (
        UniqueConstraint("document_id", "user_id", "capability", name="uq_document_permission"),
        CheckConstraint(_in_list("capability", DOCUMENT_CAPABILITIES), name="ck_document_permission_cap"),
        Index("idx_docperm_user_cap", "user_id", "capability"),
    )


# ---------------------------------------------------------------------------
# 4. Document Versions
# ---------------------------------------------------------------------------

class DocumentVersion(Base):
    __tablename__ = "document_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False)
    version_number = Column(Integer, nullable=False)
    original_name = Column(String(255), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String(100), nullable=True)
    file_extension = Column(String(20), nullable=False)
    checksum = Column(String(64), nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    change_description = Column(String(500), nullable=True)
    extracted_metadata = Column(JSON, default=dict, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    uploader = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_version"),
        CheckConstraint("version_number >= 1", name="ck_document_versions_number"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "version_number": self.version_number,
            "original_name": self.original_name,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "file_extension": self.file_extension,
            "checksum": self.checksum,
            "uploaded_by": self.uploaded_by,
            "uploader_name": self.uploader.name if self.uploader else None,
            "change_description": self.change_description,
            "metadata": dict(self.extracted_metadata or {}),
            "is_active": self.is_active,
            "download_count": self.download_count,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<DocumentVersion(document_id={self.document_id}, v={self.version_number})>"


# ---------------------------------------------------------------------------
# 5. Audit Log
# ---------------------------------------------------------------------------

class AuditLogEntry(Base):
    """Append-only. Rows are inserted by the audit writer and never updated."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(40), nullable=False)
    resource_type = Column(String(20), nullable=False)
    resource_id = Column(Integer, nullable=True)
    details = Column(JSON, default=dict, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    session_id = Column(String(100), nullable=True)
    status = Column(String(10), default=Outcome.SUCCESS.value, nullable=False)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", lazy="joined")

    __table_args__ = (
        CheckConstraint(_in_list("action", action_values()), name="ck_audit_action"),
        CheckConstraint(
            _in_list("resource_type", [k.value for k in ResourceKind]),
            name="ck_audit_resource_type",
        ),
        CheckConstraint(_in_list("status", [o.value for o in Outcome]), name="ck_audit_status"),
        Index("idx_audit_user_ts", "user_id", "timestamp"),
        Index("idx_audit_resource_ts", "resource_type", "resource_id", "timestamp"),
        Index("idx_audit_action_ts", "action", "timestamp"),
        Index("idx_audit_ts", "timestamp"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "user_email": self.user.email if self.user else None,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": dict(self.details or {}),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "status": self.status,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "timestamp": _iso(self.timestamp),
        }

    def __repr__(self) -> str:
        return f"<AuditLogEntry(id={self.id}, action='{self.action}', status='{self.status}')>"
