"""
Audit vocabulary — the closed set of actions, resource kinds and outcomes.
"""

from __future__ import annotations

from enum import Enum


class AuditAction(str, Enum):
    # Auth
    LOGIN = "login"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    # Documents
    DOCUMENT_UPLOAD = "document_upload"
    DOCUMENT_VIEW = "document_view"
    DOCUMENT_DOWNLOAD = "document_download"
    DOCUMENT_UPDATE = "document_update"
    DOCUMENT_DELETE = "document_delete"
    DOCUMENT_SHARE = "document_share"
    DOCUMENT_APPROVE = "document_approve"
    DOCUMENT_REJECT = "document_reject"
    DOCUMENT_ARCHIVE = "document_archive"
    # Versions
    VERSION_CREATE = "version_create"
    VERSION_ROLLBACK = "version_rollback"
    VERSION_DELETE = "version_delete"
    # Categories
    CATEGORY_CREATE = "category_create"
    CATEGORY_UPDATE = "category_update"
    CATEGORY_DELETE = "category_delete"
    # Users
    USER_CREATE = "user_create"
    USER_UPDATE = "user_update"
    USER_DELETE = "user_delete"
    USER_ACTIVATE = "user_activate"
    USER_DEACTIVATE = "user_deactivate"
    # Permissions
    PERMISSION_GRANT = "permission_grant"
    PERMISSION_REVOKE = "permission_revoke"
    # System
    SYSTEM_BACKUP = "system_backup"
    SYSTEM_RESTORE = "system_restore"
    SYSTEM_MAINTENANCE = "system_maintenance"


class ResourceKind(str, Enum):
    DOCUMENT = "document"
    USER = "user"
    CATEGORY = "category"
    SYSTEM = "system"
    VERSION = "version"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"


# Actions that may be recorded before an identity is resolved
ANONYMOUS_ACTIONS = frozenset({AuditAction.LOGIN, AuditAction.USER_CREATE})

# Bumped whenever the well-known detail keys change shape
DETAILS_SCHEMA_VERSION = 1

# Well-known detail keys per action. Other keys are allowed; these are the
# ones dashboards and tests may rely on.
WELL_KNOWN_DETAILS = {
    AuditAction.LOGIN: ("email", "reason"),
    AuditAction.USER_CREATE: ("email", "role"),
    AuditAction.DOCUMENT_UPLOAD: ("title", "category_id", "file_size", "status"),
    AuditAction.DOCUMENT_APPROVE: ("title", "previous_status"),
    AuditAction.DOCUMENT_REJECT: ("title", "previous_status", "reason"),
    AuditAction.VERSION_CREATE: ("version", "file_size"),
    AuditAction.VERSION_ROLLBACK: ("version", "previous_version"),
    AuditAction.PERMISSION_GRANT: ("user_ids", "capability"),
    AuditAction.PERMISSION_REVOKE: ("user_ids", "capability"),
    AuditAction.CATEGORY_CREATE: ("name", "slug", "parent_id"),
}


def action_values() -> tuple:
    return tuple(a.value for a in AuditAction)
