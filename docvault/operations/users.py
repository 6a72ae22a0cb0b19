"""
Identity administration operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from docvault.audit.actions import AuditAction, ResourceKind
from docvault.engine.executor import OperationCall
from docvault.engine.registry import operation
from docvault.operations.auth import EMAIL_PATTERN

Role = Literal["admin", "manager", "user"]


class UserListInput(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    role: Optional[Role] = None
    department: Optional[str] = Field(default=None, max_length=100)
    search: Optional[str] = Field(default=None, max_length=100)
    include_inactive: bool = False


class UserCreateInput(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6)
    role: Role
    department: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


class UserUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    role: Optional[Role] = None
    department: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    is_active: Optional[bool] = None


class ActivityInput(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    action: Optional[str] = None
    resource_type: Optional[str] = None
    limit: int = Field(default=100, ge=1, le=1000)


@operation("users.list", resource=ResourceKind.USER, roles=("admin", "manager"), schema=UserListInput)
def list_users(call: OperationCall):
    """Active identities, filtered and paginated."""
    p = call.params
    return call.services.users.list_users(
        call.session,
        call.ctx,
        page=p.page,
        limit=p.limit,
        role=p.role,
        department=p.department,
        search=p.search,
        include_inactive=p.include_inactive,
    )


@operation("users.get", resource=ResourceKind.USER)
def get_user(call: OperationCall):
    """One identity; admin/manager or the identity itself."""
    return call.services.users.view(call.session, call.ctx, call.require_resource_id()).to_dict()


@operation(
    "users.create",
    action=AuditAction.USER_CREATE,
    resource=ResourceKind.USER,
    roles=("admin",),
    schema=UserCreateInput,
    success_status=201,
)
def create_user(call: OperationCall):
    """Admin creates an identity with any role."""
    p = call.params
    call.audit.details.update({"email": p.email.lower(), "role": p.role})
    user = call.services.users.create(
        call.session,
        call.ctx,
        name=p.name,
        email=p.email,
        password=p.password,
        role=p.role,
        department=p.department,
        phone=p.phone,
    )
    call.audit.resource_id = user.id
    return user.to_dict()


@operation("users.update", action=AuditAction.USER_UPDATE, resource=ResourceKind.USER, schema=UserUpdateInput)
def update_user(call: OperationCall):
    """Role and active flag only change when the actor is admin."""
    changes = call.params.model_dump(exclude_unset=True)
    call.audit.details["fields"] = sorted(changes)
    user = call.services.users.update(call.session, call.ctx, call.require_resource_id(), changes)
    return user.to_dict()


@operation(
    "users.deactivate",
    action=AuditAction.USER_DEACTIVATE,
    resource=ResourceKind.USER,
    roles=("admin",),
)
def deactivate_user(call: OperationCall):
    """Logical delete: the identity can no longer authenticate."""
    user = call.services.users.deactivate(call.session, call.ctx, call.require_resource_id())
    return user.to_dict()


@operation("users.activity", resource=ResourceKind.USER, schema=ActivityInput)
def user_activity(call: OperationCall):
    """Audit trail of one identity; admin/manager or the identity itself."""
    user_id = call.require_resource_id()
    user = call.services.users.get(call.session, user_id)
    call.services.gate.require_self_or_roles(call.ctx, user.id, operation_name="users.activity")
    p = call.params
    return call.services.audit.get_user_activity(
        call.session,
        user.id,
        start=p.start,
        end=p.end,
        action=p.action,
        resource_type=p.resource_type,
        limit=p.limit,
    )


@operation(
    "users.reset_password",
    action=AuditAction.PASSWORD_RESET,
    resource=ResourceKind.USER,
    roles=("admin", "manager"),
)
def reset_password(call: OperationCall):
    """Temporary password; must be changed on next use."""
    return call.services.users.reset_password(call.session, call.ctx, call.require_resource_id())
