"""
Authentication operations: register, login, me, profile, password, logout.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from docvault.audit.actions import AuditAction, ResourceKind
from docvault.engine.executor import OperationCall
from docvault.engine.registry import operation

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------

class RegisterInput(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6)
    department: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


class LoginInput(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1)


class ProfileInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=30)
    department: Optional[str] = Field(default=None, max_length=100)


class ChangePasswordInput(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@operation(
    "auth.register",
    action=AuditAction.USER_CREATE,
    resource=ResourceKind.USER,
    public=True,
    sensitive=True,
    schema=RegisterInput,
    success_status=201,
)
def register(call: OperationCall):
    """Create a ``user``-role identity and return it with a token."""
    p = call.params
    call.audit.details["email"] = p.email.lower()
    result = call.services.users.register(
        call.session,
        name=p.name,
        email=p.email,
        password=p.password,
        department=p.department,
        phone=p.phone,
    )
    call.audit.resource_id = result["user"]["id"]
    call.audit.details["role"] = "user"
    return result


@operation(
    "auth.login",
    action=AuditAction.LOGIN,
    resource=ResourceKind.USER,
    public=True,
    sensitive=True,
    schema=LoginInput,
)
def login(call: OperationCall):
    """Exchange credentials for a bearer token."""
    call.audit.details["email"] = call.params.email.lower()
    result = call.services.users.login(call.session, call.params.email, call.params.password)
    call.audit.actor_id = result["user"]["id"]
    call.audit.resource_id = result["user"]["id"]
    return result


@operation("auth.me", resource=ResourceKind.USER)
def me(call: OperationCall):
    """The calling identity."""
    return call.services.users.get(call.session, call.ctx.user_id).to_dict()


@operation(
    "auth.update_profile",
    action=AuditAction.USER_UPDATE,
    resource=ResourceKind.USER,
    schema=ProfileInput,
)
def update_profile(call: OperationCall):
    """Update own name, phone or department."""
    call.audit.resource_id = call.ctx.user_id
    changes = call.params.model_dump(exclude_unset=True)
    call.audit.details["fields"] = sorted(changes)
    return call.services.users.update_profile(call.session, call.ctx, changes).to_dict()


@operation(
    "auth.change_password",
    action=AuditAction.PASSWORD_CHANGE,
    resource=ResourceKind.USER,
    sensitive=True,
    schema=ChangePasswordInput,
)
def change_password(call: OperationCall):
    """Change own password; the current one must match."""
    call.audit.resource_id = call.ctx.user_id
    call.services.users.change_password(
        call.session,
        call.ctx,
        call.params.current_password,
        call.params.new_password,
    )
    return {"message": "Password changed successfully"}


@operation("auth.logout", action=AuditAction.LOGOUT, resource=ResourceKind.USER)
def logout(call: OperationCall):
    """Tokens are stateless; this only leaves an audit entry."""
    call.audit.resource_id = call.ctx.user_id
    return {"message": "Logged out successfully"}
