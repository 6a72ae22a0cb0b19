"""
docvault Execution Context — Per-request actor and requester metadata.

The executor builds one ExecutionContext per request after authentication
and hands it to the operation handler. For the duration of the handler it
is also published through a ContextVar, so code that was not handed the
context can still find the acting identity.

Usage:
    from docvault.engine.context import (
        ExecutionContext,
        RequestMeta,
        set_execution_context,
        get_execution_context,
    )
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Optional

PRIVILEGED_ROLES = frozenset({"admin", "manager"})

# ---------------------------------------------------------------------------
# Thread-safe context variable, one per request execution
# ---------------------------------------------------------------------------

current_execution_context: ContextVar[Optional["ExecutionContext"]] = ContextVar(
    "execution_context", default=None
)


@dataclass
class RequestMeta:
    """Raw requester metadata carried into audit entries."""

    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class ExecutionContext:
    """
    The acting identity for one operation.

    ``user_id`` is None only for public operations (register, login)
    before an identity has been resolved.
    """

    user_id: Optional[int]
    role: Optional[str] = None
    email: str = ""
    name: str = ""
    department: Optional[str] = None
    meta: RequestMeta = field(default_factory=RequestMeta)
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_privileged(self) -> bool:
        """Admins and managers have implicit full access to documents."""
        return self.role in PRIVILEGED_ROLES

    @classmethod
    def anonymous(cls, meta: Optional[RequestMeta] = None) -> "ExecutionContext":
        return cls(user_id=None, meta=meta or RequestMeta())

    @classmethod
    def for_user(cls, user: Any, meta: Optional[RequestMeta] = None) -> "ExecutionContext":
        """Build a context from a live User row."""
        return cls(
            user_id=user.id,
            role=user.role,
            email=user.email,
            name=user.name,
            department=user.department,
            meta=meta or RequestMeta(),
        )


def set_execution_context(ctx: Optional[ExecutionContext]) -> None:
    """Set the execution context for the current thread/task."""
    current_execution_context.set(ctx)


def get_execution_context() -> Optional[ExecutionContext]:
    """Get the current execution context. Returns None if not set."""
    return current_execution_context.get()


def clear_execution_context() -> None:
    current_execution_context.set(None)
