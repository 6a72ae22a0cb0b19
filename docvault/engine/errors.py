"""
docvault Error Hierarchy — Structured exceptions with stable machine-readable kinds.

Every error carries a stable ``kind`` string and an HTTP-style ``status_code``
so that the operation executor can turn it into a response without
inspecting the class. Context is kept JSON-serializable for the operational log.

Hierarchy:
    DocVaultError
    ├── ValidationError        — Malformed/missing input (caller-fixable)
    ├── AuthenticationError    — Missing/invalid/expired credential
    ├── AuthorizationError     — Valid identity, insufficient rights
    ├── NotFoundError          — Id does not resolve, or is soft-deleted
    ├── ConflictError          — State-machine violation, duplicate key
    ├── ConstraintError        — Category upload constraint violated
    ├── ThrottledError         — Rate limit exceeded
    └── InfrastructureError    — Storage / persistence failure (opaque to callers)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple


class DocVaultError(Exception):
    """
    Base error for all docvault failures.

    ``context`` holds any extra keyword arguments; they are stringified
    by ``to_dict()`` so the error can always be logged.
    """

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.resource: Optional[str] = context.get("resource")
        self.resource_id: Optional[Any] = context.get("resource_id")
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the public error shape: kind + message (+ extras)."""
        return {
            "kind": self.kind,
            "error_type": self.error_type,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("resource", "resource_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.resource:
            parts.append(f"resource={self.resource}")
        if self.resource_id is not None:
            parts.append(f"resource_id={self.resource_id}")
        return " | ".join(parts)


class ValidationError(DocVaultError):
    """
    Input validation failed. Carries (field, problem) pairs.
    Never retried.
    """

    kind = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str,
        field_errors: Optional[Sequence[Tuple[str, str]]] = None,
        **context: Any,
    ):
        self.field_errors: List[Tuple[str, str]] = list(field_errors or [])
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field_errors"] = [
            {"field": field, "problem": problem} for field, problem in self.field_errors
        ]
        return d


class AuthenticationError(DocVaultError):
    """Missing, invalid or expired credential, or deactivated identity."""

    kind = "authentication_error"
    status_code = 401


class AuthorizationError(DocVaultError):
    """
    Valid identity, insufficient rights (role, ownership or permission list).
    """

    kind = "authorization_error"
    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[Any] = context.get("user_id")
        self.role: Optional[str] = context.get("role")
        self.required: Optional[Any] = context.get("required")
        super().__init__(message, **context)


class NotFoundError(DocVaultError):
    """Resource id does not resolve, or the resource is soft-deleted."""

    kind = "not_found"
    status_code = 404


class ConflictError(DocVaultError):
    """State-machine violation or duplicate unique key."""

    kind = "conflict"
    status_code = 409

    def __init__(self, message: str, **context: Any):
        self.current_status: Optional[str] = context.get("current_status")
        super().__init__(message, **context)


class ConstraintError(DocVaultError):
    """A category-imposed upload constraint (extension or size) was violated."""

    kind = "constraint_violation"
    status_code = 422

    def __init__(self, message: str, **context: Any):
        self.constraint: Optional[str] = context.get("constraint")
        super().__init__(message, **context)


class ThrottledError(DocVaultError):
    """Rate limit exceeded. Distinct from authorization failure."""

    kind = "throttled"
    status_code = 429

    def __init__(self, message: str, **context: Any):
        self.retry_after: Optional[int] = context.get("retry_after")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["retry_after"] = self.retry_after
        return d


class InfrastructureError(DocVaultError):
    """
    Storage or persistence failure.

    ``message`` is what callers see and stays generic; the underlying
    exception detail is kept in ``detail`` for the operational log only.
    """

    kind = "infrastructure_error"
    status_code = 500

    def __init__(self, message: str = "Internal server error", **context: Any):
        self.detail: Optional[str] = context.pop("detail", None)
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "error_type": self.error_type,
            "message": self.message,
            "timestamp": self.timestamp,
        }
