"""docvault Engine — Errors, config, context, logging, rate limiting, security, gate, executor."""

from docvault.engine.errors import (  # noqa: F401
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ConstraintError,
    DocVaultError,
    InfrastructureError,
    NotFoundError,
    ThrottledError,
    ValidationError,
)

__all__ = [
    "DocVaultError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "ConstraintError",
    "ThrottledError",
    "InfrastructureError",
]
