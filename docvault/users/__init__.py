"""docvault Identity Store."""

from docvault.users.service import UserService  # noqa: F401

__all__ = ["UserService"]
