"""
docvault Identity Store — Registration, login, profile and administration.

Identities are never hard-deleted; deactivation flips ``is_active`` and the
Authenticator rejects the account on its next request even while its
token is still valid. Emails are stored lower-case and are unique.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from docvault.db.base import utcnow
from docvault.db.models import User
from docvault.db.query import paginate
from docvault.engine.context import ExecutionContext
from docvault.engine.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from docvault.engine.gate import AuthorizationGate
from docvault.engine.security import (
    TokenService,
    generate_temporary_password,
    hash_password,
    verify_password,
)

logger = logging.getLogger("docvault.users.service")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserService:
    """Identity operations. The executor owns the session and transaction."""

    def __init__(
        self,
        gate: AuthorizationGate,
        tokens: TokenService,
        bcrypt_rounds: int = 12,
        password_min_length: int = 6,
    ):
        self._gate = gate
        self._tokens = tokens
        self._rounds = bcrypt_rounds
        self._min_length = password_min_length

    @property
    def tokens(self) -> TokenService:
        return self._tokens

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def get(self, session: Session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", resource="user", resource_id=user_id)
        return user

    def find_by_email(self, session: Session, email: str) -> Optional[User]:
        return (
            session.query(User)
            .filter(func.lower(User.email) == normalize_email(email))
            .first()
        )

    def _check_password_length(self, password: str, field: str = "password") -> None:
        if len(password or "") < self._min_length:
            raise ValidationError(
                f"Password must be at least {self._min_length} characters",
                field_errors=[(field, f"must be at least {self._min_length} characters")],
            )

    def _ensure_email_free(self, session: Session, email: str, exclude_id: Optional[int] = None) -> None:
        existing = self.find_by_email(session, email)
        if existing is not None and existing.id != exclude_id:
            raise ConflictError("User already exists with this email", resource="user")

    def _new_user(
        self,
        session: Session,
        name: str,
        email: str,
        password: str,
        role: str = "user",
        department: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        self._check_password_length(password)
        self._ensure_email_free(session, email)
        user = User(
            name=name.strip(),
            email=normalize_email(email),
            password_hash=hash_password(password, rounds=self._rounds),
            role=role,
            department=department,
            phone=phone,
            is_active=True,
        )
        session.add(user)
        session.flush()
        return user

    # -------------------------------------------------------------------
    # Self-service
    # -------------------------------------------------------------------

    def register(
        self,
        session: Session,
        name: str,
        email: str,
        password: str,
        department: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Public registration. The role is always ``user``."""
        user = self._new_user(session, name, email, password, "user", department, phone)
        logger.info(f"User registered: id={user.id} email={user.email}")
        return {"user": user.to_dict(), "token": self._tokens.issue(user.id, user.role)}

    def login(self, session: Session, email: str, password: str) -> Dict[str, Any]:
        user = self.find_by_email(session, email)
        if user is None:
            raise AuthenticationError("Invalid credentials", email=normalize_email(email))
        if not user.is_active:
            raise AuthenticationError(
                "Account is deactivated. Please contact administrator",
                user_id=user.id,
            )
        if not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid credentials", user_id=user.id)

        user.last_login = utcnow()
        session.flush()
        logger.info(f"User logged in: id={user.id}")
        return {"user": user.to_dict(), "token": self._tokens.issue(user.id, user.role)}

    def update_profile(self, session: Session, ctx: ExecutionContext, changes: Dict[str, Any]) -> User:
        user = self.get(session, ctx.user_id)
        for key in ("name", "phone", "department"):
            if changes.get(key) is not None:
                setattr(user, key, changes[key].strip() if key == "name" else changes[key])
        session.flush()
        return user

    def change_password(
        self,
        session: Session,
        ctx: ExecutionContext,
        current_password: str,
        new_password: str,
    ) -> User:
        user = self.get(session, ctx.user_id)
        if not verify_password(current_password, user.password_hash):
            raise ValidationError(
                "Current password is incorrect",
                field_errors=[("current_password", "is incorrect")],
            )
        self._check_password_length(new_password, "new_password")
        user.password_hash = hash_password(new_password, rounds=self._rounds)
        user.must_change_password = False
        session.flush()
        logger.info(f"Password changed for user {user.id}")
        return user

    # -------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------

    def list_users(
        self,
        session: Session,
        ctx: ExecutionContext,
        page: int = 1,
        limit: int = 10,
        role: Optional[str] = None,
        department: Optional[str] = None,
        search: Optional[str] = None,
        include_inactive: bool = False,
    ) -> Dict[str, Any]:
        query = session.query(User)
        if not (include_inactive and self._gate.can_include_inactive(ctx)):
            query = query.filter(User.is_active.is_(True))
        if role:
            query = query.filter(User.role == role)
        if department:
            query = query.filter(User.department.ilike(f"%{department}%"))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        query = query.order_by(User.created_at.desc(), User.id.desc())

        result = paginate(query, page, limit)
        return {
            "users": [u.to_dict() for u in result.items],
            "pagination": result.pagination(),
        }

    def view(self, session: Session, ctx: ExecutionContext, user_id: int) -> User:
        user = self.get(session, user_id)
        self._gate.require_self_or_roles(ctx, user.id, operation_name="users.get")
        return user

    def create(
        self,
        session: Session,
        ctx: ExecutionContext,
        name: str,
        email: str,
        password: str,
        role: str = "user",
        department: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        user = self._new_user(session, name, email, password, role, department, phone)
        logger.info(f"User created by {ctx.user_id}: id={user.id} role={user.role}")
        return user

    def update(
        self,
        session: Session,
        ctx: ExecutionContext,
        user_id: int,
        changes: Dict[str, Any],
    ) -> User:
        """
        Admin may change anything. Everyone else has ``role`` and
        ``is_active`` silently dropped from the change set.
        """
        user = self.get(session, user_id)
        self._gate.require_user_update(ctx, user, "users.update")

        changes = {k: v for k, v in changes.items() if v is not None}
        if not ctx.is_admin:
            dropped = [k for k in ("role", "is_active") if k in changes]
            for key in dropped:
                changes.pop(key)
            if dropped:
                logger.info(f"Dropped {dropped} from update of user {user.id} by {ctx.role}")

        if "email" in changes:
            self._ensure_email_free(session, changes["email"], exclude_id=user.id)
            user.email = normalize_email(changes.pop("email"))
        if "name" in changes:
            user.name = changes.pop("name").strip()
        for key in ("role", "department", "phone", "is_active"):
            if key in changes:
                setattr(user, key, changes[key])

        session.flush()
        return user

    def deactivate(self, session: Session, ctx: ExecutionContext, user_id: int) -> User:
        user = self.get(session, user_id)
        if user.id == ctx.user_id:
            raise ConflictError("Cannot deactivate your own account", resource="user", resource_id=user.id)
        user.is_active = False
        session.flush()
        logger.info(f"User {user.id} deactivated by {ctx.user_id}")
        return user

    def reset_password(self, session: Session, ctx: ExecutionContext, user_id: int) -> Dict[str, Any]:
        """Issue a temporary password; the identity must change it on next use."""
        user = self.get(session, user_id)
        if not ctx.is_admin:
            self._gate.require_user_update(ctx, user, "users.reset_password")
        temporary = generate_temporary_password()
        user.password_hash = hash_password(temporary, rounds=self._rounds)
        user.must_change_password = True
        session.flush()
        logger.info(f"Password reset for user {user.id} by {ctx.user_id}")
        return {"user": user.to_dict(), "temp_password": temporary}
