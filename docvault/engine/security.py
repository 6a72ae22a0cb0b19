"""
docvault Security — Password hashing, bearer tokens and request authentication.

Implements:
- hash_password / verify_password: bcrypt
- TokenService: signed, time-limited bearer credentials (PyJWT, HS256)
  encoding {sub: identity id, role, iat, exp}
- Authenticator: token → live identity → ExecutionContext. The identity
  row is always re-fetched so a deactivated account is rejected even
  while its token is still valid.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from sqlalchemy.orm import Session

from docvault.db.models import User
from docvault.engine.context import ExecutionContext, RequestMeta
from docvault.engine.errors import AuthenticationError

logger = logging.getLogger("docvault.engine.security")


# ---------------------------------------------------------------------------
# Password Utilities
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_temporary_password(length: int = 12) -> str:
    """Random password handed out by an administrator reset."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------

class TokenService:
    """Issues and verifies signed bearer credentials."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(days=30),
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._lifetime = lifetime

    def issue(self, user_id: int, role: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "role": role,
            "iat": now,
            "exp": now + self._lifetime,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token.

        Returns:
            {"user_id": int, "role": str}

        Raises:
            AuthenticationError on a missing, malformed, tampered or expired token.
        """
        if not token:
            raise AuthenticationError("Access token required")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Token rejected: {e}")
            raise AuthenticationError("Invalid token")

        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise AuthenticationError("Invalid token")
        return {"user_id": user_id, "role": payload.get("role")}


# ---------------------------------------------------------------------------
# Request authentication
# ---------------------------------------------------------------------------

class Authenticator:
    """
    Resolves a bearer token to an ExecutionContext.

    The token's identity id is trusted once the signature verifies; the
    role and active flag come from the live row.
    """

    def __init__(self, tokens: TokenService):
        self._tokens = tokens

    def authenticate(
        self,
        session: Session,
        token: Optional[str],
        meta: Optional[RequestMeta] = None,
    ) -> ExecutionContext:
        claims = self._tokens.verify(token or "")
        user = session.get(User, claims["user_id"])
        if user is None:
            raise AuthenticationError("Invalid token - user not found")
        if not user.is_active:
            raise AuthenticationError("Account is deactivated", user_id=user.id)
        return ExecutionContext.for_user(user, meta)
