"""Unit tests for docvault.engine.security — bcrypt, bearer tokens, Authenticator."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from docvault.db.models import User
from docvault.engine.context import RequestMeta
from docvault.engine.errors import AuthenticationError
from docvault.engine.security import (
    Authenticator,
    TokenService,
    generate_temporary_password,
    hash_password,
    verify_password,
)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse", rounds=4)
        assert hashed != "correct horse"
        assert hashed.startswith("$2")
        assert verify_password("correct horse", hashed) is True
        assert verify_password("wrong horse", hashed) is False

    def test_malformed_hash_never_matches(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_temporary_password(self):
        temp = generate_temporary_password()
        assert len(temp) == 12
        assert temp.isalnum()
        assert generate_temporary_password(20) != generate_temporary_password(20)


class TestTokenService:
    def setup_method(self):
        self.tokens = TokenService("unit-secret", lifetime=timedelta(days=30))

    def test_round_trip(self):
        token = self.tokens.issue(42, "manager")
        assert self.tokens.verify(token) == {"user_id": 42, "role": "manager"}

    def test_claims(self):
        token = self.tokens.issue(7, "user")
        payload = jwt.decode(token, "unit-secret", algorithms=["HS256"])
        assert payload["sub"] == "7"
        assert payload["exp"] - payload["iat"] == 30 * 24 * 3600

    def test_expired(self):
        issued = datetime.now(timezone.utc) - timedelta(days=31)
        token = self.tokens.issue(1, "user", now=issued)
        with pytest.raises(AuthenticationError, match="Token expired"):
            self.tokens.verify(token)

    def test_wrong_secret(self):
        token = TokenService("other-secret").issue(1, "admin")
        with pytest.raises(AuthenticationError, match="Invalid token"):
            self.tokens.verify(token)

    def test_garbage(self):
        with pytest.raises(AuthenticationError, match="Invalid token"):
            self.tokens.verify("not.a.token")

    def test_missing(self):
        with pytest.raises(AuthenticationError, match="Access token required"):
            self.tokens.verify("")

    def test_non_numeric_subject(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "abc", "iat": now, "exp": now + timedelta(hours=1)},
            "unit-secret",
            algorithm="HS256",
        )
        with pytest.raises(AuthenticationError, match="Invalid token"):
            self.tokens.verify(token)


class TestAuthenticator:
    def test_resolves_live_identity(self, db, users):
        tokens = TokenService("unit-secret")
        auth = Authenticator(tokens)
        # The role comes from the row, not the token
        token = tokens.issue(users["manager"], "admin")
        with db.session_scope() as session:
            ctx = auth.authenticate(session, token, RequestMeta(client_ip="10.0.0.9"))
        assert ctx.user_id == users["manager"]
        assert ctx.role == "manager"
        assert ctx.department == "Finance"
        assert ctx.meta.client_ip == "10.0.0.9"

    def test_unknown_user(self, db, users):
        tokens = TokenService("unit-secret")
        with db.session_scope() as session:
            with pytest.raises(AuthenticationError, match="user not found"):
                Authenticator(tokens).authenticate(session, tokens.issue(9999, "user"))

    def test_deactivated_user(self, db, users):
        tokens = TokenService("unit-secret")
        with db.session_scope() as session:
            session.get(User, users["bob"]).is_active = False
        with db.session_scope() as session:
            with pytest.raises(AuthenticationError, match="deactivated"):
                Authenticator(tokens).authenticate(session, tokens.issue(users["bob"], "user"))

    def test_missing_token(self, db):
        with db.session_scope() as session:
            with pytest.raises(AuthenticationError):
                Authenticator(TokenService("unit-secret")).authenticate(session, None)
