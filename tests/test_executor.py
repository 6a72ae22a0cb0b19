"""Operation Executor — authentication, validation, throttling and failure handling."""

import pytest
from pydantic import BaseModel, Field

from docvault.app import DocVault
from docvault.audit.actions import AuditAction, ResourceKind
from docvault.db.models import AuditLogEntry, User
from docvault.engine.context import get_execution_context
from docvault.engine.errors import ConflictError
from docvault.engine.ratelimit import GENERAL, SENSITIVE, InMemoryRateLimiter, RateLimitRule
from docvault.engine.registry import OperationRegistry, operation


class TestPipeline:
    def test_unknown_operation(self, vault):
        response = vault.execute("documents.teleport")
        assert response.status_code == 404
        assert response.error["kind"] == "not_found"

    def test_missing_token(self, vault):
        response = vault.execute("auth.me")
        assert response.status_code == 401
        assert response.error["kind"] == "authentication_error"

    def test_garbage_token(self, vault, users):
        assert vault.execute("auth.me", token="not.a.jwt").status_code == 401

    def test_field_errors(self, vault, tokens):
        response = vault.execute("categories.create", token=tokens["admin"], payload={"color": "blue"})
        assert response.status_code == 400
        assert response.error["kind"] == "validation_error"
        assert {e["field"] for e in response.error["field_errors"]} == {"name", "color"}

    def test_role_denied(self, vault, tokens):
        response = vault.execute("users.list", token=tokens["bob"])
        assert response.status_code == 403
        assert response.error["kind"] == "authorization_error"

    def test_missing_resource_id(self, vault, tokens):
        response = vault.execute("documents.get", token=tokens["alice"])
        assert response.status_code == 400
        assert response.error["field_errors"] == [{"field": "id", "problem": "is required"}]

    def test_audit_entry_shape(self, vault, tokens, users, db):
        vault.execute("auth.logout", token=tokens["bob"], client_ip="192.0.2.10", user_agent="curl/8")
        with db.session_scope() as session:
            entry = session.query(AuditLogEntry).one()
            assert entry.user_id == users["bob"]
            assert entry.ip_address == "192.0.2.10"
            assert entry.user_agent == "curl/8"
            assert entry.duration_ms is not None
            assert entry.details["operation"] == "auth.logout"
            assert entry.details["status_code"] == 200
            assert entry.details["schema_version"] == 1

    def test_unaudited_operations_leave_no_entry(self, vault, tokens, db):
        vault.execute("auth.me", token=tokens["bob"])
        with db.session_scope() as session:
            assert session.query(AuditLogEntry).count() == 0


class TestThrottling:
    @pytest.fixture
    def strict_vault(self, config, db, store):
        limiter = InMemoryRateLimiter({
            GENERAL: RateLimitRule(max_requests=2, window_seconds=60),
            SENSITIVE: RateLimitRule(max_requests=1, window_seconds=60),
        })
        instance = DocVault(config, db=db, store=store, rate_limiter=limiter)
        yield instance
        instance.shutdown()

    def test_general_bucket_by_ip(self, strict_vault, users):
        token = strict_vault.tokens.issue(users["alice"], "user")
        for _ in range(2):
            assert strict_vault.execute("auth.me", token=token, client_ip="192.0.2.1").success
        response = strict_vault.execute("auth.me", token=token, client_ip="192.0.2.1")
        assert response.status_code == 429
        assert response.error["kind"] == "throttled"
        assert 1 <= response.error["retry_after"] <= 60

    def test_falls_back_to_user_key(self, strict_vault, users):
        alice = strict_vault.tokens.issue(users["alice"], "user")
        bob = strict_vault.tokens.issue(users["bob"], "user")
        strict_vault.execute("auth.me", token=alice)
        strict_vault.execute("auth.me", token=alice)
        assert strict_vault.execute("auth.me", token=alice).status_code == 429
        assert strict_vault.execute("auth.me", token=bob).success

    def test_sensitive_bucket_is_separate(self, strict_vault, users):
        payload = {"email": "alice@example.com", "password": "secret123"}
        assert strict_vault.execute("auth.login", payload=payload, client_ip="192.0.2.5").success
        throttled = strict_vault.execute("auth.login", payload=payload, client_ip="192.0.2.5")
        assert throttled.status_code == 429

        token = strict_vault.tokens.issue(users["alice"], "user")
        assert strict_vault.execute("auth.me", token=token, client_ip="192.0.2.5").success


class TestFailureHandling:
    @pytest.fixture
    def registry(self):
        return OperationRegistry()

    @pytest.fixture
    def custom_vault(self, config, db, store, registry):
        instance = DocVault(config, db=db, store=store, registry=registry)
        yield instance
        instance.shutdown()

    def test_unexpected_error_is_opaque(self, custom_vault, registry, users, db):
        cleaned = []

        @operation(
            "system.explode",
            resource=ResourceKind.SYSTEM,
            action=AuditAction.SYSTEM_MAINTENANCE,
            registry=registry,
        )
        def explode(call):
            call.on_rollback(lambda: cleaned.append("blob removed"))
            raise RuntimeError("disk /dev/sda1 on fire")

        token = custom_vault.tokens.issue(users["admin"], "admin")
        response = custom_vault.execute("system.explode", token=token)

        assert response.status_code == 500
        assert response.error == {"kind": "infrastructure_error", "message": "Internal server error"}
        assert cleaned == ["blob removed"]
        with db.session_scope() as session:
            entry = session.query(AuditLogEntry).one()
            assert entry.status == "failure"
            assert entry.error_message == "Internal server error"

    def test_domain_error_rolls_back_writes(self, custom_vault, registry, users, db):
        @operation("users.rename_then_fail", resource=ResourceKind.USER, registry=registry)
        def rename_then_fail(call):
            call.session.get(User, call.ctx.user_id).name = "Renamed"
            call.session.flush()
            raise ConflictError("Changed my mind")

        token = custom_vault.tokens.issue(users["bob"], "user")
        response = custom_vault.execute("users.rename_then_fail", token=token)

        assert response.status_code == 409
        with db.session_scope() as session:
            assert session.get(User, users["bob"]).name == "Bob"

    def test_hooks_skipped_on_success(self, custom_vault, registry, users):
        cleaned = []

        class EchoInput(BaseModel):
            text: str = Field(min_length=1)

        @operation(
            "system.echo",
            resource=ResourceKind.SYSTEM,
            public=True,
            schema=EchoInput,
            success_status=201,
            registry=registry,
        )
        def echo(call):
            assert get_execution_context() is call.ctx
            call.on_rollback(lambda: cleaned.append("should not run"))
            return {"echo": call.params.text, "anonymous": call.ctx.user_id is None}

        response = custom_vault.execute("system.echo", payload={"text": "hi"})
        assert response.status_code == 201
        assert response.data == {"echo": "hi", "anonymous": True}
        assert cleaned == []
        assert registry.names("system") == ["system.echo"]
        assert get_execution_context() is None
