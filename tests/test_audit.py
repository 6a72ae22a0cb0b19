"""Audit Log — writes never fail the caller, queries and statistics."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from docvault.audit.actions import AuditAction, Outcome, ResourceKind
from docvault.audit.service import AuditLog, build_details
from docvault.db.models import AuditLogEntry


@pytest.fixture
def audit(db):
    return AuditLog(db, async_writes=False, write_retries=0)


def _count(db, **filters):
    with db.session_scope() as session:
        return session.query(AuditLogEntry).filter_by(**filters).count()


class TestBuildDetails:
    def test_schema_version_and_nones_dropped(self):
        details = build_details({"title": "Q3", "reason": None}, category_id=4, file_size=None)
        assert details == {"schema_version": 1, "title": "Q3", "category_id": 4}


class TestRecord:
    def test_sync_write(self, audit, db, users):
        entry = audit.record(
            AuditAction.DOCUMENT_VIEW,
            ResourceKind.DOCUMENT,
            user_id=users["alice"],
            resource_id=7,
            details={"title": "Budget"},
            ip_address="10.0.0.1",
            user_agent="pytest",
            duration_ms=12.6,
        )
        assert entry is not None
        assert entry.duration_ms == 13

        with db.session_scope() as session:
            row = session.query(AuditLogEntry).one()
            assert row.action == "document_view"
            assert row.resource_type == "document"
            assert row.resource_id == 7
            assert row.status == "success"
            assert row.details == {"schema_version": 1, "title": "Budget"}
            assert row.user_agent == "pytest"

    def test_missing_actor_skipped(self, audit, db):
        assert audit.record(AuditAction.DOCUMENT_VIEW, ResourceKind.DOCUMENT, resource_id=1) is None
        assert _count(db) == 0

    def test_anonymous_login_kept(self, audit, db):
        entry = audit.record(
            AuditAction.LOGIN,
            ResourceKind.USER,
            outcome=Outcome.FAILURE,
            error_message="Invalid credentials",
        )
        assert entry.user_id is None
        assert _count(db, action="login", status="failure") == 1

    def test_strings_accepted(self, audit, db, users):
        audit.record("logout", "user", user_id=users["bob"], outcome="warning")
        assert _count(db, action="logout", status="warning") == 1

    def test_unknown_action_is_absorbed(self, audit, db, users):
        assert audit.record("teleport", "user", user_id=users["bob"]) is None
        assert _count(db) == 0

    def test_storage_failure_does_not_propagate(self):
        broken = MagicMock()
        broken.session_scope.side_effect = RuntimeError("database is gone")
        audit = AuditLog(broken, async_writes=False, write_retries=2)

        entry = audit.record(AuditAction.LOGOUT, ResourceKind.USER, user_id=1)

        assert entry is not None
        assert broken.session_scope.call_count == 3

    def test_async_writes_after_flush(self, db, users):
        audit = AuditLog(db, async_writes=True, flush_interval_ms=10, write_retries=0)
        audit.start()
        try:
            for _ in range(3):
                audit.record(AuditAction.LOGOUT, ResourceKind.USER, user_id=users["alice"])
            audit.flush()
            assert _count(db, action="logout") == 3
        finally:
            audit.stop()
        assert audit.is_async

    def test_async_starts_on_first_record(self, db, users):
        audit = AuditLog(db, async_writes=True, flush_interval_ms=10)
        try:
            audit.record(AuditAction.LOGOUT, ResourceKind.USER, user_id=users["alice"])
            audit.flush()
            assert _count(db) == 1
        finally:
            audit.stop()


class TestQueries:
    @pytest.fixture
    def history(self, audit, users):
        alice, bob = users["alice"], users["bob"]
        audit.record(AuditAction.LOGIN, ResourceKind.USER, user_id=alice, resource_id=alice, duration_ms=10)
        audit.record(
            AuditAction.LOGIN, ResourceKind.USER, outcome=Outcome.FAILURE,
            error_message="Invalid credentials", duration_ms=30,
        )
        for _ in range(3):
            audit.record(AuditAction.DOCUMENT_VIEW, ResourceKind.DOCUMENT, user_id=bob, resource_id=5)
        audit.record(AuditAction.DOCUMENT_UPDATE, ResourceKind.DOCUMENT, user_id=alice, resource_id=5)
        return users

    def test_user_activity_newest_first(self, audit, db, history):
        with db.session_scope() as session:
            rows = audit.get_user_activity(session, history["alice"])
        assert [r["action"] for r in rows] == ["document_update", "login"]
        assert rows[0]["user_name"] == "Alice"

    def test_user_activity_filters(self, audit, db, history):
        with db.session_scope() as session:
            assert len(audit.get_user_activity(session, history["bob"], limit=2)) == 2
            rows = audit.get_user_activity(session, history["alice"], resource_type="user")
            assert [r["action"] for r in rows] == ["login"]
            assert audit.get_user_activity(session, history["alice"], action="logout") == []
            assert audit.get_user_activity(session, history["alice"], start=datetime(2100, 1, 1)) == []

    def test_resource_activity(self, audit, db, history):
        with db.session_scope() as session:
            rows = audit.get_resource_activity(session, "document", 5)
        assert [r["action"] for r in rows] == ["document_update"] + ["document_view"] * 3

    def test_system_stats(self, audit, db, history):
        with db.session_scope() as session:
            stats = audit.get_system_stats(session)
        assert [s["action"] for s in stats] == ["document_view", "login", "document_update"]
        login = stats[1]
        assert (login["total"], login["success"], login["failure"], login["warning"]) == (2, 1, 1, 0)
        assert login["avg_duration_ms"] == 20.0
        assert stats[0]["avg_duration_ms"] is None

    def test_count(self, audit, db, history):
        with db.session_scope() as session:
            assert audit.count(session) == 6
            assert audit.count(session, action="login", status="failure") == 1


class TestAuditOperations:
    def test_stats_admin_only(self, vault, tokens):
        vault.execute("auth.logout", token=tokens["alice"])
        assert vault.execute("audit.stats", token=tokens["manager"]).status_code == 403

        response = vault.execute("audit.stats", token=tokens["admin"])
        assert response.success
        assert response.data[0]["action"] == "logout"

    def test_resource_activity_requires_privilege(self, vault, tokens, users):
        payload = {"resource_type": "user", "resource_id": users["alice"]}
        assert vault.execute("audit.resource_activity", token=tokens["alice"], payload=payload).status_code == 403
        assert vault.execute("audit.resource_activity", token=tokens["manager"], payload=payload).success

    def test_resource_activity_rejects_unknown_kind(self, vault, tokens):
        response = vault.execute(
            "audit.resource_activity", token=tokens["admin"],
            payload={"resource_type": "planet", "resource_id": 1},
        )
        assert response.status_code == 400
        assert response.error["field_errors"][0]["field"] == "resource_type"
