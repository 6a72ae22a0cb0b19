"""Identity Store — registration, login, profile and administration."""

from docvault.db.models import AuditLogEntry, User

from conftest import PASSWORD


def _login(vault, email, password=PASSWORD, **extra):
    return vault.execute("auth.login", payload={"email": email, "password": password}, **extra)


class TestRegister:
    def test_register_returns_token(self, vault):
        response = vault.execute(
            "auth.register",
            payload={"name": "Carol", "email": "Carol@Example.com", "password": "hunter22"},
        )
        assert response.status_code == 201
        user = response.data["user"]
        assert user["email"] == "carol@example.com"
        assert user["role"] == "user"
        assert "password_hash" not in user

        me = vault.execute("auth.me", token=response.data["token"])
        assert me.data["id"] == user["id"]

    def test_register_ignores_role(self, vault):
        response = vault.execute(
            "auth.register",
            payload={"name": "Mallory", "email": "m@example.com", "password": "hunter22", "role": "admin"},
        )
        assert response.data["user"]["role"] == "user"

    def test_duplicate_email(self, vault, users):
        response = vault.execute(
            "auth.register",
            payload={"name": "Alice Two", "email": "ALICE@example.com", "password": "hunter22"},
        )
        assert response.status_code == 409
        assert response.error["message"] == "User already exists with this email"

    def test_invalid_input(self, vault):
        response = vault.execute(
            "auth.register", payload={"name": "X", "email": "not-an-email", "password": "123"},
        )
        assert response.status_code == 400
        fields = {e["field"] for e in response.error["field_errors"]}
        assert fields == {"name", "email", "password"}

    def test_register_audited_without_actor(self, vault, db):
        response = vault.execute(
            "auth.register", payload={"name": "Dave", "email": "dave@example.com", "password": "hunter22"},
        )
        with db.session_scope() as session:
            entry = session.query(AuditLogEntry).filter_by(action="user_create").one()
            assert entry.user_id is None
            assert entry.resource_id == response.data["user"]["id"]
            assert entry.details["email"] == "dave@example.com"


class TestLogin:
    def test_success(self, vault, users, db):
        response = _login(vault, "Alice@Example.com")
        assert response.success
        assert response.data["user"]["id"] == users["alice"]
        assert vault.execute("auth.me", token=response.data["token"]).success
        with db.session_scope() as session:
            assert session.get(User, users["alice"]).last_login is not None
            entry = session.query(AuditLogEntry).filter_by(action="login").one()
            assert entry.status == "success"
            assert entry.user_id == users["alice"]

    def test_unknown_email_audited_once(self, vault, users, db):
        response = _login(vault, "nobody@example.com", client_ip="203.0.113.7")
        assert response.status_code == 401
        assert response.error == {"kind": "authentication_error", "message": "Invalid credentials"}

        with db.session_scope() as session:
            entries = session.query(AuditLogEntry).all()
            assert len(entries) == 1
            entry = entries[0]
            assert entry.action == "login"
            assert entry.status == "failure"
            assert entry.user_id is None
            assert entry.ip_address == "203.0.113.7"
            assert entry.error_message == "Invalid credentials"
            assert entry.details["email"] == "nobody@example.com"

    def test_wrong_password(self, vault, users):
        response = _login(vault, "alice@example.com", password="wrong-password")
        assert response.status_code == 401
        assert response.error["message"] == "Invalid credentials"

    def test_deactivated(self, vault, users, db):
        with db.session_scope() as session:
            session.get(User, users["bob"]).is_active = False
        response = _login(vault, "bob@example.com")
        assert response.status_code == 401
        assert "deactivated" in response.error["message"]

    def test_sensitive_bucket_throttles(self, vault, users):
        for _ in range(5):
            _login(vault, "alice@example.com", password="bad", client_ip="198.51.100.1")
        response = _login(vault, "alice@example.com", client_ip="198.51.100.1")
        assert response.status_code == 429
        assert response.error["retry_after"] >= 1
        # Other requesters are unaffected
        assert _login(vault, "alice@example.com", client_ip="198.51.100.2").success


class TestSelfService:
    def test_update_profile(self, vault, tokens, users):
        response = vault.execute(
            "auth.update_profile", token=tokens["bob"], payload={"name": "  Robert ", "phone": "555-0100"},
        )
        assert response.data["name"] == "Robert"
        assert response.data["phone"] == "555-0100"
        assert response.data["department"] == "Legal"

    def test_change_password(self, vault, tokens):
        response = vault.execute(
            "auth.change_password", token=tokens["bob"],
            payload={"current_password": PASSWORD, "new_password": "n3w-secret"},
        )
        assert response.success
        assert _login(vault, "bob@example.com", password="n3w-secret").success
        assert _login(vault, "bob@example.com").status_code == 401

    def test_change_password_wrong_current(self, vault, tokens):
        response = vault.execute(
            "auth.change_password", token=tokens["bob"],
            payload={"current_password": "nope", "new_password": "n3w-secret"},
        )
        assert response.status_code == 400
        assert response.error["field_errors"][0]["field"] == "current_password"

    def test_logout_audited(self, vault, tokens, users, db):
        assert vault.execute("auth.logout", token=tokens["alice"]).success
        with db.session_scope() as session:
            entry = session.query(AuditLogEntry).filter_by(action="logout").one()
            assert entry.user_id == users["alice"]

    def test_deactivated_token_rejected(self, vault, tokens, users, db):
        with db.session_scope() as session:
            session.get(User, users["bob"]).is_active = False
        response = vault.execute("auth.me", token=tokens["bob"])
        assert response.status_code == 401


class TestAdministration:
    def test_list_requires_privilege(self, vault, tokens):
        assert vault.execute("users.list", token=tokens["alice"]).status_code == 403

    def test_list_filters(self, vault, tokens, users, db):
        listing = vault.execute("users.list", token=tokens["manager"]).data
        assert listing["pagination"]["total"] == 4

        with db.session_scope() as session:
            session.get(User, users["bob"]).is_active = False
        active = vault.execute("users.list", token=tokens["admin"], payload={"role": "user"}).data
        assert [u["email"] for u in active["users"]] == ["alice@example.com"]

        everyone = vault.execute(
            "users.list", token=tokens["admin"], payload={"role": "user", "include_inactive": True},
        ).data
        assert everyone["pagination"]["total"] == 2

        found = vault.execute("users.list", token=tokens["admin"], payload={"search": "MANAG"}).data
        assert [u["id"] for u in found["users"]] == [users["manager"]]

    def test_view_self_or_privileged(self, vault, tokens, users):
        assert vault.execute("users.get", token=tokens["alice"], resource_id=users["alice"]).success
        assert vault.execute("users.get", token=tokens["manager"], resource_id=users["alice"]).success
        assert vault.execute("users.get", token=tokens["bob"], resource_id=users["alice"]).status_code == 403
        assert vault.execute("users.get", token=tokens["admin"], resource_id=999).status_code == 404

    def test_admin_creates_any_role(self, vault, tokens):
        response = vault.execute(
            "users.create", token=tokens["admin"],
            payload={"name": "Erin", "email": "erin@example.com", "password": "hunter22", "role": "manager"},
        )
        assert response.status_code == 201
        assert response.data["role"] == "manager"

    def test_manager_cannot_create(self, vault, tokens):
        response = vault.execute(
            "users.create", token=tokens["manager"],
            payload={"name": "Erin", "email": "erin@example.com", "password": "hunter22", "role": "user"},
        )
        assert response.status_code == 403

    def test_manager_update_drops_role(self, vault, tokens, users):
        response = vault.execute(
            "users.update", token=tokens["manager"], resource_id=users["alice"],
            payload={"role": "admin", "department": "Audit", "is_active": False},
        )
        assert response.success
        assert response.data["role"] == "user"
        assert response.data["is_active"] is True
        assert response.data["department"] == "Audit"

    def test_manager_cannot_update_admin(self, vault, tokens, users):
        response = vault.execute(
            "users.update", token=tokens["manager"], resource_id=users["admin"], payload={"phone": "1"},
        )
        assert response.status_code == 403

    def test_admin_update_role(self, vault, tokens, users):
        response = vault.execute(
            "users.update", token=tokens["admin"], resource_id=users["bob"], payload={"role": "manager"},
        )
        assert response.data["role"] == "manager"

    def test_update_email_conflict(self, vault, tokens, users):
        response = vault.execute(
            "users.update", token=tokens["admin"], resource_id=users["bob"],
            payload={"email": "alice@example.com"},
        )
        assert response.status_code == 409

    def test_user_updates_self_only(self, vault, tokens, users):
        assert vault.execute(
            "users.update", token=tokens["bob"], resource_id=users["bob"], payload={"phone": "2"},
        ).success
        assert vault.execute(
            "users.update", token=tokens["bob"], resource_id=users["alice"], payload={"phone": "2"},
        ).status_code == 403

    def test_deactivate(self, vault, tokens, users):
        response = vault.execute("users.deactivate", token=tokens["admin"], resource_id=users["bob"])
        assert response.data["is_active"] is False
        assert vault.execute("auth.me", token=tokens["bob"]).status_code == 401

    def test_cannot_deactivate_self(self, vault, tokens, users):
        response = vault.execute("users.deactivate", token=tokens["admin"], resource_id=users["admin"])
        assert response.status_code == 409

    def test_reset_password(self, vault, tokens, users):
        response = vault.execute("users.reset_password", token=tokens["manager"], resource_id=users["bob"])
        assert response.success
        temp = response.data["temp_password"]
        assert response.data["user"]["must_change_password"] is True

        login = _login(vault, "bob@example.com", password=temp)
        assert login.success
        vault.execute(
            "auth.change_password", token=login.data["token"],
            payload={"current_password": temp, "new_password": "chosen-1"},
        )
        me = vault.execute("auth.me", token=login.data["token"]).data
        assert me["must_change_password"] is False

    def test_manager_cannot_reset_admin(self, vault, tokens, users):
        response = vault.execute("users.reset_password", token=tokens["manager"], resource_id=users["admin"])
        assert response.status_code == 403

    def test_activity(self, vault, tokens, users):
        vault.execute("auth.logout", token=tokens["alice"])
        own = vault.execute("users.activity", token=tokens["alice"], resource_id=users["alice"])
        assert [e["action"] for e in own.data] == ["logout"]
        assert own.data[0]["user_name"] == "Alice"

        other = vault.execute("users.activity", token=tokens["bob"], resource_id=users["alice"])
        assert other.status_code == 403
        assert vault.execute("users.activity", token=tokens["manager"], resource_id=users["alice"]).success
