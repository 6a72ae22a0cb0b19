"""
docvault Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Every test gets its own in-memory SQLite database, a temporary blob root,
a synchronous audit writer and an in-process rate limiter. Nothing here
touches Redis or a server database.
"""

from __future__ import annotations

import io
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

PASSWORD = "secret123"

# name -> (role, department)
SEED_USERS = {
    "admin": ("admin", None),
    "manager": ("manager", "Finance"),
    "alice": ("user", "Finance"),
    "bob": ("user", "Legal"),
}


# ---------------------------------------------------------------------------
# Global singletons
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_config():
    """Reset the cached config between tests."""
    import docvault.engine.config as cfg_mod

    cfg_mod.reset_config()
    yield
    cfg_mod.reset_config()


# ---------------------------------------------------------------------------
# Core components
# ---------------------------------------------------------------------------

@pytest.fixture
def config(tmp_path):
    from docvault.engine.config import (
        AuditConfig,
        DatabaseConfig,
        DocVaultConfig,
        LoggingConfig,
        RedisConfig,
        SecurityConfig,
        StorageConfig,
    )

    return DocVaultConfig(
        environment="dev",
        database=DatabaseConfig(url="sqlite://"),
        redis=RedisConfig(enabled=False),
        security=SecurityConfig(token_secret="test-secret", bcrypt_rounds=4),
        storage=StorageConfig(root=str(tmp_path / "blobs")),
        audit=AuditConfig(async_writes=False, write_retries=0),
        logging=LoggingConfig(directory=str(tmp_path / "logs")),
    )


@pytest.fixture
def db():
    from docvault.db.session import Database

    database = Database.from_url("sqlite://", create_tables=True)
    yield database
    database.dispose()


@pytest.fixture
def store(tmp_path):
    from docvault.storage.local import LocalBlobStore

    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def vault(config, db, store):
    """A DocVault wired to the test database and blob root."""
    from docvault.app import DocVault

    instance = DocVault(config, db=db, store=store)
    yield instance
    instance.shutdown()


@pytest.fixture
def users(db) -> Dict[str, int]:
    """Seed one identity per role (plus a second plain user). Returns name -> id."""
    from docvault.db.models import User
    from docvault.engine.security import hash_password

    ids: Dict[str, int] = {}
    password_hash = hash_password(PASSWORD, rounds=4)
    with db.session_scope() as session:
        for name, (role, department) in SEED_USERS.items():
            user = User(
                name=name.title(),
                email=f"{name}@example.com",
                password_hash=password_hash,
                role=role,
                department=department,
                is_active=True,
            )
            session.add(user)
            session.flush()
            ids[name] = user.id
    return ids


@pytest.fixture
def tokens(vault, users) -> Dict[str, str]:
    """Bearer tokens for the seeded identities."""
    return {
        name: vault.tokens.issue(users[name], SEED_USERS[name][0])
        for name in SEED_USERS
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _incoming(data: bytes, name: str, mime_type: str = None):
    from docvault.documents.service import IncomingFile

    return IncomingFile(io.BytesIO(data), name, mime_type=mime_type, size=len(data))


@pytest.fixture
def incoming():
    """Build an IncomingFile from bytes."""
    return _incoming


@pytest.fixture
def blob_files(store):
    """List the files currently under the blob root."""

    def _files():
        return [p for p in store.root.rglob("*") if p.is_file()]

    return _files


@pytest.fixture
def make_category(vault, tokens):
    """Create a category through the operation surface. Returns its dict."""

    def _make(name: str = "General", token: str = None, **fields: Any) -> Dict[str, Any]:
        payload = {"name": name, "requires_approval": True}
        payload.update(fields)
        response = vault.execute(
            "categories.create",
            token=token or tokens["admin"],
            payload=payload,
        )
        assert response.success, response.error
        return response.data

    return _make


@pytest.fixture
def upload_file(vault):
    """Upload through the operation surface. Returns the OperationResponse."""

    def _upload(
        token: str,
        category_id: int,
        data: bytes = b"hello docvault\n",
        name: str = "notes.txt",
        title: str = "Notes",
        **fields: Any,
    ):
        payload = {
            "file": _incoming(data, name),
            "title": title,
            "category_id": category_id,
        }
        payload.update(fields)
        return vault.execute("documents.upload", token=token, payload=payload)

    return _upload


@pytest.fixture
def mock_redis():
    """Return a mock Redis client whose pipeline reports a window count."""
    client = MagicMock()
    client.ping.return_value = True
    pipe = MagicMock()
    pipe.execute.return_value = [0, 1, 1, [("m", 0.0)], True]
    client.pipeline.return_value = pipe
    return client
