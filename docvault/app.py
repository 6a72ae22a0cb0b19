"""
docvault Application — Wires configuration, storage, security and services.

Ties together:
- Database (SQLAlchemy)
- LocalBlobStore (document versions on disk)
- RateLimiter (Redis sliding window, in-memory fallback)
- TokenService / Authenticator (PyJWT)
- AuditLog (background writer)
- AuthorizationGate
- Category / Document / User services
- OperationExecutor (the gated handler chain)

Lifecycle:
    vault = DocVault(get_config())
    vault.start()      # operational log queue + audit writer
    response = vault.execute("documents.list", OperationRequest(token=...))
    vault.shutdown()   # flush audit + logs, close connections
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from docvault import operations  # noqa: F401  (registers every operation)
from docvault.audit.service import AuditLog
from docvault.categories.service import CategoryService
from docvault.db.models import User
from docvault.db.session import Database
from docvault.documents.service import DocumentService
from docvault.engine.cache import RedisWindowStore, create_window_store
from docvault.engine.config import DocVaultConfig, get_config
from docvault.engine.executor import OperationExecutor, OperationRequest, OperationResponse
from docvault.engine.gate import AuthorizationGate
from docvault.engine.logging import init_logging, log, log_system_event, shutdown_logging
from docvault.engine.ratelimit import (
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
    rules_from_config,
)
from docvault.engine.registry import OperationRegistry
from docvault.engine.security import Authenticator, TokenService, hash_password
from docvault.storage.local import LocalBlobStore
from docvault.users.service import UserService, normalize_email

logger = logging.getLogger("docvault.app")


@dataclass
class Services:
    """Everything an operation handler may reach through ``call.services``."""

    config: DocVaultConfig
    gate: AuthorizationGate
    store: LocalBlobStore
    audit: AuditLog
    users: UserService
    categories: CategoryService
    documents: DocumentService


class DocVault:
    """
    Single entry point for running operations.

    Collaborators left as None are built from the config. Tests pass an
    in-memory database, a temporary blob root and an InMemoryRateLimiter.
    """

    def __init__(
        self,
        config: Optional[DocVaultConfig] = None,
        db: Optional[Database] = None,
        store: Optional[LocalBlobStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        audit: Optional[AuditLog] = None,
        registry: Optional[OperationRegistry] = None,
    ):
        self.config = config or get_config()
        cfg = self.config

        self.db = db or Database.from_url(
            cfg.database.url,
            create_tables=cfg.database.create_tables,
            pool_size=cfg.database.pool_size,
            max_overflow=cfg.database.max_overflow,
            pool_timeout=cfg.database.pool_timeout,
            pool_recycle=cfg.database.pool_recycle,
            pool_pre_ping=cfg.database.pool_pre_ping,
        )
        self._owns_db = db is None
        self.store = store or LocalBlobStore(cfg.storage.root, chunk_size=cfg.storage.chunk_size)

        self._window_store: Optional[RedisWindowStore] = None
        self.rate_limiter = rate_limiter or self._build_rate_limiter()

        self.tokens = TokenService(
            secret=cfg.security.token_secret,
            algorithm=cfg.security.token_algorithm,
            lifetime=timedelta(days=cfg.security.token_lifetime_days),
        )
        self.authenticator = Authenticator(self.tokens)
        self.gate = AuthorizationGate()
        self.audit = audit or AuditLog(
            self.db,
            async_writes=cfg.audit.async_writes,
            flush_interval_ms=cfg.audit.flush_interval_ms,
            flush_batch_size=cfg.audit.flush_batch_size,
            max_queue_size=cfg.audit.max_queue_size,
            write_retries=cfg.audit.write_retries,
        )

        categories = CategoryService(self.gate, default_max_file_size=cfg.uploads.default_max_file_size)
        self.services = Services(
            config=cfg,
            gate=self.gate,
            store=self.store,
            audit=self.audit,
            users=UserService(
                self.gate,
                self.tokens,
                bcrypt_rounds=cfg.security.bcrypt_rounds,
                password_min_length=cfg.security.password_min_length,
            ),
            categories=categories,
            documents=DocumentService(self.store, self.gate, categories),
        )
        self.executor = OperationExecutor(
            db=self.db,
            authenticator=self.authenticator,
            gate=self.gate,
            rate_limiter=self.rate_limiter,
            audit=self.audit,
            services=self.services,
            registry=registry,
        )
        self._started = False

    def _build_rate_limiter(self) -> RateLimiter:
        rules = rules_from_config(self.config.rate_limits)
        if not self.config.redis.enabled:
            return InMemoryRateLimiter(rules)
        try:
            self._window_store = create_window_store(self.config.redis.url)
        except Exception as e:
            logger.warning(f"Redis connection failed (rate limits held in process): {e}")
            return InMemoryRateLimiter(rules)
        return RedisRateLimiter(self._window_store, rules)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            logger.warning("DocVault already started")
            return
        cfg = self.config
        init_logging(log_dir=cfg.logging.directory, level=cfg.logging.level)
        self.audit.start()
        self._started = True
        log(log_system_event("platform_started", details={
            "environment": cfg.environment,
            "operations": len(self.executor.registry),
            "rate_limiter": type(self.rate_limiter).__name__,
        }))
        logger.info("DocVault started")

    def shutdown(self) -> None:
        """Flush the audit writer and the operational log, close connections."""
        self.audit.flush()
        self.audit.stop()
        if self._started:
            log(log_system_event("platform_shutdown"))
            shutdown_logging()
        if self._window_store is not None:
            self._window_store.close()
        if self._owns_db:
            self.db.dispose()
        self._started = False
        logger.info("DocVault shut down")

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def execute(self, name: str, request: Optional[OperationRequest] = None, **fields: Any) -> OperationResponse:
        """
        Run one operation.

        ``fields`` is a shortcut for building the request inline:
            vault.execute("documents.get", token=t, resource_id=5)
        """
        if request is None:
            request = OperationRequest(**fields)
        return self.executor.execute(name, request)

    def ensure_admin(self, email: str, password: str, name: str = "Administrator") -> Dict[str, Any]:
        """Create the first admin identity if it does not exist yet."""
        with self.db.session_scope() as session:
            existing = session.query(User).filter(User.email == normalize_email(email)).first()
            if existing is not None:
                return {"created": False, "user": existing.to_dict()}
            user = User(
                name=name,
                email=normalize_email(email),
                password_hash=hash_password(password, rounds=self.config.security.bcrypt_rounds),
                role="admin",
                is_active=True,
            )
            session.add(user)
            session.flush()
            logger.info(f"Admin identity created: {user.email}")
            return {"created": True, "user": user.to_dict()}
