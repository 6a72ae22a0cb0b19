"""
docvault Database Session Management.

Single entry point for database initialisation plus a context manager
that gives every operation exactly one session, committed on success and
rolled back on failure.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from docvault.db.base import Base, create_db_engine

logger = logging.getLogger("docvault.db.session")


class Database:
    """
    Owns the engine and the session factory.

    Usage:
        db = Database.from_url("sqlite://", create_tables=True)
        with db.session_scope() as session:
            session.add(user)
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(
        cls,
        url: str,
        create_tables: bool = False,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        pool_pre_ping: bool = True,
    ) -> "Database":
        engine = create_db_engine(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=pool_pre_ping,
        )
        db = cls(engine)
        if create_tables:
            db.create_all()
        return db

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create every table. Safe to call repeatedly."""
        # Importing models registers them on Base.metadata
        from docvault.db import models  # noqa: F401
        Base.metadata.create_all(self._engine)
        logger.info("Database tables ensured")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for DB sessions with auto-commit/rollback.

        Usage:
            with db.session_scope() as session:
                user = session.query(User).filter_by(email=email).first()
        """
        session = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        """Close the connection pool. Used during shutdown."""
        self._engine.dispose()

