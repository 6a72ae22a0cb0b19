"""
docvault Database Base — SQLAlchemy declarative base, mixins and engine factory.

Provides:
- Base: SQLAlchemy declarative base for all docvault models
- TimestampMixin: created_at, updated_at
- AuditMixin: timestamps plus created_by
- SoftDeleteMixin: is_deleted, deleted_at, deleted_by
- create_db_engine: engine construction that understands SQLite test URLs
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, Integer, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all docvault models."""
    pass


class TimestampMixin:
    """Adds created_at, updated_at columns."""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


class AuditMixin(TimestampMixin):
    """Adds created_by on top of the timestamps."""
    created_by = Column(Integer, nullable=True)


class SoftDeleteMixin:
    """Adds is_deleted, deleted_at, deleted_by columns for soft delete support."""
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, nullable=True)


def create_db_engine(
    url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    **kwargs: Any,
) -> Engine:
    """
    Build an engine for ``url``.

    SQLite URLs (used by tests and the CLI's local mode) get a StaticPool
    and cross-thread access so an in-memory database is shared by the
    audit writer thread; pool sizing only applies to server databases.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            **kwargs,
        )
    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        **kwargs,
    )
