"""
docvault Audit Log — Append-only trail of who did what, when, with what outcome.

Writes:
    AuditLog.record(...) never raises. Entries are pushed to a background
    queue (fire-and-forget relative to the response) and inserted in
    batches through their own session, outside the triggering operation's
    transaction. Failed batches are retried, then reported to the
    operational log. A synchronous mode writes inline (tests, CLI).

Reads:
    get_user_activity / get_resource_activity — newest first, actor name inline
    get_system_stats — per-action totals, success/failure counts, avg duration
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from docvault.audit.actions import (
    ANONYMOUS_ACTIONS,
    DETAILS_SCHEMA_VERSION,
    AuditAction,
    Outcome,
    ResourceKind,
)
from docvault.db.base import utcnow
from docvault.db.models import AuditLogEntry
from docvault.db.session import Database
from docvault.engine.logging import AsyncLogQueue, log, log_infrastructure_error

logger = logging.getLogger("docvault.audit.service")


@dataclass
class AuditRecord:
    """One pending audit entry, built at request time and written later."""

    action: str
    resource_type: str
    user_id: Optional[int] = None
    resource_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    status: str = Outcome.SUCCESS.value
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_row(self) -> AuditLogEntry:
        return AuditLogEntry(
            user_id=self.user_id,
            action=self.action,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            details=self.details,
            ip_address=self.ip_address,
            user_agent=(self.user_agent or "")[:500] or None,
            session_id=self.session_id,
            status=self.status,
            error_message=self.error_message,
            duration_ms=self.duration_ms,
            timestamp=self.timestamp,
        )


def build_details(details: Optional[Dict[str, Any]] = None, **well_known: Any) -> Dict[str, Any]:
    """Detail map stamped with the schema version. ``None`` values are dropped."""
    out: Dict[str, Any] = {"schema_version": DETAILS_SCHEMA_VERSION}
    for source in (details or {}, well_known):
        for key, value in source.items():
            if value is not None:
                out[key] = value
    return out


class AuditLog:
    """
    Audit writer and query surface.

    Usage:
        audit = AuditLog(db, async_writes=False)
        audit.record(AuditAction.LOGIN, ResourceKind.USER, user_id=None,
                     outcome=Outcome.FAILURE, error_message="Invalid credentials")
    """

    def __init__(
        self,
        db: Database,
        async_writes: bool = True,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
        write_retries: int = 3,
    ):
        self._db = db
        self._retries = write_retries
        self._queue: Optional[AsyncLogQueue] = None
        if async_writes:
            self._queue = AsyncLogQueue(
                sink=self._write_batch,
                flush_interval_ms=flush_interval_ms,
                flush_batch_size=flush_batch_size,
                max_queue_size=max_queue_size,
                retries=write_retries,
                name="docvault-audit-flush",
            )

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    @property
    def is_async(self) -> bool:
        return self._queue is not None

    def start(self) -> None:
        if self._queue is not None:
            self._queue.start()

    def stop(self) -> None:
        if self._queue is not None:
            self._queue.stop()

    def flush(self) -> None:
        """Block until every queued entry has been attempted."""
        if self._queue is not None:
            self._queue.flush()

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def record(
        self,
        action: Union[AuditAction, str],
        resource_type: Union[ResourceKind, str],
        user_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
        outcome: Union[Outcome, str] = Outcome.SUCCESS,
        error_message: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ) -> Optional[AuditRecord]:
        """
        Append an entry. Never raises.

        Returns:
            The AuditRecord handed to the writer, or None when the entry was
            skipped (no actor on an action that requires one) or could not
            be built.
        """
        try:
            action = AuditAction(action)
            resource_type = ResourceKind(resource_type)
            outcome = Outcome(outcome)

            if user_id is None and action not in ANONYMOUS_ACTIONS:
                logger.debug(f"Audit skipped: {action.value} has no actor")
                return None

            entry = AuditRecord(
                action=action.value,
                resource_type=resource_type.value,
                user_id=user_id,
                resource_id=resource_id,
                details=build_details(details),
                ip_address=ip_address,
                user_agent=user_agent,
                session_id=session_id,
                status=outcome.value,
                error_message=error_message,
                duration_ms=int(round(duration_ms)) if duration_ms is not None else None,
            )

            if self._queue is not None:
                if not self._queue.is_running:
                    self._queue.start()
                self._queue.push(entry)
            else:
                self._write_with_retry([entry])
            return entry
        except Exception as e:
            logger.error(f"Failed to create audit log: {e}")
            log(log_infrastructure_error("audit.record", e, area="audit"))
            return None

    def _write_batch(self, entries: List[AuditRecord]) -> None:
        with self._db.session_scope() as session:
            session.add_all([entry.to_row() for entry in entries])

    def _write_with_retry(self, entries: List[AuditRecord]) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(self._retries + 1):
            try:
                self._write_batch(entries)
                return
            except Exception as e:
                last_error = e
                logger.warning(f"Audit write attempt {attempt + 1} failed: {e}")
        logger.error(f"Audit write failed after {self._retries + 1} attempt(s): {last_error}")
        log(log_infrastructure_error("audit.write", last_error, area="audit"))

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    @staticmethod
    def _in_range(query, start: Optional[datetime], end: Optional[datetime]):
        if start is not None:
            query = query.filter(AuditLogEntry.timestamp >= start)
        if end is not None:
            query = query.filter(AuditLogEntry.timestamp <= end)
        return query

    def get_user_activity(
        self,
        session: Session,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        query = session.query(AuditLogEntry).filter(AuditLogEntry.user_id == user_id)
        query = self._in_range(query, start, end)
        if action:
            query = query.filter(AuditLogEntry.action == action)
        if resource_type:
            query = query.filter(AuditLogEntry.resource_type == resource_type)
        rows = (
            query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            .limit(limit)
            .all()
        )
        return [row.to_dict() for row in rows]

    def get_resource_activity(
        self,
        session: Session,
        resource_type: str,
        resource_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        query = session.query(AuditLogEntry).filter(
            AuditLogEntry.resource_type == resource_type,
            AuditLogEntry.resource_id == resource_id,
        )
        query = self._in_range(query, start, end)
        rows = (
            query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            .limit(limit)
            .all()
        )
        return [row.to_dict() for row in rows]

    def get_system_stats(
        self,
        session: Session,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Aggregate by action: total, success, failure, warning, avg duration.
        Sorted by total, busiest first.
        """
        total = func.count(AuditLogEntry.id)
        query = session.query(
            AuditLogEntry.action,
            total.label("total"),
            func.sum(case((AuditLogEntry.status == Outcome.SUCCESS.value, 1), else_=0)).label("success"),
            func.sum(case((AuditLogEntry.status == Outcome.FAILURE.value, 1), else_=0)).label("failure"),
            func.sum(case((AuditLogEntry.status == Outcome.WARNING.value, 1), else_=0)).label("warning"),
            func.avg(AuditLogEntry.duration_ms).label("avg_duration"),
        )
        query = self._in_range(query, start, end)
        rows = (
            query.group_by(AuditLogEntry.action)
            .order_by(total.desc(), AuditLogEntry.action)
            .all()
        )
        return [
            {
                "action": row.action,
                "total": int(row.total),
                "success": int(row.success or 0),
                "failure": int(row.failure or 0),
                "warning": int(row.warning or 0),
                "avg_duration_ms": round(float(row.avg_duration), 2) if row.avg_duration is not None else None,
            }
            for row in rows
        ]

    def count(self, session: Session, **filters: Any) -> int:
        query = session.query(func.count(AuditLogEntry.id))
        for key, value in filters.items():
            query = query.filter(getattr(AuditLogEntry, key) == value)
        return int(query.scalar() or 0)
