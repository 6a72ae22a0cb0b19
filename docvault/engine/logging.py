"""
docvault Logging System — Structured JSON operational log with async queue.

Implements:
- FileLogger: Per-area, per-category log files (daily rotation)
- AsyncLogQueue: Bounded in-memory queue with background flush, reused by
  the audit writer with a different sink
- Log entry builders for each event type

The operational log is separate from the audit trail: it records what the
service did (including full infrastructure error detail), while the audit
trail records what users did.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("docvault.engine.logging")

# Valid areas and their permitted categories
AREA_CATEGORIES = {
    "documents": ["execution", "security"],
    "categories": ["execution", "security"],
    "users": ["execution", "security"],
    "auth": ["execution", "security"],
    "audit": ["execution", "security"],
    "system": ["execution", "security"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("area", "category", "data")

    def __init__(self, area: str, category: str, data: Dict[str, Any]):
        self.area = area
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-area, per-category files.
    Files rotate daily: logs/{area}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for area, categories in AREA_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / area / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of log entries, grouping by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            file_path = str(self._resolve_path(entry.area, entry.category))
            grouped[file_path].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, area: str, category: str) -> Path:
        """Resolve the log file path for today's date."""
        if area not in AREA_CATEGORIES:
            area = "system"
        today = date.today().isoformat()
        return self._log_dir / area / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def read_today(self, area: str, category: str) -> List[Dict[str, Any]]:
        """Read back today's entries for an area/category (oldest first)."""
        path = self._resolve_path(area, category)
        if not path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Items are pushed non-blocking. A background thread hands them to
    ``sink(batch)`` every flush_interval_ms OR when flush_batch_size items
    accumulate, whichever comes first. A failed batch is retried up to
    ``retries`` times before it is reported and dropped.

    The sink is any callable taking a list; FileLogger.write_batch for the
    operational log, the audit store's batch insert for the audit trail.
    """

    def __init__(
        self,
        sink: Callable[[List[Any]], None],
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
        retries: int = 0,
        name: str = "docvault-log-flush",
    ):
        self._sink = sink
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._retries = retries
        self._name = name
        self._queue: Queue[Any] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0
        self._failed_count = 0

    def start(self) -> None:
        """Start the background flush thread."""
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name=self._name,
            daemon=True,
        )
        self._flush_thread.start()
        logger.info(f"Async queue '{self._name}' started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._flush_thread = None
        self._drain()
        logger.info(
            f"Async queue '{self._name}' stopped "
            f"(dropped: {self._dropped_count}, failed: {self._failed_count})"
        )

    def push(self, item: Any) -> bool:
        """
        Push an item to the queue. Non-blocking.

        Returns:
            True if queued, False if dropped (queue full).
        """
        try:
            self._queue.put_nowait(item)
            return True
        except Full:
            self._dropped_count += 1
            logger.warning(f"Async queue '{self._name}' full, item dropped")
            return False

    def flush(self) -> None:
        """Drain the queue in the calling thread and wait for in-flight batches."""
        self._drain()
        self._queue.join()

    def _flush_loop(self) -> None:
        """Background thread: flush on interval or batch size."""
        while self._running:
            batch = self._collect_batch()
            if batch:
                self._write(batch)
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[Any]:
        """Collect up to flush_batch_size entries from the queue."""
        batch: List[Any] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
                continue

        return batch

    def _write(self, batch: List[Any]) -> None:
        """Hand a batch to the sink, retrying on failure. Marks items done."""
        try:
            for attempt in range(self._retries + 1):
                try:
                    self._sink(batch)
                    return
                except Exception as e:
                    if attempt >= self._retries:
                        self._failed_count += len(batch)
                        logger.error(
                            f"Async queue '{self._name}' flush failed after "
                            f"{attempt + 1} attempt(s), {len(batch)} item(s) lost: {e}"
                        )
                    else:
                        logger.warning(
                            f"Async queue '{self._name}' flush attempt {attempt + 1} failed: {e}"
                        )
        finally:
            for _ in batch:
                self._queue.task_done()

    def _drain(self) -> None:
        """Drain all remaining entries from the queue."""
        batch: List[Any] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            self._write(batch)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def failed_count(self) -> int:
        return self._failed_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    object_ref: str,
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "object_ref": object_ref,
    }
    if execution_id:
        entry["execution_id"] = execution_id
    if user_id is not None:
        entry["user_id"] = user_id
    entry.update(extra)
    return entry


def area_for_operation(operation_name: str) -> str:
    """'documents.upload' -> 'documents'. Unknown prefixes go to 'system'."""
    area = operation_name.split(".", 1)[0]
    return area if area in AREA_CATEGORIES else "system"


def log_operation_executed(
    operation_name: str,
    execution_id: str,
    user_id: Any,
    duration_ms: float,
    success: bool,
    status_code: int,
    resource_id: Optional[Any] = None,
    error_kind: Optional[str] = None,
) -> LogEntry:
    """Build an operation execution log entry."""
    data = _base_entry(
        event="operation_executed",
        level="INFO" if success else ("ERROR" if status_code >= 500 else "WARNING"),
        object_ref=operation_name,
        execution_id=execution_id,
        user_id=user_id,
        duration_ms=duration_ms,
        success=success,
        status_code=status_code,
    )
    if resource_id is not None:
        data["resource_id"] = resource_id
    if error_kind:
        data["error_kind"] = error_kind
    return LogEntry(area_for_operation(operation_name), "execution", data)


def log_security_event(
    event: str,
    operation_name: str,
    reason: str,
    user_id: Optional[Any] = None,
    role: Optional[str] = None,
    client_ip: Optional[str] = None,
    execution_id: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event log entry (denial, throttling, bad credential)."""
    data = _base_entry(
        event=event,
        level=level,
        object_ref=operation_name,
        execution_id=execution_id,
        user_id=user_id,
        reason=reason,
    )
    if role:
        data["role"] = role
    if client_ip:
        data["client_ip"] = client_ip
    return LogEntry(area_for_operation(operation_name), "security", data)


def log_infrastructure_error(
    object_ref: str,
    exc: BaseException,
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    area: str = "system",
) -> LogEntry:
    """Build an infrastructure error entry with the full exception detail."""
    data = _base_entry(
        event="infrastructure_error",
        level="ERROR",
        object_ref=object_ref,
        execution_id=execution_id,
        user_id=user_id,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
    )
    return LogEntry(area if area in AREA_CATEGORIES else "system", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, shutdown, config changes)."""
    data = _base_entry(
        event=event,
        level=level,
        object_ref="system",
    )
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Convenience: Global Log Queue Singleton
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize the global async log queue and the stdlib logger level."""
    global _global_queue
    logging.getLogger("docvault").setLevel(level.upper())
    file_logger = FileLogger(log_dir=log_dir)
    _global_queue = AsyncLogQueue(
        sink=file_logger.write_batch,
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push a log entry to the global queue. Non-blocking."""
    if _global_queue is None:
        logger.debug("Log queue not initialized — entry dropped")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
