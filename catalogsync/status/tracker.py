"""
Status Tracker - Progress sink and run-level busy guard

Trackers receive stage transitions (``begin``/``advance``/``complete``/``fail``)
and log events (``log_info``/``log_warning``/``log_error``). The SQLite tracker
persists both so a second process can see a running job and refuse to start.
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from catalogsync.db.connection import SQLiteConnection, quote_identifier
from catalogsync.exceptions import SyncBusyError

logger = logging.getLogger(__name__)

STATUS_COLUMNS = (
    "state", "stage", "message", "processed", "total",
    "started_at", "updated_at", "finished_at",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_status (
    job TEXT PRIMARY KEY,
    state TEXT NOT NULL DEFAULT 'idle',
    stage TEXT,
    message TEXT,
    processed INTEGER NOT NULL DEFAULT 0,
    total INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    updated_at TEXT,
    finished_at TEXT
);
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job TEXT NOT NULL,
    level TEXT NOT NULL,
    stage TEXT,
    message TEXT NOT NULL,
    context TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_log_job_level ON sync_log (job, level);
"""


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


class StatusTracker:
    """Interface for progress and event sinks. All methods are no-ops here."""

    def begin(self, stage: str, message: str = "") -> None:
        pass

    def advance(self, stage: str, data: Optional[Dict[str, Any]] = None) -> None:
        pass

    def complete(self, data: Optional[Dict[str, Any]] = None) -> None:
        pass

    def fail(self, message: str, stage: Optional[str] = None) -> None:
        pass

    def log_info(self, message: str, context: Optional[Dict[str, Any]] = None, stage: Optional[str] = None) -> None:
        pass

    def log_warning(self, message: str, context: Optional[Dict[str, Any]] = None, stage: Optional[str] = None) -> None:
        pass

    def log_error(self, message: str, context: Optional[Dict[str, Any]] = None, stage: Optional[str] = None) -> None:
        pass


class LoggingStatusTracker(StatusTracker):
    """Default sink: forwards events to the ``logging`` module."""

    def _emit(self, level: int, message: str, context: Optional[Dict[str, Any]], stage: Optional[str]) -> None:
        prefix = f"[{stage}] " if stage else ""
        suffix = f" {json.dumps(context, ensure_ascii=False, default=str)}" if context else ""
        logger.log(level, f"{prefix}{message}{suffix}")

    def begin(self, stage: str, message: str = "") -> None:
        logger.info(f"[{stage}] started {message}".rstrip())

    def advance(self, stage: str, data: Optional[Dict[str, Any]] = None) -> None:
        logger.debug(f"[{stage}] progress {data or {}}")

    def complete(self, data: Optional[Dict[str, Any]] = None) -> None:
        logger.info("Sync completed")

    def fail(self, message: str, stage: Optional[str] = None) -> None:
        self._emit(logging.ERROR, f"Sync failed: {message}", None, stage)

    def log_info(self, message, context=None, stage=None) -> None:
        self._emit(logging.INFO, message, context, stage)

    def log_warning(self, message, context=None, stage=None) -> None:
        self._emit(logging.WARNING, message, context, stage)

    def log_error(self, message, context=None, stage=None) -> None:
        self._emit(logging.ERROR, message, context, stage)


class SQLiteStatusTracker(LoggingStatusTracker):
    """
    Persists job status and an event log in a small SQLite database

    Usage:
    ```python
    tracker = SQLiteStatusTracker("db/status.db", job="catalog")
    tracker.acquire()          # raises SyncBusyError if already running
    tracker.advance("artikel", {"processed": 10, "total": 100})
    tracker.complete()
    ```
    """

    def __init__(self, path: str, job: str = "catalog", max_errors: int = 200):
        """
        Initialize tracker

        Args:
            path: Status database file
            job: Job name (one status row per job)
            max_errors: Log rows kept per job
        """
        self.path = path
        self.job = job
        self.max_errors = max(1, max_errors)

        directory = os.path.dirname(path)
        if directory and path != ":memory:":
            os.makedirs(directory, exist_ok=True)

        self.connection = SQLiteConnection(path)
        self.connection.execute_script(SCHEMA)
        self.connection.query(
            "INSERT OR IGNORE INTO sync_status (job, state) VALUES (?, 'idle')",
            (self.job,),
        )

    # ------------------------------------------------------------------
    # Busy guard
    # ------------------------------------------------------------------

    def acquire(self, message: str = "") -> None:
        """
        Mark the job as running

        Raises:
            SyncBusyError: If the job is already running
        """
        self.connection.query("BEGIN IMMEDIATE")
        try:
            state = self.connection.fetch_value(
                "SELECT state FROM sync_status WHERE job = ?", (self.job,)
            )
            if state == "running":
                raise SyncBusyError(self.job)
            self._update({
                "state": "running",
                "stage": None,
                "message": message,
                "processed": 0,
                "total": 0,
                "started_at": _now(),
                "finished_at": None,
            })
        except BaseException:
            self.connection.rollback()
            raise
        self.connection.commit()

    def reset(self) -> None:
        """Clear a stale running state."""
        self._update({"state": "idle", "stage": None, "message": "Status reset", "finished_at": None})
        logger.info(f"Status of job '{self.job}' reset")

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def begin(self, stage: str, message: str = "") -> None:
        super().begin(stage, message)
        self._update({"state": "running", "stage": stage, "message": message})

    def advance(self, stage: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().advance(stage, data)
        payload = {"stage": stage, "state": "running"}
        payload.update({k: v for k, v in (data or {}).items() if k in STATUS_COLUMNS})
        self._update(payload)

    def complete(self, data: Optional[Dict[str, Any]] = None) -> None:
        super().complete(data)
        payload = {"state": "ready", "stage": None, "message": "Sync completed", "finished_at": _now()}
        payload.update({k: v for k, v in (data or {}).items() if k in STATUS_COLUMNS})
        self._update(payload)

    def fail(self, message: str, stage: Optional[str] = None) -> None:
        super().fail(message, stage)
        self._update({"state": "error", "message": message, "stage": stage, "finished_at": _now()})

    def _update(self, data: Dict[str, Any]) -> None:
        data = dict(data)
        data["updated_at"] = _now()
        assignments = ", ".join(f"{quote_identifier(column)} = ?" for column in data)
        self.connection.query(
            f"UPDATE sync_status SET {assignments} WHERE job = ?",
            [*data.values(), self.job],
        )

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def log_event(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        stage: Optional[str] = None,
        level: str = "info",
    ) -> None:
        encoded = json.dumps(context, ensure_ascii=False, default=str) if context else None
        with self.connection.transaction():
            self.connection.query(
                "INSERT INTO sync_log (job, level, stage, message, context, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (self.job, level.lower(), stage, message, encoded, _now()),
            )
            self._enforce_limit()

    def _enforce_limit(self) -> None:
        count = int(self.connection.fetch_value(
            "SELECT COUNT(*) FROM sync_log WHERE job = ?", (self.job,), default=0
        ))
        excess = count - self.max_errors
        if excess > 0:
            self.connection.query(
                "DELETE FROM sync_log WHERE id IN ("
                "SELECT id FROM sync_log WHERE job = ? ORDER BY id ASC LIMIT ?)",
                (self.job, excess),
            )

    def log_info(self, message, context=None, stage=None) -> None:
        super().log_info(message, context, stage)
        self.log_event(message, context, stage, "info")

    def log_warning(self, message, context=None, stage=None) -> None:
        super().log_warning(message, context, stage)
        self.log_event(message, context, stage, "warning")

    def log_error(self, message, context=None, stage=None) -> None:
        super().log_error(message, context, stage)
        self.log_event(message, context, stage, "error")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        rows = self.connection.fetch_all("SELECT * FROM sync_status WHERE job = ?", (self.job,))
        if rows:
            return rows[0]
        return {"job": self.job, "state": "idle", "processed": 0, "total": 0}

    def get_logs(self, limit: int = 100, levels: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Newest log rows first; ``context`` decoded from JSON."""
        sql = "SELECT id, level, stage, message, context, created_at FROM sync_log WHERE job = ?"
        params: List[Any] = [self.job]
        if levels:
            sql += f" AND level IN ({', '.join('?' for _ in levels)})"
            params.extend(level.lower() for level in levels)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(int(limit))

        rows = self.connection.fetch_all(sql, params)
        for row in rows:
            row["context"] = json.loads(row["context"]) if row["context"] else None
        return rows

    def get_errors(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.get_logs(limit, ["error"])

    def clear_log(self) -> None:
        self.connection.query("DELETE FROM sync_log WHERE job = ?", (self.job,))

    def close(self) -> None:
        self.connection.close()
