"""SQLite implementation of JobRepository.

This module provides the embedded job store used for local runs and tests.
It reproduces the contract of the PostgreSQL stored procedure
``update_task_status_with_outbox`` in a single transaction:

- the job row is updated and an outbox event is appended together
- BEGIN IMMEDIATE takes the write lock up front
- a repeat of the current status with the same output is a no-op
- transitions that break the state machine are rejected
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlite_utils import Database

from ..errors import InvalidStateTransitionError, JobNotFoundError, RepositoryError
from .backends import JobRepository
from .models import Job, JobStatus, JobUpdate


SCHEMA_SQL = """
-- Conversion tasks (one row per job)
CREATE TABLE IF NOT EXISTS conversion_tasks (
    id TEXT PRIMARY KEY,
    input_path TEXT NOT NULL,
    mimetype TEXT NOT NULL,
    format TEXT NOT NULL,
    status TEXT NOT NULL,
    output_path TEXT,
    file_name TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON conversion_tasks(status);

-- Outbox (one row per externally visible status change)
CREATE TABLE IF NOT EXISTS outbox_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    aggregate_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    event_data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    processed INTEGER DEFAULT 0,
    FOREIGN KEY(aggregate_id) REFERENCES conversion_tasks(id)
);

CREATE INDEX IF NOT EXISTS idx_outbox_unprocessed ON outbox_events(processed, id);
"""


class SQLiteJobRepository(JobRepository):
    """SQLite-based job store with outbox semantics.

    Features:
    - WAL mode for concurrent readers
    - One connection shared by all workers, serialized by a lock
    - Atomic status update + outbox append
    - Idempotent repeats of the same transition
    """

    def __init__(self, db_path: str, logger: Optional[logging.Logger] = None):
        """Initialize job store.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
            logger: Logger for this repository (default: module logger)

        Creates schema if database doesn't exist.
        """
        self.logger = logger or logging.getLogger(__name__)
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        self.db = Database(conn)
        self._lock = threading.Lock()

        self.db.conn.execute("PRAGMA journal_mode=WAL")
        self.db.conn.execute("PRAGMA synchronous=NORMAL")
        self.db.conn.commit()

        self.db.executescript(SCHEMA_SQL)

    def create_job(self, job: Job) -> None:
        """Insert a pending job (what the producer does before enqueueing)."""
        now = datetime.now().isoformat()
        with self._lock:
            try:
                with self.db.conn:
                    self.db.conn.execute("""
                        INSERT INTO conversion_tasks
                            (id, input_path, mimetype, format, status, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                    """, (
                        job.job_id,
                        job.input_path,
                        job.media_type,
                        job.format,
                        JobStatus.PENDING.value,
                        now,
                        now,
                    ))
            except sqlite3.Error as e:
                raise RepositoryError(f"failed to create job {job.job_id}: {e}") from e

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        output: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> None:
        update = JobUpdate(job_id=job_id, status=status, output=output, file_name=file_name)

        with self._lock:
            try:
                with self.db.conn:
                    self.db.conn.execute("BEGIN IMMEDIATE")
                    try:
                        self._apply_update(update)
                    except Exception:
                        self.db.conn.rollback()
                        raise
            except sqlite3.Error as e:
                raise RepositoryError(f"failed to update job status for {job_id}: {e}") from e

    def _apply_update(self, update: JobUpdate) -> None:
        """Body of the transaction; caller holds the write lock."""
        row = self.db.conn.execute(
            "SELECT status, output_path, file_name FROM conversion_tasks WHERE id = ?",
            (update.job_id,),
        ).fetchone()

        if row is None:
            raise JobNotFoundError(update.job_id)

        current = JobStatus(row[0])
        if current == update.status and row[1] == update.output and row[2] == update.file_name:
            # Same transition replayed
            self.db.conn.commit()
            return

        if not current.can_transition_to(update.status):
            raise InvalidStateTransitionError(update.job_id, current.value, update.status.value)

        now = datetime.now().isoformat()
        self.db.conn.execute("""
            UPDATE conversion_tasks
            SET status = ?, output_path = ?, file_name = ?, updated_at = ?
            WHERE id = ?
        """, (update.status.value, update.output, update.file_name, now, update.job_id))

        event_data = {
            "id": update.job_id,
            "status": update.status.value,
            "output": update.output,
        }
        self.db.conn.execute("""
            INSERT INTO outbox_events (aggregate_id, event_type, event_data, created_at)
            VALUES (?, ?, ?, ?)
        """, (update.job_id, f"task.{update.status.value}", json.dumps(event_data), now))

        self.db.conn.commit()

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            rows = list(self.db["conversion_tasks"].rows_where("id = ?", [job_id]))

        if not rows:
            raise JobNotFoundError(job_id)

        row = rows[0]
        return Job(
            job_id=row["id"],
            input_path=row["input_path"],
            media_type=row["mimetype"],
            format=row["format"],
            status=JobStatus(row["status"]),
            output_path=row["output_path"],
            file_name=row["file_name"],
        )

    def get_events(self, job_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return outbox events in insertion order, optionally for one job."""
        with self._lock:
            if job_id:
                rows = self.db["outbox_events"].rows_where(
                    "aggregate_id = ?", [job_id], order_by="id"
                )
            else:
                rows = self.db["outbox_events"].rows_where(order_by="id")
            events = []
            for row in rows:
                event = dict(row)
                event["event_data"] = json.loads(event["event_data"])
                events.append(event)
        return events

    def ping(self) -> None:
        with self._lock:
            try:
                self.db.conn.execute("SELECT 1").fetchone()
            except sqlite3.Error as e:
                raise RepositoryError(f"ping failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            self.db.conn.close()
