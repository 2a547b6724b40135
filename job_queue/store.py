"""
SQLite-backed job record store.

Holds the authoritative state of every JobRecord. All state transitions are
conditional UPDATEs (compare-and-swap on the current state), so concurrent
workers, in one process or several sharing the database file, can never both
own the same record or move a terminal record backwards.
"""

import json
import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from job_queue.models import JobRecord, JobState, QueueName
from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Store")

_COLUMNS = (
    'id', 'queue_name', 'job_type', 'payload', 'max_attempts', 'backoff',
    'attempts', 'state', 'progress', 'result', 'failure_reason', 'last_error',
    'created_at', 'available_at', 'last_attempt_at', 'completed_at', 'failed_at',
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    queue_name TEXT NOT NULL,
    job_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    max_attempts INTEGER NOT NULL,
    backoff TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    state TEXT NOT NULL,
    progress INTEGER NOT NULL DEFAULT 0,
    result TEXT,
    failure_reason TEXT,
    last_error TEXT,
    created_at REAL NOT NULL,
    available_at REAL NOT NULL,
    last_attempt_at REAL,
    completed_at REAL,
    failed_at REAL
);
CREATE INDEX IF NOT EXISTS idx_jobs_queue_state ON jobs(queue_name, state);
CREATE INDEX IF NOT EXISTS idx_jobs_state_finished ON jobs(state, completed_at, failed_at);
"""


class JobStore:
    """
    Job record table in a single SQLite database file.

    Each operation opens its own connection, so one store instance can be
    shared by the gateway's request threads and every worker thread.
    """

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_schema(self):
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

    def _fetch(self, conn: sqlite3.Connection, job_id: str) -> Optional[JobRecord]:
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return JobRecord.from_row(row) if row else None

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def insert(self, record: JobRecord) -> None:
        """Persist a new record; committed before this returns."""
        row = record.to_row()
        placeholders = ', '.join('?' for _ in _COLUMNS)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in _COLUMNS),
            )
        log_trace(f"Inserted job {record.id} ({record.job_type.value})")

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._connect() as conn:
            return self._fetch(conn, job_id)

    def list_jobs(
        self,
        queue_name: Optional[QueueName] = None,
        state: Optional[JobState] = None,
        limit: int = 50,
    ) -> list[JobRecord]:
        """Most recently created records first."""
        clauses = []
        params: list = []
        if queue_name is not None:
            clauses.append("queue_name = ?")
            params.append(queue_name.value)
        if state is not None:
            clauses.append("state = ?")
            params.append(state.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs {where} ORDER BY created_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [JobRecord.from_row(r) for r in rows]

    def count_by_state(self, queue_name: QueueName) -> dict:
        counts = {s.value: 0 for s in JobState}
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT state, COUNT(*) AS c FROM jobs WHERE queue_name = ? GROUP BY state",
                (queue_name.value,),
            )
            for row in cursor:
                counts[row['state']] = row['c']
        return counts

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def claim(self, job_id: str, now: Optional[float] = None) -> Optional[JobRecord]:
        """
        Move a waiting record to active for the caller.

        Increments attempts, resets progress and stamps last_attempt_at.
        Returns the claimed record, or None if the record is not claimable
        (unknown, not waiting, backoff not elapsed, attempts exhausted, or
        another consumer won the race).
        """
        now = time.time() if now is None else now
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE jobs
                   SET state = ?, attempts = attempts + 1, progress = 0, last_attempt_at = ?
                   WHERE id = ? AND state = ? AND available_at <= ? AND attempts < max_attempts""",
                (JobState.ACTIVE.value, now, job_id, JobState.WAITING.value, now),
            )
            if cursor.rowcount != 1:
                return None
            return self._fetch(conn, job_id)

    def update_progress(self, job_id: str, progress: int) -> bool:
        """
        Record handler progress for an active job.

        Progress never decreases within an attempt; a lower value is ignored.
        Returns True if the stored value changed.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET progress = ? WHERE id = ? AND state = ? AND progress < ?",
                (progress, job_id, JobState.ACTIVE.value, progress),
            )
            return cursor.rowcount == 1

    def mark_completed(self, job_id: str, result: Optional[dict], now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE jobs
                   SET state = ?, result = ?, progress = 100, completed_at = ?
                   WHERE id = ? AND state = ?""",
                (
                    JobState.COMPLETED.value,
                    json.dumps(result) if result is not None else None,
                    now,
                    job_id,
                    JobState.ACTIVE.value,
                ),
            )
            return cursor.rowcount == 1

    def mark_retry(self, job_id: str, available_at: float, error: Optional[str] = None) -> bool:
        """Return an active record to waiting, claimable again at available_at."""
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE jobs
                   SET state = ?, available_at = ?, last_error = COALESCE(?, last_error)
                   WHERE id = ? AND state = ? AND attempts < max_attempts""",
                (JobState.WAITING.value, available_at, error, job_id, JobState.ACTIVE.value),
            )
            return cursor.rowcount == 1

    def mark_failed(self, job_id: str, reason: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE jobs
                   SET state = ?, failure_reason = ?, last_error = ?, failed_at = ?
                   WHERE id = ? AND state = ?""",
                (JobState.FAILED.value, reason, reason, now, job_id, JobState.ACTIVE.value),
            )
            return cursor.rowcount == 1

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def find_stalled(self, started_before: float) -> list[JobRecord]:
        """Active records whose current attempt started before the given time."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE state = ? AND last_attempt_at < ?",
                (JobState.ACTIVE.value, started_before),
            ).fetchall()
        return [JobRecord.from_row(r) for r in rows]

    def purge_terminal(self, finished_before: float) -> int:
        """Delete completed/failed records that finished before the cutoff."""
        with self._connect() as conn:
            cursor = conn.execute(
                """DELETE FROM jobs
                   WHERE (state = ? AND completed_at < ?)
                      OR (state = ? AND failed_at < ?)""",
                (JobState.COMPLETED.value, finished_before, JobState.FAILED.value, finished_before),
            )
            deleted = cursor.rowcount
        if deleted:
            log_debug(f"Purged {deleted} terminal job record(s)")
        return deleted
