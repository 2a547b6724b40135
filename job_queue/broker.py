"""
Durable broker: persist-queue handoff plus the SQLite job record store.

Each named queue is a SQLiteAckQueue table whose items only point at a job
record ({job_id, queue_name, available_at}). The record in JobStore is
authoritative for state; the handoff queue gives consumers at-least-once
delivery that survives process restarts (unacked items are resumed on open).

Claiming is a compare-and-swap on the record, so a duplicated or stale handoff
item can never produce a second concurrent execution: it is acknowledged and
dropped instead.
"""

import os
import threading
import time
from typing import Callable, Optional

import persistqueue
from persistqueue.exceptions import Empty

from job_queue.models import JobRecord, JobState, QueueName
from job_queue.store import JobStore
from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Broker")

STALLED_REASON = "job stalled more than allowable limit"


def _table_name(queue_name: QueueName) -> str:
    # persist-queue interpolates the name into its table name
    return queue_name.value.replace('-', '_')


class Broker:
    """
    Durable store of pending work grouped into named queues.

    Args:
        store: JobStore holding the records
        handoff_path: Directory for the persist-queue database
        poll_interval: Default pop_blocking timeout, and sleep between scans
            when every pending item is still inside its backoff delay
        clock: Wall clock used for availability checks and timestamps
    """

    def __init__(
        self,
        store: JobStore,
        handoff_path: str,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.handoff_path = handoff_path
        self.poll_interval = poll_interval
        self._clock = clock
        os.makedirs(handoff_path, exist_ok=True)
        self._queues = {
            name: persistqueue.SQLiteAckQueue(
                handoff_path,
                name=_table_name(name),
                multithreading=True,
                auto_resume=True,
            )
            for name in QueueName
        }
        # job_id -> (queue_name, handoff row id) for records this process claimed
        self._inflight: dict = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> 'Broker':
        return cls(
            JobStore(settings.jobs_db_path),
            settings.handoff_path,
            poll_interval=settings.poll_interval,
        )

    def now(self) -> float:
        """Current time on the broker's clock."""
        return self._clock()

    def _handoff(self, queue_name: QueueName) -> 'persistqueue.SQLiteAckQueue':
        return self._queues[QueueName(queue_name)]

    def _put_item(self, queue_name: QueueName, job_id: str, available_at: float):
        self._handoff(queue_name).put({
            'job_id': job_id,
            'queue_name': QueueName(queue_name).value,
            'available_at': available_at,
        })

    def _take_inflight(self, job_id: str):
        with self._lock:
            return self._inflight.pop(job_id, None)

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def push(self, queue_name: QueueName, record: JobRecord) -> None:
        """Persist a new record and make it visible to consumers of its queue."""
        self.store.insert(record)
        self._put_item(queue_name, record.id, record.available_at)
        log_trace(f"Pushed job {record.id} to {QueueName(queue_name).value}")

    def peek(self, job_id: str) -> Optional[JobRecord]:
        return self.store.get(job_id)

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    def pop_blocking(self, queue_name: QueueName, timeout: Optional[float] = None) -> Optional[JobRecord]:
        """
        Claim the next available job on a queue.

        Blocks up to timeout seconds (default poll_interval; 0 = single pass,
        non-blocking). Returns the claimed record, already active with its
        attempt counted, or None if nothing became available in time.
        """
        queue_name = QueueName(queue_name)
        handoff = self._handoff(queue_name)
        if timeout is None:
            timeout = self.poll_interval
        deadline = time.monotonic() + timeout
        rotated = 0

        while True:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                if remaining > 0:
                    raw = handoff.get(block=True, timeout=remaining, raw=True)
                else:
                    raw = handoff.get(block=False, raw=True)
            except Empty:
                return None

            pqid = raw['pqid']
            item = raw['data']
            job_id = item.get('job_id')
            now = self._clock()
            record = self.store.get(job_id) if job_id else None

            if record is None or record.state != JobState.WAITING:
                # Purged, already claimed elsewhere, or a duplicate left by a crash
                handoff.ack(id=pqid)
                log_trace(f"Dropped stale handoff item for job {job_id}")
                continue

            if record.available_at > now:
                # Backoff not elapsed: rotate to the tail so later jobs aren't starved
                self._put_item(queue_name, job_id, record.available_at)
                handoff.ack(id=pqid)
                rotated += 1
                if rotated > handoff.size:
                    if remaining <= 0:
                        return None
                    time.sleep(min(self.poll_interval, remaining, record.available_at - now))
                    rotated = 0
                continue

            claimed = self.store.claim(job_id, now=now)
            if claimed is None:
                handoff.ack(id=pqid)
                continue

            with self._lock:
                self._inflight[job_id] = (queue_name, pqid)
            log_trace(f"Claimed job {job_id} (attempt {claimed.attempts}/{claimed.max_attempts})")
            return claimed

    def update_progress(self, job_id: str, progress: int) -> bool:
        return self.store.update_progress(job_id, progress)

    def ack(self, job_id: str, result: Optional[dict] = None) -> bool:
        """Mark a claimed job completed and remove it from pending."""
        updated = self.store.mark_completed(job_id, result, now=self._clock())
        entry = self._take_inflight(job_id)
        if entry is not None:
            queue_name, pqid = entry
            self._handoff(queue_name).ack(id=pqid)
        if not updated:
            log_warn(f"Job {job_id} was not active when acknowledged")
        return updated

    def nack(self, job_id: str, retry_delay_ms: int, error: Optional[str] = None) -> bool:
        """Return a claimed job to waiting; it becomes claimable after retry_delay_ms."""
        available_at = self._clock() + retry_delay_ms / 1000.0
        updated = self.store.mark_retry(job_id, available_at, error=error)
        entry = self._take_inflight(job_id)
        if updated:
            record = self.store.get(job_id)
            # New item first, then ack the old one: a crash in between duplicates, never loses
            self._put_item(record.queue_name, job_id, available_at)
        else:
            log_warn(f"Job {job_id} could not be returned to waiting")
        if entry is not None:
            queue_name, pqid = entry
            self._handoff(queue_name).ack(id=pqid)
        return updated

    def release(self, job_id: str) -> bool:
        """
        Drop this process's claim on a job it cannot resolve.

        The record stays active, so requeue_stalled picks it up once the
        lease expires. Returns False if the job was not claimed here.
        """
        entry = self._take_inflight(job_id)
        if entry is None:
            return False
        queue_name, pqid = entry
        self._handoff(queue_name).ack(id=pqid)
        log_warn(f"Released claim on job {job_id}; left for stalled-job recovery")
        return True

    def fail(self, job_id: str, reason: str) -> bool:
        """Mark a claimed job terminally failed."""
        updated = self.store.mark_failed(job_id, reason, now=self._clock())
        entry = self._take_inflight(job_id)
        if entry is not None:
            queue_name, pqid = entry
            self._handoff(queue_name).ack_failed(id=pqid)
        return updated

    # -------------------------------------------------------------------------
    # Maintenance and inspection
    # -------------------------------------------------------------------------

    def requeue_stalled(self, lease_seconds: float) -> int:
        """
        Recover jobs whose worker disappeared mid-attempt.

        Records active for longer than lease_seconds go back to waiting when
        attempts remain, otherwise they fail. Returns how many were handled.

        Known limitation: a job still running in another process past the
        lease is requeued and can be claimed a second time.
        """
        now = self._clock()
        handled = 0
        for record in self.store.find_stalled(now - lease_seconds):
            with self._lock:
                if record.id in self._inflight:
                    # Still running in this process
                    continue
            if record.attempts < record.max_attempts:
                if self.store.mark_retry(record.id, now, error=STALLED_REASON):
                    self._put_item(record.queue_name, record.id, now)
                    log_warn(f"Job {record.id} stalled, returned to waiting")
                    handled += 1
            elif self.store.mark_failed(record.id, STALLED_REASON, now=now):
                log_warn(f"Job {record.id} stalled on its last attempt, marked failed")
                handled += 1
        return handled

    def purge_expired(self, retention_seconds: float) -> int:
        """Drop terminal records past retention and compact acked and failed handoff rows."""
        deleted = self.store.purge_terminal(self._clock() - retention_seconds)
        for handoff in self._queues.values():
            # Resolved rows carry nothing the job records lack
            handoff.clear_acked_data(keep_latest=0, clear_ack_failed=True)
        return deleted

    def pending_count(self, queue_name: QueueName) -> int:
        return self._handoff(queue_name).size

    def counts(self, queue_name: QueueName) -> dict:
        return self.store.count_by_state(QueueName(queue_name))
