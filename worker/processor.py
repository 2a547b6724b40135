"""
Background worker for processing queued jobs.

Implements reliable job processing with acknowledgment workflow:
- Claims one job at a time per thread from the broker
- Dispatches to the handler registered for the job's type
- Acknowledges successful jobs with the handler's result
- Retries failures with the job's backoff policy until attempts run out
- Marks jobs failed once attempts are exhausted
"""

import json
import threading
import time
from typing import Iterable, Optional

from handlers.registry import HandlerRegistry
from job_queue.broker import Broker
from job_queue.models import JobRecord, QueueName
from shared.log import create_logger
from validation.errors import PermanentError, classify_exception
from worker.backoff import calculate_delay
from worker.stats import WorkerStats

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Worker")


class JobContext:
    """
    Handle given to a handler for the job it is executing.

    Progress writes go straight to the job record, so the Status Gateway sees
    them as soon as update_progress returns.
    """

    def __init__(self, broker: Broker, job: JobRecord):
        self._broker = broker
        self.job = job

    @property
    def job_id(self) -> str:
        return self.job.id

    @property
    def attempt(self) -> int:
        return self.job.attempts

    def update_progress(self, progress: int) -> None:
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValueError(f"progress must be an integer 0-100, got {progress!r}")
        if self._broker.update_progress(self.job.id, progress):
            self.job.progress = progress


class JobWorker:
    """
    Background worker that processes jobs from one or more queues.

    Runs `concurrency` daemon threads per queue; each thread executes one job
    at a time. Outcomes:
    - Success: ack with the handler result (state completed)
    - Failure with attempts left: nack with backoff delay (state waiting)
    - Failure on the last attempt: fail (state failed)
    """

    def __init__(
        self,
        broker: Broker,
        registry: HandlerRegistry,
        queue_names: Optional[Iterable[QueueName]] = None,
        concurrency: int = 1,
        poll_interval: float = 1.0,
        active_lease_seconds: float = 300.0,
        retention_seconds: float = 86400.0,
        maintenance_interval: float = 60.0,
        fail_fast_permanent: bool = False,
    ):
        """
        Initialize worker.

        Args:
            broker: Broker to claim jobs from
            registry: Handlers for every job type on the subscribed queues
            queue_names: Queues to consume (default: all)
            concurrency: Threads per queue
            poll_interval: Seconds each claim blocks waiting for a job
            active_lease_seconds: Age after which an active job counts as stalled
            retention_seconds: How long terminal records stay queryable
            maintenance_interval: Seconds between stalled-job and retention sweeps
            fail_fast_permanent: Fail permanent errors without using remaining attempts

        Raises:
            ConfigurationError: a job type on a subscribed queue has no handler
        """
        self.broker = broker
        self.registry = registry
        self.queue_names = [QueueName(q) for q in (queue_names or list(QueueName))]
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.active_lease_seconds = active_lease_seconds
        self.retention_seconds = retention_seconds
        self.maintenance_interval = maintenance_interval
        self.fail_fast_permanent = fail_fast_permanent

        self.registry.ensure_complete(self.queue_names)

        self.running = False
        self.threads: list[threading.Thread] = []
        self._stats = WorkerStats()
        self._stats_lock = threading.Lock()
        self._maintenance_lock = threading.Lock()
        self._last_maintenance = 0.0
        self._jobs_since_summary = 0
        self._summary_interval = 10  # Log a summary every 10 jobs

    @classmethod
    def from_settings(cls, broker: Broker, registry: HandlerRegistry, settings, queue_names=None) -> 'JobWorker':
        return cls(
            broker,
            registry,
            queue_names=queue_names,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.poll_interval,
            active_lease_seconds=settings.active_lease_seconds,
            retention_seconds=settings.retention_seconds,
            maintenance_interval=settings.maintenance_interval,
            fail_fast_permanent=settings.fail_fast_permanent,
        )

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    def start(self):
        """Start the background worker threads"""
        if self.running:
            log_trace("Already running")
            return

        self.run_maintenance(force=True)

        self.running = True
        for queue_name in self.queue_names:
            for slot in range(self.concurrency):
                thread = threading.Thread(
                    target=self._worker_loop,
                    args=(queue_name,),
                    name=f"worker-{queue_name.value}-{slot + 1}",
                    daemon=True,
                )
                thread.start()
                self.threads.append(thread)
        log_info(
            f"Started {len(self.threads)} thread(s) on "
            f"{', '.join(q.value for q in self.queue_names)}"
        )

    def stop(self, timeout: float = 10.0):
        """Stop the background worker threads, letting current jobs finish."""
        if not self.running:
            return

        log_trace("Stopping worker...")
        self.running = False

        for thread in self.threads:
            # Give current job time to finish (claim timeout + processing)
            thread.join(timeout=timeout)
            if thread.is_alive():
                log_warn(f"{thread.name} did not stop within {timeout}s; its job will be recovered as stalled")
        self.threads = []
        log_info(f"Worker stopped. Stats: {json.dumps(self._stats.to_dict())}")

    def run_maintenance(self, force: bool = False) -> None:
        """Recover stalled jobs and purge expired records, at most once per interval."""
        now = time.monotonic()
        with self._maintenance_lock:
            if not force and now - self._last_maintenance < self.maintenance_interval:
                return
            self._last_maintenance = now

        recovered = self.broker.requeue_stalled(self.active_lease_seconds)
        if recovered:
            log_warn(f"Recovered {recovered} stalled job(s)")
        purged = self.broker.purge_expired(self.retention_seconds)
        if purged:
            log_debug(f"Purged {purged} expired job record(s)")

    def _worker_loop(self, queue_name: QueueName):
        """Main worker loop - runs in background thread"""
        while self.running:
            try:
                self.run_maintenance()
                self.process_next(queue_name, timeout=self.poll_interval)
            except Exception as e:
                # Worker loop error: log and continue
                log_error(f"Worker loop error on {queue_name.value}: {e}")
                time.sleep(1)  # Avoid tight loop on persistent errors

    def process_next(self, queue_name: QueueName, timeout: Optional[float] = None) -> Optional[JobRecord]:
        """
        Claim and execute one job from a queue.

        Args:
            queue_name: Queue to claim from
            timeout: Seconds to wait for a job (0 = non-blocking)

        Returns:
            The job record after resolution, or None if no job was available
        """
        job = self.broker.pop_blocking(queue_name, timeout=timeout)
        if job is None:
            return None
        try:
            self._execute(job)
        except Exception:
            # Could not record an outcome: leave the job to stalled-job recovery
            self.broker.release(job.id)
            raise
        return self.broker.peek(job.id)

    def _execute(self, job: JobRecord) -> None:
        """Run the handler for a claimed job and resolve its state."""
        log_debug(
            f"Processing {job.job_type.value} job {job.id} "
            f"(attempt {job.attempts}/{job.max_attempts})"
        )
        ctx = JobContext(self.broker, job)
        _job_start = time.perf_counter()
        try:
            handler = self.registry.get(job.job_type)
            if handler is None:
                raise PermanentError(f"No handler registered for job type {job.job_type.value}")
            result = handler(dict(job.payload), ctx)
        except Exception as e:
            self._handle_failure(job, e, time.perf_counter() - _job_start)
        else:
            _job_elapsed = time.perf_counter() - _job_start
            try:
                self.broker.ack(job.id, result)
            except Exception as e:
                log_error(f"Job {job.id} result could not be stored: {e}")
                self._handle_failure(job, e, _job_elapsed)
            else:
                with self._stats_lock:
                    self._stats.record_success(_job_elapsed, job_type=job.job_type.value)
                log_info(f"Job {job.id} completed")
        self._maybe_log_summary()

    def _handle_failure(self, job: JobRecord, error: Exception, elapsed: float) -> None:
        """Turn a handler exception into a retry or a terminal failure."""
        reason = str(error) or type(error).__name__
        error_type = type(error).__name__

        permanent = self.fail_fast_permanent and classify_exception(error) is PermanentError
        if permanent or job.attempts >= job.max_attempts:
            self.broker.fail(job.id, reason)
            with self._stats_lock:
                self._stats.record_failure(error_type, elapsed, retried=False)
            if permanent:
                log_warn(f"Job {job.id} permanent failure, not retrying: {reason}")
            else:
                log_warn(f"Job {job.id} failed after {job.attempts} attempt(s): {reason}")
            return

        delay_ms = calculate_delay(job.attempts, job.backoff)
        self.broker.nack(job.id, delay_ms, error=reason)
        with self._stats_lock:
            self._stats.record_failure(error_type, elapsed, retried=True)
        log_debug(
            f"Job {job.id} failed (attempt {job.attempts}/{job.max_attempts}), "
            f"retry in {delay_ms}ms: {reason}"
        )

    def _maybe_log_summary(self):
        """Log periodic summary of job outcomes with JSON stats."""
        with self._stats_lock:
            self._jobs_since_summary += 1
            if self._jobs_since_summary < self._summary_interval:
                return
            self._jobs_since_summary = 0
            stats = self._stats
            summary = stats.to_dict()
            line = (
                f"Job summary: {stats.jobs_succeeded}/{stats.jobs_processed} attempts succeeded "
                f"({stats.success_rate:.1f}%), avg {stats.avg_processing_time*1000:.0f}ms"
            )
        log_info(line)
        log_info(f"Stats: {json.dumps(summary)}")
