"""
Worker statistics.

Counters for one worker process, summarised in the logs every few jobs.
"""

import time
from dataclasses import dataclass, field


@dataclass
class WorkerStats:
    """Running totals of job outcomes for this worker process."""
    jobs_processed: int = 0
    jobs_succeeded: int = 0
    jobs_failed: int = 0
    jobs_retried: int = 0
    total_processing_time: float = 0.0
    errors_by_type: dict = field(default_factory=dict)
    jobs_by_type: dict = field(default_factory=dict)
    session_start: float = field(default_factory=time.time)

    def record_success(self, processing_time: float, job_type: str = "") -> None:
        self.jobs_processed += 1
        self.jobs_succeeded += 1
        self.total_processing_time += processing_time
        if job_type:
            self.jobs_by_type[job_type] = self.jobs_by_type.get(job_type, 0) + 1

    def record_failure(self, error_type: str, processing_time: float, retried: bool = False) -> None:
        """
        Record a failed attempt.

        retried=True means another attempt was scheduled; otherwise the job
        reached its terminal failed state.
        """
        self.jobs_processed += 1
        self.total_processing_time += processing_time
        self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1
        if retried:
            self.jobs_retried += 1
        else:
            self.jobs_failed += 1

    @property
    def success_rate(self) -> float:
        if self.jobs_processed == 0:
            return 0.0
        return self.jobs_succeeded / self.jobs_processed * 100.0

    @property
    def avg_processing_time(self) -> float:
        if self.jobs_processed == 0:
            return 0.0
        return self.total_processing_time / self.jobs_processed

    def to_dict(self) -> dict:
        return {
            "processed": self.jobs_processed,
            "succeeded": self.jobs_succeeded,
            "failed": self.jobs_failed,
            "retried": self.jobs_retried,
            "success_rate": f"{self.success_rate:.1f}%",
            "avg_time_ms": int(self.avg_processing_time * 1000),
            "errors_by_type": dict(self.errors_by_type),
            "jobs_by_type": dict(self.jobs_by_type),
            "uptime_seconds": int(time.time() - self.session_start),
        }
