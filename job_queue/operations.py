"""
Queue operations: the producer-facing and status-facing API.

JobQueue is constructed once at startup around a Broker and handed to the
Status Gateway (and to anything else that enqueues). It validates enqueue
requests, writes new waiting records, and answers job-state lookups.
Enqueue never waits for execution.
"""

from typing import Optional

from job_queue.broker import Broker
from job_queue.models import (
    JOB_TYPES,
    BackoffPolicy,
    JobOptions,
    JobRecord,
    JobState,
    QueueName,
    parse_job_type,
    parse_queue_name,
)
from shared.log import create_logger
from validation.errors import NotFoundError, ValidationError

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Queue")


def default_options_from_settings(settings) -> JobOptions:
    return JobOptions(
        attempts=settings.job_attempts,
        backoff=BackoffPolicy(type=settings.backoff_type, delay_ms=settings.backoff_delay_ms),
    )


def validate_payload(job_type, payload) -> dict:
    """
    Check a payload against its job type's required fields.

    Returns the payload restricted to known fields first, in declared order,
    followed by any extra fields as given.

    Raises:
        ValidationError: payload empty, not a mapping, or missing a required field
    """
    job_def = JOB_TYPES[job_type]
    if not isinstance(payload, dict) or not payload:
        raise ValidationError(f"Payload for '{job_type.value}' must be a non-empty object")

    missing = [name for name in job_def.required_fields if not payload.get(name)]
    if missing:
        raise ValidationError(
            f"{', '.join(job_def.required_fields)} are required "
            f"(missing: {', '.join(missing)})"
        )

    ordered = {name: payload[name] for name in job_def.required_fields}
    ordered.update((k, v) for k, v in payload.items() if k not in ordered)
    return ordered


class JobQueue:
    """
    Enqueue and look up jobs.

    Args:
        broker: Broker the records are written to and read from
        default_options: Retry policy for enqueues that don't supply one
    """

    def __init__(self, broker: Broker, default_options: Optional[JobOptions] = None):
        self.broker = broker
        self.default_options = default_options or JobOptions()

    def enqueue(self, queue_name, job_type, payload: dict, options: Optional[dict] = None) -> str:
        """
        Enqueue a job.

        Args:
            queue_name: Target queue ('email' or 'message-persist')
            job_type: Job type hosted by that queue
            payload: Named fields required by the job type
            options: Optional {attempts, backoff: {type, delay}} overriding defaults

        Returns:
            The new job id (state 'waiting', attempts 0)

        Raises:
            ValidationError: unknown queue/job type, job type not hosted by the
                queue, bad options, or missing payload fields

        Example:
            >>> job_id = queue.enqueue('email', 'send-otp-email',
            ...                        {'email': 'a@b.com', 'username': 'alice', 'otp': '123456'})
        """
        queue_name = parse_queue_name(queue_name)
        job_type = parse_job_type(job_type)
        job_def = JOB_TYPES[job_type]
        if job_def.queue_name != queue_name:
            raise ValidationError(
                f"Job type '{job_type.value}' is not handled by queue '{queue_name.value}'"
            )

        clean_payload = validate_payload(job_type, payload)
        job_options = JobOptions.from_dict(options, self.default_options)

        record = JobRecord.create(queue_name, job_type, clean_payload, job_options, now=self.broker.now())
        self.broker.push(queue_name, record)
        log_debug(f"Enqueued {job_type.value} job {record.id} on {queue_name.value}")
        return record.id

    def get_job(self, job_id: str) -> JobRecord:
        """
        Fetch a job record.

        Raises:
            NotFoundError: id was never enqueued, or its record was purged
        """
        record = self.broker.peek(job_id) if job_id else None
        if record is None:
            raise NotFoundError(f"Job {job_id} not found")
        return record

    def get_state(self, job_id: str) -> JobState:
        return self.get_job(job_id).state

    def get_status(self, job_id: str) -> dict:
        """Status view returned by the gateway: {jobId, queueName, state, progress}."""
        record = self.get_job(job_id)
        return {
            'jobId': record.id,
            'queueName': record.queue_name.value,
            'state': record.state.value,
            'progress': record.progress,
        }

    def list_jobs(self, queue_name, state=None, limit: int = 50) -> list[JobRecord]:
        queue_name = parse_queue_name(queue_name)
        if state is not None:
            try:
                state = JobState(state)
            except ValueError:
                raise ValidationError(f"Unknown job state '{state}'") from None
        return self.broker.store.list_jobs(queue_name, state, limit=limit)

    def stats(self) -> dict:
        """Counts per queue and state, e.g. {'email': {'waiting': 1, ...}, ...}"""
        return {name.value: self.broker.counts(name) for name in QueueName}
