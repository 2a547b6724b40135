"""
Job Record model and job-type catalog.

A JobRecord is the durable unit of queued work. Its identity, queue, type and
payload are fixed at enqueue time; attempts, state, progress and the outcome
fields are driven forward by the worker through the state machine:

    waiting -> active -> completed
                      -> waiting   (retry, after a backoff delay)
                      -> failed    (attempts exhausted)
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from validation.errors import ValidationError


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


# Allowed forward transitions; terminal states have none
TRANSITIONS = {
    JobState.WAITING: frozenset({JobState.ACTIVE}),
    JobState.ACTIVE: frozenset({JobState.COMPLETED, JobState.WAITING, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


def can_transition(current: JobState, target: JobState) -> bool:
    return target in TRANSITIONS[current]


class QueueName(str, Enum):
    EMAIL = "email"
    MESSAGE_PERSIST = "message-persist"


class JobType(str, Enum):
    SEND_OTP_EMAIL = "send-otp-email"
    SAVE_MESSAGE = "save-message"


@dataclass(frozen=True)
class JobTypeSpec:
    """Which queue hosts a job type and which payload fields it requires."""
    job_type: JobType
    queue_name: QueueName
    required_fields: tuple


JOB_TYPES = {
    JobType.SEND_OTP_EMAIL: JobTypeSpec(
        JobType.SEND_OTP_EMAIL, QueueName.EMAIL, ('email', 'username', 'otp')
    ),
    JobType.SAVE_MESSAGE: JobTypeSpec(
        JobType.SAVE_MESSAGE, QueueName.MESSAGE_PERSIST, ('username', 'content')
    ),
}


def job_types_for_queue(queue_name: QueueName) -> list[JobType]:
    return [job_def.job_type for job_def in JOB_TYPES.values() if job_def.queue_name == queue_name]


def parse_queue_name(value: Any) -> QueueName:
    try:
        return QueueName(value)
    except ValueError:
        valid = ', '.join(q.value for q in QueueName)
        raise ValidationError(f"Unknown queue '{value}' (expected one of: {valid})") from None


def parse_job_type(value: Any) -> JobType:
    try:
        return JobType(value)
    except ValueError:
        valid = ', '.join(t.value for t in JobType)
        raise ValidationError(f"Unknown job type '{value}' (expected one of: {valid})") from None


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay rule applied between failed attempts."""
    type: str = "exponential"
    delay_ms: int = 1000

    def __post_init__(self):
        if self.type not in ("fixed", "exponential"):
            raise ValidationError(f"backoff type must be 'fixed' or 'exponential', got: {self.type}")
        if isinstance(self.delay_ms, bool) or not isinstance(self.delay_ms, int) or self.delay_ms < 0:
            raise ValidationError(f"backoff delay must be a non-negative integer, got: {self.delay_ms}")

    def to_dict(self) -> dict:
        return {'type': self.type, 'delay': self.delay_ms}

    @classmethod
    def from_dict(cls, data: dict) -> 'BackoffPolicy':
        return cls(type=data.get('type', 'exponential'), delay_ms=data.get('delay', 1000))


@dataclass(frozen=True)
class JobOptions:
    """Per-job retry policy supplied at enqueue time."""
    attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self):
        if isinstance(self.attempts, bool) or not isinstance(self.attempts, int) or self.attempts < 1:
            raise ValidationError(f"attempts must be a positive integer, got: {self.attempts}")

    @classmethod
    def from_dict(cls, data: Optional[dict], defaults: 'JobOptions') -> 'JobOptions':
        """Overlay an options mapping ({attempts, backoff: {type, delay}}) on defaults."""
        if not data:
            return defaults
        backoff = defaults.backoff
        if data.get('backoff') is not None:
            raw = data['backoff']
            if not isinstance(raw, dict):
                raise ValidationError("backoff must be an object with 'type' and 'delay'")
            backoff = BackoffPolicy(
                type=raw.get('type', backoff.type),
                delay_ms=raw.get('delay', backoff.delay_ms),
            )
        return cls(attempts=data.get('attempts', defaults.attempts), backoff=backoff)


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class JobRecord:
    """
    Durable unit of queued work and its state.

    Immutable after creation: id, queue_name, job_type, payload, max_attempts, backoff.
    """
    id: str
    queue_name: QueueName
    job_type: JobType
    payload: dict
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    attempts: int = 0
    state: JobState = JobState.WAITING
    progress: int = 0
    result: Optional[dict] = None
    failure_reason: Optional[str] = None
    last_error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    available_at: float = 0.0
    last_attempt_at: Optional[float] = None
    completed_at: Optional[float] = None
    failed_at: Optional[float] = None

    def __post_init__(self):
        if not self.available_at:
            self.available_at = self.created_at

    @classmethod
    def create(
        cls,
        queue_name: QueueName,
        job_type: JobType,
        payload: dict,
        options: JobOptions,
        now: Optional[float] = None,
    ) -> 'JobRecord':
        created = time.time() if now is None else now
        return cls(
            id=new_job_id(),
            queue_name=queue_name,
            job_type=job_type,
            payload=dict(payload),
            max_attempts=options.attempts,
            backoff=options.backoff,
            created_at=created,
            available_at=created,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_row(self) -> dict:
        """Column mapping for the jobs table."""
        return {
            'id': self.id,
            'queue_name': self.queue_name.value,
            'job_type': self.job_type.value,
            'payload': json.dumps(self.payload),
            'max_attempts': self.max_attempts,
            'backoff': json.dumps(self.backoff.to_dict()),
            'attempts': self.attempts,
            'state': self.state.value,
            'progress': self.progress,
            'result': json.dumps(self.result) if self.result is not None else None,
            'failure_reason': self.failure_reason,
            'last_error': self.last_error,
            'created_at': self.created_at,
            'available_at': self.available_at,
            'last_attempt_at': self.last_attempt_at,
            'completed_at': self.completed_at,
            'failed_at': self.failed_at,
        }

    @classmethod
    def from_row(cls, row) -> 'JobRecord':
        """Build a record from a sqlite3.Row of the jobs table."""
        return cls(
            id=row['id'],
            queue_name=QueueName(row['queue_name']),
            job_type=JobType(row['job_type']),
            payload=json.loads(row['payload']),
            max_attempts=row['max_attempts'],
            backoff=BackoffPolicy.from_dict(json.loads(row['backoff'])),
            attempts=row['attempts'],
            state=JobState(row['state']),
            progress=row['progress'],
            result=json.loads(row['result']) if row['result'] is not None else None,
            failure_reason=row['failure_reason'],
            last_error=row['last_error'],
            created_at=row['created_at'],
            available_at=row['available_at'],
            last_attempt_at=row['last_attempt_at'],
            completed_at=row['completed_at'],
            failed_at=row['failed_at'],
        )

    def to_dict(self) -> dict:
        """JSON-friendly view used by the admin endpoints."""
        return {
            'id': self.id,
            'queueName': self.queue_name.value,
            'jobType': self.job_type.value,
            'payload': self.payload,
            'attempts': self.attempts,
            'maxAttempts': self.max_attempts,
            'backoff': self.backoff.to_dict(),
            'state': self.state.value,
            'progress': self.progress,
            'result': self.result,
            'failureReason': self.failure_reason,
            'lastError': self.last_error,
            'createdAt': self.created_at,
            'availableAt': self.available_at,
            'lastAttemptAt': self.last_attempt_at,
            'completedAt': self.completed_at,
            'failedAt': self.failed_at,
        }
