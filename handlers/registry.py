"""
Job type -> handler dispatch table.

Handlers are plain callables ``handler(payload, ctx) -> dict`` where ctx is the
worker's JobContext (progress reporting). Dispatch is on job type, never on
queue, because a queue may host several job types.
"""

from typing import Callable, Iterable, Optional

from job_queue.models import JobType, QueueName, job_types_for_queue, parse_job_type
from validation.errors import ConfigurationError

Handler = Callable[[dict, 'JobContext'], Optional[dict]]


class HandlerRegistry:
    """Maps each JobType to the function that executes it."""

    def __init__(self):
        self._handlers: dict = {}

    def register(self, job_type, handler: Handler) -> None:
        job_type = parse_job_type(job_type)
        if job_type in self._handlers:
            raise ConfigurationError(f"Handler for '{job_type.value}' already registered")
        self._handlers[job_type] = handler

    def get(self, job_type) -> Optional[Handler]:
        return self._handlers.get(JobType(job_type))

    def __contains__(self, job_type) -> bool:
        return JobType(job_type) in self._handlers

    @property
    def job_types(self) -> list:
        return sorted(self._handlers, key=lambda t: t.value)

    def ensure_complete(self, queue_names: Iterable[QueueName]) -> None:
        """
        Fail fast if any job type hosted by the given queues has no handler.

        Raises:
            ConfigurationError: listing every unregistered job type
        """
        missing = [
            job_type.value
            for queue_name in queue_names
            for job_type in job_types_for_queue(QueueName(queue_name))
            if job_type not in self._handlers
        ]
        if missing:
            raise ConfigurationError(f"No handler registered for job type(s): {', '.join(missing)}")
