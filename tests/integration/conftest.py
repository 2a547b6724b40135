"""
Integration test fixtures for the job lifecycle.

These fixtures compose the unit fixtures from tests/conftest.py into a
producer (JobQueue), a worker with the real handlers and a console mail
transport, all sharing one broker and one fake clock.

All integration tests should be marked with @pytest.mark.integration
"""

import pytest

from job_queue.models import JobState


@pytest.fixture
def run_until_terminal(worker, job_queue, clock):
    """
    Drive a job to a terminal state with the worker, advancing the fake clock
    past each backoff delay instead of sleeping.

    Returns the list of records observed after each attempt.

    Usage:
        def test_flow(run_until_terminal, job_queue):
            job_id = job_queue.enqueue(...)
            history = run_until_terminal(job_id)
    """

    def _run(job_id, max_steps=20):
        history = []
        for _ in range(max_steps):
            record = job_queue.get_job(job_id)
            if record.is_terminal:
                return history
            if record.state is JobState.WAITING and record.available_at > clock.now:
                clock.now = record.available_at
            processed = worker.process_next(record.queue_name, timeout=0)
            if processed is not None:
                history.append(processed)
        raise AssertionError(f"Job {job_id} did not reach a terminal state")

    return _run
