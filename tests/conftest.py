"""
Shared pytest fixtures for feedback-queue tests.

Provides reusable fixtures for:
- A controllable clock, so backoff and retention are tested without sleeping
- Real JobStore / Broker / JobQueue instances on SQLite files in tmp_path
- Console mail transport and a populated user store
- Handler registry and worker wired together

Broker fixtures use the real persist-queue SQLiteAckQueue; nothing outside
tmp_path is touched.
"""

import time

import pytest


class FakeClock:
    """Callable wall clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = time.time() if start is None else start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


# =============================================================================
# Broker / queue fixtures
# =============================================================================

@pytest.fixture
def clock():
    """FakeClock starting at the current wall time."""
    return FakeClock()


@pytest.fixture
def job_store(tmp_path):
    """JobStore on a fresh SQLite file."""
    from job_queue.store import JobStore

    return JobStore(str(tmp_path / "jobs.db"))


@pytest.fixture
def broker(job_store, tmp_path, clock):
    """
    Broker backed by real SQLiteAckQueue tables and the fake clock.

    Usage:
        def test_claim(broker, clock):
            clock.advance(1.0)  # move past a backoff delay
    """
    from job_queue.broker import Broker

    return Broker(job_store, str(tmp_path / "queue"), poll_interval=0.05, clock=clock)


@pytest.fixture
def job_queue(broker):
    """JobQueue with the default policy: 3 attempts, exponential 1000ms."""
    from job_queue.operations import JobQueue

    return JobQueue(broker)


@pytest.fixture
def otp_payload():
    return {'email': 'a@b.com', 'username': 'alice', 'otp': '123456'}


@pytest.fixture
def message_payload():
    return {'username': 'alice', 'content': 'Great talk!'}


# =============================================================================
# Collaborator fixtures
# =============================================================================

@pytest.fixture
def console_transport():
    """ConsoleTransport keeping every sent message in .outbox."""
    from mailer.transport import ConsoleTransport

    return ConsoleTransport(sender="Feedback App <noreply@example.com>")


@pytest.fixture
def user_store(tmp_path):
    """
    UserStore with two users:
        - alice: accepting messages
        - bob: not accepting messages
    """
    from users.store import UserStore

    store = UserStore(str(tmp_path / "users.db"))
    store.create_user("alice", "alice@example.com", is_accepting_messages=True)
    store.create_user("bob", "bob@example.com", is_accepting_messages=False)
    return store


@pytest.fixture
def registry(console_transport, user_store):
    """Registry with the real handlers for every job type."""
    from handlers import build_registry

    return build_registry(console_transport, user_store)


@pytest.fixture
def worker(broker, registry):
    """JobWorker over all queues; tests drive it with process_next()."""
    from worker.processor import JobWorker

    return JobWorker(broker, registry, poll_interval=0.05)


@pytest.fixture
def mock_ctx():
    """Stand-in for JobContext that records progress updates."""

    class _Ctx:
        job_id = "job-1"
        attempt = 1

        def __init__(self):
            self.progress = []

        def update_progress(self, value):
            self.progress.append(value)

    return _Ctx()
