"""
End-to-end job lifecycle tests.

Producer, broker, worker and handlers are all real; only the clock is fake
and mail goes to the console transport. Covers:
- waiting immediately after enqueue
- terminal failure after exactly max attempts
- success on the Nth attempt
- exponential backoff spacing between attempts
- idempotent status reads
- OTP email and save-message scenarios
- unknown job ids
"""

import pytest

from handlers.registry import HandlerRegistry
from job_queue.models import JobState, JobType, QueueName
from validation.errors import NotFoundError, TransportError
from worker.processor import JobWorker


pytestmark = pytest.mark.integration


def _flaky_worker(broker, failures):
    """Worker whose OTP handler fails `failures` times, then succeeds."""
    calls = []

    def handler(payload, ctx):
        calls.append(ctx.attempt)
        ctx.update_progress(50)
        if len(calls) <= failures:
            raise TransportError(f"attempt {len(calls)} failed")
        return {'success': True, 'messageId': f'<{ctx.job_id}@test>'}

    registry = HandlerRegistry()
    registry.register(JobType.SEND_OTP_EMAIL, handler)
    return JobWorker(broker, registry, queue_names=[QueueName.EMAIL]), calls


def _drive(worker, job_queue, clock, job_id, max_steps=20):
    history = []
    for _ in range(max_steps):
        record = job_queue.get_job(job_id)
        if record.is_terminal:
            return history
        if record.available_at > clock.now:
            clock.now = record.available_at
        processed = worker.process_next(QueueName.EMAIL, timeout=0)
        if processed is not None:
            history.append(processed)
    raise AssertionError("job did not finish")


class TestEnqueue:

    @pytest.mark.parametrize("queue,job_type,payload", [
        ('email', 'send-otp-email', {'email': 'a@b.com', 'username': 'alice', 'otp': '123456'}),
        ('message-persist', 'save-message', {'username': 'alice', 'content': 'hello'}),
    ])
    def test_waiting_before_any_worker_runs(self, job_queue, queue, job_type, payload):
        job_id = job_queue.enqueue(queue, job_type, payload)
        assert job_queue.get_state(job_id) is JobState.WAITING
        assert job_queue.get_job(job_id).attempts == 0


class TestRetries:

    def test_always_failing_job_fails_after_max_attempts(self, broker, job_queue, clock, otp_payload):
        worker, calls = _flaky_worker(broker, failures=99)
        job_id = job_queue.enqueue('email', 'send-otp-email', otp_payload)

        history = _drive(worker, job_queue, clock, job_id)

        record = job_queue.get_job(job_id)
        assert record.state is JobState.FAILED
        assert record.attempts == record.max_attempts == 3
        assert record.failure_reason == "attempt 3 failed"
        assert calls == [1, 2, 3]
        assert [h.state for h in history] == [JobState.WAITING, JobState.WAITING, JobState.FAILED]

    @pytest.mark.parametrize("n", [1, 2, 3])
    def test_success_on_nth_attempt(self, broker, job_queue, clock, otp_payload, n):
        worker, calls = _flaky_worker(broker, failures=n - 1)
        job_id = job_queue.enqueue('email', 'send-otp-email', otp_payload)

        _drive(worker, job_queue, clock, job_id)

        record = job_queue.get_job(job_id)
        assert record.state is JobState.COMPLETED
        assert record.attempts == n
        assert record.progress == 100
        assert record.result['messageId'] == f'<{job_id}@test>'

    def test_exponential_backoff_spacing(self, broker, job_queue, clock, otp_payload):
        worker, _ = _flaky_worker(broker, failures=99)
        job_id = job_queue.enqueue(
            'email', 'send-otp-email', otp_payload,
            options={'attempts': 4, 'backoff': {'type': 'exponential', 'delay': 1000}},
        )

        history = _drive(worker, job_queue, clock, job_id)

        starts = [h.last_attempt_at for h in history]
        deltas = [round(b - a, 6) for a, b in zip(starts, starts[1:])]
        assert deltas == [1.0, 2.0, 4.0]

    def test_fixed_backoff_spacing(self, broker, job_queue, clock, otp_payload):
        worker, _ = _flaky_worker(broker, failures=99)
        job_id = job_queue.enqueue(
            'email', 'send-otp-email', otp_payload,
            options={'attempts': 3, 'backoff': {'type': 'fixed', 'delay': 500}},
        )

        history = _drive(worker, job_queue, clock, job_id)

        starts = [h.last_attempt_at for h in history]
        assert [round(b - a, 6) for a, b in zip(starts, starts[1:])] == [0.5, 0.5]

    def test_attempts_never_exceed_max(self, broker, job_queue, clock, otp_payload):
        worker, calls = _flaky_worker(broker, failures=99)
        job_id = job_queue.enqueue('email', 'send-otp-email', otp_payload)
        _drive(worker, job_queue, clock, job_id)

        clock.advance(3600)
        assert worker.process_next(QueueName.EMAIL, timeout=0) is None
        assert job_queue.get_job(job_id).attempts == 3
        assert len(calls) == 3


class TestStatusReads:

    def test_repeated_reads_identical(self, broker, job_queue, clock, otp_payload):
        worker, _ = _flaky_worker(broker, failures=1)
        job_id = job_queue.enqueue('email', 'send-otp-email', otp_payload)
        worker.process_next(QueueName.EMAIL, timeout=0)

        reads = [job_queue.get_status(job_id) for _ in range(5)]
        assert all(r == reads[0] for r in reads)
        assert reads[0]['state'] == 'waiting'

    def test_unknown_job_not_found(self, job_queue):
        with pytest.raises(NotFoundError):
            job_queue.get_status("never-enqueued")

    def test_purged_job_not_found(self, broker, job_queue, worker, clock, otp_payload):
        job_id = job_queue.enqueue('email', 'send-otp-email', otp_payload)
        worker.process_next(QueueName.EMAIL, timeout=0)
        clock.advance(86401)
        broker.purge_expired(retention_seconds=86400)
        with pytest.raises(NotFoundError):
            job_queue.get_status(job_id)


class TestScenarios:

    def test_otp_email_completes_with_message_id(self, job_queue, run_until_terminal, console_transport):
        payload = {'email': 'a@b.com', 'username': 'alice', 'otp': '123456'}
        job_id = job_queue.enqueue('email', 'send-otp-email', payload)

        run_until_terminal(job_id)

        record = job_queue.get_job(job_id)
        assert record.state is JobState.COMPLETED
        assert record.result['messageId']
        sent = console_transport.outbox[-1]
        assert sent['to'] == 'a@b.com'
        assert '123456' in sent['html']
        assert sent['message_id'] == record.result['messageId']

    def test_save_message_persists(self, job_queue, run_until_terminal, user_store):
        job_id = job_queue.enqueue('message-persist', 'save-message', {'username': 'alice', 'content': 'hi'})

        run_until_terminal(job_id)

        record = job_queue.get_job(job_id)
        assert record.state is JobState.COMPLETED
        assert record.result == {'success': True, 'username': 'alice', 'type': 'user_message'}
        assert [m['content'] for m in user_store.get_messages('alice')] == ['hi']

    def test_not_accepting_user_fails_after_max_attempts(self, job_queue, run_until_terminal, user_store):
        job_id = job_queue.enqueue('message-persist', 'save-message', {'username': 'bob', 'content': 'hi'})

        history = run_until_terminal(job_id)

        record = job_queue.get_job(job_id)
        assert record.state is JobState.FAILED
        assert record.attempts == record.max_attempts
        assert len(history) == record.max_attempts
        assert "not accepting messages" in record.failure_reason
        assert user_store.get_messages('bob') == []

    def test_unknown_user_fails(self, job_queue, run_until_terminal):
        job_id = job_queue.enqueue('message-persist', 'save-message', {'username': 'carol', 'content': 'hi'})
        run_until_terminal(job_id)
        assert "User carol not found" in job_queue.get_job(job_id).failure_reason

    def test_fail_fast_stops_after_first_attempt(self, broker, job_queue, registry, clock):
        worker = JobWorker(broker, registry, fail_fast_permanent=True)
        job_id = job_queue.enqueue('message-persist', 'save-message', {'username': 'bob', 'content': 'hi'})

        processed = worker.process_next(QueueName.MESSAGE_PERSIST, timeout=0)

        assert processed.id == job_id
        assert processed.state is JobState.FAILED
        assert processed.attempts == 1


class TestPersistence:

    def test_jobs_survive_broker_restart(self, broker, job_queue, registry, clock, otp_payload):
        from job_queue.broker import Broker
        from job_queue.operations import JobQueue

        job_id = job_queue.enqueue('email', 'send-otp-email', otp_payload)

        restarted = Broker(broker.store, broker.handoff_path, clock=clock)
        worker = JobWorker(restarted, registry)
        processed = worker.process_next(QueueName.EMAIL, timeout=0)

        assert processed.id == job_id
        assert JobQueue(restarted).get_state(job_id) is JobState.COMPLETED
