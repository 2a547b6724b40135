"""
Tests for job_queue/models.py - JobRecord, state machine, policies, catalog.
"""

import pytest

from job_queue.models import (
    JOB_TYPES,
    BackoffPolicy,
    JobOptions,
    JobRecord,
    JobState,
    JobType,
    QueueName,
    can_transition,
    job_types_for_queue,
    parse_job_type,
    parse_queue_name,
)
from validation.errors import ValidationError


class TestStateMachine:
    """Tests for JobState transitions."""

    @pytest.mark.parametrize("current,target", [
        (JobState.WAITING, JobState.ACTIVE),
        (JobState.ACTIVE, JobState.COMPLETED),
        (JobState.ACTIVE, JobState.WAITING),
        (JobState.ACTIVE, JobState.FAILED),
    ])
    def test_forward_transitions_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("terminal", [JobState.COMPLETED, JobState.FAILED])
    @pytest.mark.parametrize("target", list(JobState))
    def test_terminal_states_have_no_transitions(self, terminal, target):
        assert not can_transition(terminal, target)

    def test_waiting_cannot_complete_directly(self):
        assert not can_transition(JobState.WAITING, JobState.COMPLETED)

    def test_is_terminal(self):
        assert JobState.COMPLETED.is_terminal
        assert JobState.FAILED.is_terminal
        assert not JobState.WAITING.is_terminal
        assert not JobState.ACTIVE.is_terminal


class TestCatalog:
    """Tests for the job-type catalog."""

    def test_email_queue_hosts_otp(self):
        assert job_types_for_queue(QueueName.EMAIL) == [JobType.SEND_OTP_EMAIL]

    def test_message_queue_hosts_save_message(self):
        assert job_types_for_queue(QueueName.MESSAGE_PERSIST) == [JobType.SAVE_MESSAGE]

    def test_required_fields(self):
        assert JOB_TYPES[JobType.SEND_OTP_EMAIL].required_fields == ('email', 'username', 'otp')
        assert JOB_TYPES[JobType.SAVE_MESSAGE].required_fields == ('username', 'content')

    def test_parse_queue_name(self):
        assert parse_queue_name("message-persist") is QueueName.MESSAGE_PERSIST

    def test_parse_unknown_queue_raises_validation_error(self):
        with pytest.raises(ValidationError, match="Unknown queue 'sms'"):
            parse_queue_name("sms")

    def test_parse_unknown_job_type_raises_validation_error(self):
        with pytest.raises(ValidationError, match="Unknown job type"):
            parse_job_type("send-sms")


class TestPolicies:
    """Tests for BackoffPolicy and JobOptions."""

    def test_backoff_defaults(self):
        policy = BackoffPolicy()
        assert policy.type == "exponential"
        assert policy.delay_ms == 1000

    def test_backoff_dict_uses_delay_key(self):
        assert BackoffPolicy("fixed", 250).to_dict() == {'type': 'fixed', 'delay': 250}
        assert BackoffPolicy.from_dict({'type': 'fixed', 'delay': 250}) == BackoffPolicy("fixed", 250)

    def test_unknown_backoff_type_rejected(self):
        with pytest.raises(ValidationError):
            BackoffPolicy("linear", 1000)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValidationError):
            BackoffPolicy("fixed", -5)

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            JobOptions(attempts=0)

    @pytest.mark.parametrize("value", [True, False])
    def test_bool_attempts_rejected(self, value):
        with pytest.raises(ValidationError):
            JobOptions(attempts=value)

    def test_bool_delay_rejected(self):
        with pytest.raises(ValidationError):
            BackoffPolicy("fixed", True)

    def test_from_dict_none_returns_defaults(self):
        defaults = JobOptions(attempts=4)
        assert JobOptions.from_dict(None, defaults) is defaults

    def test_from_dict_overlays_defaults(self):
        defaults = JobOptions(attempts=3, backoff=BackoffPolicy("exponential", 1000))
        options = JobOptions.from_dict({'backoff': {'delay': 50}}, defaults)
        assert options.attempts == 3
        assert options.backoff == BackoffPolicy("exponential", 50)

    def test_from_dict_rejects_non_mapping_backoff(self):
        with pytest.raises(ValidationError):
            JobOptions.from_dict({'backoff': 'fast'}, JobOptions())


class TestJobRecord:
    """Tests for JobRecord creation and serialization."""

    def test_create_starts_waiting_with_zero_attempts(self):
        record = JobRecord.create(
            QueueName.EMAIL, JobType.SEND_OTP_EMAIL,
            {'email': 'a@b.com', 'username': 'alice', 'otp': '1'},
            JobOptions(attempts=3), now=100.0,
        )
        assert record.state is JobState.WAITING
        assert record.attempts == 0
        assert record.progress == 0
        assert record.max_attempts == 3
        assert record.created_at == 100.0
        assert record.available_at == 100.0
        assert record.result is None
        assert record.failure_reason is None

    def test_ids_are_unique_hex(self):
        options = JobOptions()
        ids = {
            JobRecord.create(QueueName.EMAIL, JobType.SEND_OTP_EMAIL, {'x': 1}, options).id
            for _ in range(50)
        }
        assert len(ids) == 50
        assert all(len(i) == 32 for i in ids)

    def test_payload_copied(self):
        payload = {'username': 'alice', 'content': 'hi'}
        record = JobRecord.create(QueueName.MESSAGE_PERSIST, JobType.SAVE_MESSAGE, payload, JobOptions())
        payload['content'] = 'changed'
        assert record.payload['content'] == 'hi'

    def test_to_dict_uses_camel_case(self):
        record = JobRecord.create(QueueName.EMAIL, JobType.SEND_OTP_EMAIL, {'a': 1}, JobOptions())
        data = record.to_dict()
        assert data['queueName'] == 'email'
        assert data['jobType'] == 'send-otp-email'
        assert data['maxAttempts'] == 3
        assert data['state'] == 'waiting'
        assert 'failureReason' in data
