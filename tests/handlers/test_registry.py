"""
Tests for handlers/registry.py - job type dispatch table.
"""

import pytest

from handlers import build_registry
from handlers.registry import HandlerRegistry
from job_queue.models import JobType, QueueName
from validation.errors import ConfigurationError, ValidationError


def _noop(payload, ctx):
    return {}


class TestRegister:

    def test_register_and_get(self):
        registry = HandlerRegistry()
        registry.register('save-message', _noop)
        assert registry.get(JobType.SAVE_MESSAGE) is _noop
        assert 'save-message' in registry

    def test_get_unregistered_returns_none(self):
        assert HandlerRegistry().get(JobType.SAVE_MESSAGE) is None

    def test_duplicate_registration_rejected(self):
        registry = HandlerRegistry()
        registry.register(JobType.SAVE_MESSAGE, _noop)
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register(JobType.SAVE_MESSAGE, _noop)

    def test_unknown_job_type_rejected(self):
        with pytest.raises(ValidationError):
            HandlerRegistry().register('send-sms', _noop)


class TestEnsureComplete:

    def test_gap_names_missing_types(self):
        registry = HandlerRegistry()
        registry.register(JobType.SAVE_MESSAGE, _noop)
        with pytest.raises(ConfigurationError, match="send-otp-email"):
            registry.ensure_complete(list(QueueName))

    def test_complete_for_subscribed_queues(self):
        registry = HandlerRegistry()
        registry.register(JobType.SAVE_MESSAGE, _noop)
        registry.ensure_complete([QueueName.MESSAGE_PERSIST])

    def test_build_registry_covers_catalog(self, console_transport, user_store):
        registry = build_registry(console_transport, user_store)
        registry.ensure_complete(list(QueueName))
        assert registry.job_types == [JobType.SAVE_MESSAGE, JobType.SEND_OTP_EMAIL]
