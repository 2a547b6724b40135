"""
Job handlers and the registry that dispatches to them.
"""

from handlers.email import make_send_otp_email
from handlers.messages import make_save_message
from handlers.registry import Handler, HandlerRegistry
from job_queue.models import JobType


def build_registry(transport, user_store) -> HandlerRegistry:
    """Registry with a handler for every job type in the catalog."""
    registry = HandlerRegistry()
    registry.register(JobType.SEND_OTP_EMAIL, make_send_otp_email(transport))
    registry.register(JobType.SAVE_MESSAGE, make_save_message(user_store))
    return registry


__all__ = [
    'Handler',
    'HandlerRegistry',
    'build_registry',
    'make_send_otp_email',
    'make_save_message',
]
