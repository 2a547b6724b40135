"""
Validation module for the queue server.

Provides the error taxonomy, transient/permanent error classification,
and configuration validation.
"""

from validation.errors import (
    QueueError,
    TransientError,
    PermanentError,
    ValidationError,
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    classify_exception,
    classify_smtp_code,
)
from validation.config import QueueSettings, get_settings

__all__ = [
    'QueueError',
    'TransientError',
    'PermanentError',
    'ValidationError',
    'ConfigurationError',
    'NotFoundError',
    'PermissionDeniedError',
    'TransportError',
    'classify_exception',
    'classify_smtp_code',
    'QueueSettings',
    'get_settings',
]
