"""
Error taxonomy and classification for the job queue.

Errors raised synchronously to callers of the Status Gateway (bad enqueue
requests, unknown job ids) and errors raised inside handlers share one base,
QueueError. Handler failures are additionally marked transient or permanent so
the worker can decide whether another attempt could change the outcome.
"""

import logging
import smtplib
from typing import Optional, Type


# Module logger
logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Base class for every error raised by the queue server."""
    pass


class TransientError(QueueError):
    """Retry-able errors (network, timeout, SMTP 4xx)"""
    pass


class PermanentError(QueueError):
    """Non-retry-able errors (missing records, disabled inbox, bad data)"""
    pass


class ValidationError(QueueError):
    """Enqueue request is missing required fields or names an unknown queue/job type."""
    pass


class ConfigurationError(QueueError):
    """Worker or gateway was wired up inconsistently (e.g. a job type with no handler)."""
    pass


class NotFoundError(PermanentError):
    """Unknown job id, or a handler could not find the record it addresses."""
    pass


class PermissionDeniedError(PermanentError):
    """The addressed user is not accepting messages."""
    pass


class TransportError(TransientError):
    """Mail transport failed to hand off a message."""

    def __init__(self, message: str, smtp_code: Optional[int] = None):
        super().__init__(message)
        self.smtp_code = smtp_code


def classify_smtp_code(smtp_code: int) -> Type[Exception]:
    """
    Classify an SMTP reply code as transient or permanent error.

    Args:
        smtp_code: Reply code from the mail server

    Returns:
        TransientError class for 4xx replies (mailbox busy, rate limited)
        PermanentError class for 5xx replies (rejected recipient, auth failure)
    """
    if 500 <= smtp_code < 600:
        logger.debug(f"SMTP {smtp_code} classified as permanent")
        return PermanentError

    logger.debug(f"SMTP {smtp_code} classified as transient")
    return TransientError


def classify_exception(exc: Exception) -> Type[Exception]:
    """
    Classify an exception as transient or permanent error.

    Handles various exception types:
    - Transport errors carrying an SMTP reply code: classified by code
    - Already classified: Return same type
    - SMTP protocol errors: classified by reply code when present
    - Network errors: Transient (ConnectionError, TimeoutError, OSError)
    - Validation errors: Permanent (ValueError, TypeError, KeyError, AttributeError)
    - Unknown: Transient (safer, allows retry)

    Args:
        exc: The exception to classify

    Returns:
        TransientError class for retry-able errors
        PermanentError class for non-retry-able errors
    """
    if isinstance(exc, TransportError) and exc.smtp_code is not None:
        return classify_smtp_code(exc.smtp_code)

    # Check if already classified
    if isinstance(exc, TransientError):
        logger.debug(f"Exception already TransientError: {exc}")
        return TransientError

    if isinstance(exc, PermanentError):
        logger.debug(f"Exception already PermanentError: {exc}")
        return PermanentError

    if isinstance(exc, smtplib.SMTPResponseException):
        return classify_smtp_code(exc.smtp_code)

    # Network errors are transient (connectivity, timeout)
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        logger.debug(f"Network error classified as transient: {type(exc).__name__}")
        return TransientError

    # Validation/data errors are permanent (won't fix with retry)
    if isinstance(exc, (ValueError, TypeError, KeyError, AttributeError)):
        logger.debug(f"Validation error classified as permanent: {type(exc).__name__}")
        return PermanentError

    # Unknown errors default to transient (safer, allows retry)
    logger.debug(f"Unknown exception classified as transient: {type(exc).__name__}")
    return TransientError
