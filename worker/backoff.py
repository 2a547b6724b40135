"""
Retry delay calculation.

Delays are deterministic so the spacing between attempts can be asserted from
the records alone: exponential backoff waits delay_ms * 2^(attempts-1) after
the attempts-th failure, fixed backoff always waits delay_ms.
"""

from job_queue.models import BackoffPolicy


def calculate_delay(attempts: int, policy: BackoffPolicy) -> int:
    """
    Delay in milliseconds before the next attempt.

    Args:
        attempts: Attempts made so far, including the one that just failed (>= 1)
        policy: Backoff policy stored on the job

    Returns:
        Delay in milliseconds

    Examples:
        >>> calculate_delay(1, BackoffPolicy('exponential', 1000))
        1000
        >>> calculate_delay(3, BackoffPolicy('exponential', 1000))
        4000
        >>> calculate_delay(3, BackoffPolicy('fixed', 1000))
        1000
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    if policy.type == "fixed":
        return policy.delay_ms
    return policy.delay_ms * 2 ** (attempts - 1)
