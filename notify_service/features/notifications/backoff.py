"""Exponential backoff for failed deliveries."""

from __future__ import annotations

from datetime import datetime, timedelta

DEFAULT_BASE_DELAY = timedelta(minutes=1)
DEFAULT_MAX_DELAY = timedelta(hours=1)


def compute_backoff(
    retry_count: int,
    *,
    base_delay: timedelta = DEFAULT_BASE_DELAY,
    max_delay: timedelta = DEFAULT_MAX_DELAY,
) -> timedelta:
    """Delay before the next attempt: ``min(base * 2**retry_count, max)``.

    Args:
        retry_count: Failures recorded before this one (0 for the first).
        base_delay: Delay for the first retry.
        max_delay: Upper bound.

    Returns:
        Positive delay, 1, 2, 4, 8 ... minutes with the defaults.
    """
    if retry_count < 0:
        msg = "retry_count cannot be negative"
        raise ValueError(msg)
    # Cap the exponent so huge counts cannot overflow timedelta
    exponent = min(retry_count, 32)
    return min(base_delay * (2**exponent), max_delay)


def next_retry_at(
    retry_count: int,
    failed_at: datetime,
    *,
    base_delay: timedelta = DEFAULT_BASE_DELAY,
    max_delay: timedelta = DEFAULT_MAX_DELAY,
) -> datetime:
    """Absolute time of the next attempt, always after ``failed_at``."""
    return failed_at + compute_backoff(retry_count, base_delay=base_delay, max_delay=max_delay)
