"""
Capped exponential backoff shared by the resync processor and the webhook
dispatcher. The result is stored as ``next_retry_at`` on the row, so a
restart never forgets a pending delay.
"""
from datetime import datetime, timedelta

from app.core.clock import utcnow


def calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Calculate exponential backoff seconds with a hard upper bound.

        backoff = base_seconds * (2 ** retry_count)

    The result is capped at max_backoff_seconds and avoids computing huge
    powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # Smallest retry_count whose multiplier reaches ceil(max/base), found
    # without evaluating 2**retry_count.
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    is_power_of_two = (required_multiplier & (required_multiplier - 1)) == 0
    threshold = required_multiplier.bit_length() - 1
    if not is_power_of_two:
        threshold += 1

    if retry_count >= threshold:
        return max_backoff_seconds

    backoff = base_seconds * (1 << retry_count)
    return min(backoff, max_backoff_seconds)


def next_retry_at(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
    now: datetime | None = None,
) -> datetime:
    """Absolute time of the next attempt after ``retry_count`` prior failures"""
    delay = calculate_backoff_seconds(
        retry_count,
        base_seconds=base_seconds,
        max_backoff_seconds=max_backoff_seconds,
    )
    return (now or utcnow()) + timedelta(seconds=delay)
