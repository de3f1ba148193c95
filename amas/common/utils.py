"""
Common utility functions for the decision engine.

Time handling lives here so every component agrees on timezone-aware UTC
timestamps and on the ``YYYY-MM-DD`` day buckets used by the metrics store.
"""

import datetime
from typing import Optional, Union


def utc_now() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Attach UTC to naive datetimes and convert aware ones to UTC.

    Args:
        value: Datetime to normalise

    Returns:
        Timezone-aware UTC datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def elapsed_seconds(start: Optional[datetime.datetime], end: datetime.datetime) -> float:
    """
    Seconds between ``start`` and ``end``, floored at zero.

    A missing ``start`` yields zero.
    """
    if start is None:
        return 0.0
    delta = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(delta, 0.0)


def day_key(day: Optional[Union[datetime.date, datetime.datetime, str]] = None) -> str:
    """
    Format a day bucket key (``YYYY-MM-DD``).

    Args:
        day: Date, datetime, preformatted key, or None for today (UTC)

    Returns:
        Day bucket key
    """
    if day is None:
        return utc_now().strftime("%Y-%m-%d")
    if isinstance(day, str):
        return day
    if isinstance(day, datetime.datetime):
        return ensure_utc(day).strftime("%Y-%m-%d")
    return day.strftime("%Y-%m-%d")


def safe_divide(numerator: Union[int, float], denominator: Union[int, float], default: float = 0.0) -> float:
    """
    Divide two numbers, returning ``default`` when the denominator is zero.
    """
    if denominator == 0:
        return default
    return numerator / denominator
