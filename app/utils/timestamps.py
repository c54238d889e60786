"""
UTC timestamp helpers.

All engine timestamps are timezone-aware UTC. Some drivers (SQLite in tests)
hand back naive datetimes for ``DateTime(timezone=True)`` columns, so values
read from the database go through ``ensure_utc`` before being compared.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

# Smallest step used to keep per-conversation timestamps strictly increasing
TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC.

    Example:
        >>> ensure_utc(datetime(2026, 1, 1)).tzinfo
        datetime.timezone.utc
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_after(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """
    Return a timestamp that is ``now`` unless that would not be strictly after
    ``previous``, in which case it is ``previous`` plus one microsecond.
    """
    now = ensure_utc(now) or utcnow()
    previous = ensure_utc(previous)
    if previous is not None and now <= previous:
        return previous + TICK
    return now
