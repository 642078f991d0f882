"""UTC-everywhere time handling. Due dates and overdue counts are computed in UTC."""

import math
from datetime import datetime, timedelta, timezone

_SECONDS_PER_DAY = 24 * 60 * 60


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def days_from_now(days: int, now: datetime | None = None) -> datetime:
    """UTC datetime `days` whole days after `now` (defaults to the current time)."""
    return (now or now_utc()) + timedelta(days=days)


def billable_days(start: datetime, end: datetime) -> int:
    """
    Number of billable days between two instants.

    Partial days round up; a zero-length span still bills one day.

    Raises ValueError if end is before start.
    """
    seconds = (to_utc(end) - to_utc(start)).total_seconds()
    if seconds < 0:
        raise ValueError("End date must not be before start date")
    return max(1, math.ceil(seconds / _SECONDS_PER_DAY))


def days_overdue(due_date: datetime, now: datetime | None = None) -> int:
    """Whole days past due_date, floored, never negative."""
    seconds = ((now or now_utc()) - to_utc(due_date)).total_seconds()
    return max(0, math.floor(seconds / _SECONDS_PER_DAY))
