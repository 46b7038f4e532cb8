"""Timezone-aware datetime helpers.

Every timestamp the engine stores or compares is UTC-aware; naive values
coming from a store driver are interpreted as UTC.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no tzinfo), it's assumed to be UTC.
    If the datetime has a different timezone, it's converted to UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_day(dt: datetime) -> datetime:
    """Midnight UTC of the day containing ``dt``."""
    dt = ensure_utc(dt)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(dt: datetime) -> datetime:
    """First instant of the UTC month containing ``dt``."""
    return start_of_day(dt).replace(day=1)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift a month-aligned datetime by ``months`` calendar months."""
    month_index = dt.month - 1 + months
    return dt.replace(year=dt.year + month_index // 12, month=month_index % 12 + 1)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed from ``start`` to ``end`` (rounded)."""
    delta: timedelta = ensure_utc(end) - ensure_utc(start)
    return round(delta.total_seconds() / 60)
