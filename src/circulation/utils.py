"""Time helpers shared by the circulation components.

All timestamps are stored as ISO-8601 strings in UTC with microsecond
precision, so string order matches chronological order.
"""

from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Union[datetime, date]) -> datetime:
    """
    Normalize a date or datetime to an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC. A plain date is
    taken as midnight UTC at the start of that day.

    Example:
        >>> ensure_utc(date(2025, 3, 1)).isoformat()
        '2025-03-01T00:00:00+00:00'
    """
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Union[datetime, date]) -> str:
    """Serialize a timestamp for storage."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp, returning None for empty values."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
