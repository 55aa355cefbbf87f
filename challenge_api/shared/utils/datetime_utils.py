"""Datetime utilities for timezone-aware schedule arithmetic.

All phase dates are handled as timezone-aware UTC datetimes. Durations
are whole seconds, matching the persisted ``duration`` column.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone info.

    Returns:
        Current UTC datetime with tzinfo=timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no tzinfo), it's assumed to be UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: A datetime object (naive or aware)

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_seconds(start: datetime, seconds: int) -> datetime:
    """Return ``start`` shifted forward by ``seconds``, in UTC."""
    return ensure_utc(start) + timedelta(seconds=int(seconds))


def to_iso(dt: datetime | None) -> str | None:
    """Render a datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


__all__ = [
    "add_seconds",
    "ensure_utc",
    "to_iso",
    "utcnow",
]
