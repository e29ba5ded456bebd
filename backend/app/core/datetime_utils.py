"""
Datetime helpers for timezone-aware timestamps in session snapshots.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC.

    Use this instead of datetime.now(timezone.utc) so tests can patch one place.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Attach UTC to a naive datetime.

    SQLite returns naive datetimes even for columns declared timezone-aware.

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_datetime(value: Any) -> datetime:
    """
    Read a timestamp from a JSON snapshot field.

    Accepts ISO-8601 strings and datetimes; anything else (missing or
    malformed) falls back to the current time so an old snapshot still loads.
    """
    if isinstance(value, datetime):
        return ensure_timezone_aware(value)
    if isinstance(value, str):
        try:
            return ensure_timezone_aware(datetime.fromisoformat(value))
        except ValueError:
            return utc_now()
    return utc_now()
