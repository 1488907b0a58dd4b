"""Datetime utility functions for consistent UTC handling."""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC datetime with timezone info.

    This is the single source of truth for UTC datetime creation.
    Use this instead of datetime.utcnow() which is deprecated in Python 3.12+.

    Returns:
        datetime: Current UTC datetime with timezone awareness
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database.

    SQLite drops tzinfo on round-trip; every timestamp we store is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    """Serialize a datetime as an ISO-8601 UTC string (or None)."""
    value = as_utc(value)
    return value.isoformat() if value else None


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 string, accepting a trailing 'Z'."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return as_utc(datetime.fromisoformat(value))
