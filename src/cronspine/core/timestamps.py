"""
UTC timestamp utilities.

All scheduler timestamps are timezone-aware UTC datetimes in Python.
They are stored as fixed-width text on SQLite so that lexical order
equals chronological order, and as ``TIMESTAMPTZ`` on PostgreSQL.

Examples:
    >>> from datetime import datetime, UTC
    >>> to_db(datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC))
    '2025-01-02 03:04:05.000000+00:00'
    >>> from_db('2025-01-02 03:04:05.000000+00:00').hour
    3
"""

from datetime import UTC, datetime

_DB_FORMAT = "%Y-%m-%d %H:%M:%S.%f+00:00"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_db(dt: datetime | None) -> str | None:
    """Render a datetime in the fixed-width storage format."""
    if dt is None:
        return None
    return ensure_utc(dt).strftime(_DB_FORMAT)


def from_db(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp (text from SQLite, datetime from PostgreSQL)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


__all__ = ["utc_now", "ensure_utc", "to_db", "from_db"]
