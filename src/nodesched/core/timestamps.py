"""
UTC timestamp utilities (stdlib-only).

All timestamps the scheduler persists are timezone-aware UTC, stored as
ISO 8601 text at second precision (``2024-01-01T03:00:00+00:00``). Text in
that form sorts chronologically, which the due-schedule query relies on.

Tags:
    timestamps, utc, datetime, stdlib-only, serialization

Doc-Types:
    - API Reference
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_db_timestamp(dt: datetime | None) -> str | None:
    """Serialize a datetime for storage."""
    if dt is None:
        return None
    return ensure_utc(dt).replace(microsecond=0).isoformat(timespec="seconds")


def from_db_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp. Naive values are read as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def format_display(dt: datetime) -> str:
    """Human-readable form used in backup names and activity metadata."""
    return ensure_utc(dt).strftime("%Y-%m-%d %H:%M:%S")
