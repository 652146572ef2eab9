"""Timestamp normalization for persisted text columns."""

from datetime import UTC, datetime


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_db_timestamp(value: datetime) -> str:
    """Format a datetime for storage.

    Always UTC with microsecond precision, so text ordering in SQLite
    matches chronological ordering and equal instants compare equal.

    Args:
        value: Datetime to format.

    Returns:
        ISO-8601 string.
    """
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back to an aware UTC datetime."""
    return ensure_utc(datetime.fromisoformat(value))
