"""Shared, deterministic timestamps for tests."""

from datetime import UTC, date, datetime, timedelta


# Fixed reference time so report windows and due-date arithmetic are stable.
FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)
FIXED_TODAY: date = FIXED_NOW.date()


def cycle_at(hours_ago: float) -> datetime:
    """Return a cycle timestamp the given number of hours before FIXED_NOW."""
    return FIXED_NOW - timedelta(hours=hours_ago)


def due_in(days: int) -> str:
    """Render a due date relative to FIXED_TODAY the way libraries show it."""
    return (FIXED_TODAY + timedelta(days=days)).strftime("%b %d, %Y")
