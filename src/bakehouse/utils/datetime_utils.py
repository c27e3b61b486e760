"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from bakehouse.utils.datetime_utils import utc_now

    timestamp = utc_now()

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC.

    SQLite drops tzinfo on the way back out, so naive values read from the
    database are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_date(value: str) -> date:
    """Parse a YYYY-MM-DD string (or the date part of an ISO timestamp)."""
    return date.fromisoformat(value.strip()[:10])


def parse_iso_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'. Empty -> None."""
    if not value or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def season_for(day: date) -> str:
    """Return the selling season a calendar date falls in."""
    month = day.month
    if 9 <= month <= 11:
        return "fall"
    if month == 12 or month <= 2:
        return "winter"
    if 3 <= month <= 5:
        return "spring"
    return "summer"
