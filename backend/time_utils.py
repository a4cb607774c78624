"""
Time utilities for the Taskboard API.

This module provides a single source of truth for time operations,
ensuring consistency across services and dashboard queries.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    SQLite hands stored values back without tzinfo; they were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_datetime(value: Union[datetime, date, None]) -> Optional[datetime]:
    """Coerce a date or datetime into an aware UTC datetime (dates become midnight)."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    return as_utc(value)


def is_overdue(due_date: Optional[datetime], status: str, completed_statuses=("Done", "Completed")) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a due date in the past and its status is not
    one of the completed statuses.
    """
    if not due_date or status in completed_statuses:
        return False
    return as_utc(due_date) < utc_now()


def date_range_for_upcoming(days: int) -> tuple[datetime, datetime]:
    """
    Calculate date range for upcoming tasks.

    Args:
        days: Number of days ahead

    Returns:
        Tuple of (now, future_date) as timezone-aware datetimes
    """
    now = utc_now()
    future_date = now + timedelta(days=days)
    return now, future_date


def start_of_recent_window(days: int) -> datetime:
    """Lower bound of the "recent activity" window, `days` back from now."""
    return utc_now() - timedelta(days=days)
