"""
Time utilities for the task hub.

This module provides a single source of truth for time operations,
ensuring consistency across all services.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_overdue(deadline: Optional[datetime], status: str) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a deadline in the past and is not Done.

    Args:
        deadline: The task's deadline
        status: The task's status

    Returns:
        True if task is overdue, False otherwise
    """
    if not deadline or status == "Done":
        return False
    return as_utc(deadline) < utc_now()


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
