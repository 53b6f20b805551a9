"""
Time helpers.

Tracking timestamps are naive datetimes in server-local time, and analytics
date ranges are interpreted in the same clock. Use these helpers instead of
calling datetime.now() directly so tests can pin the clock.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple


def now_local() -> datetime:
    """Return the current server-local time without tzinfo."""
    return datetime.now().replace(microsecond=0)


def day_bounds(date_from: date, date_to: date) -> Tuple[datetime, datetime]:
    """Expand a date range to [date_from 00:00:00, date_to 23:59:59.999999]."""
    return datetime.combine(date_from, time.min), datetime.combine(date_to, time.max)


def default_range(
    date_from: Optional[date],
    date_to: Optional[date],
    period_days: int,
) -> Tuple[date, date]:
    """Fill missing range ends: date_to defaults to today, date_from to period_days earlier."""
    today = now_local().date()
    if date_to is None:
        date_to = today
    if date_from is None:
        date_from = today - timedelta(days=period_days)
    return date_from, date_to
