"""
Time helpers shared by the queue, the sinks and the rate-limit parser.

Pure functions, no I/O. Calendar-facing output (timestamps, display
strings, date lists) uses the local calendar of the instant; naive
datetimes are taken to be local time already.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

_HOUR = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local(dt: datetime) -> datetime:
    return dt.astimezone()


def format_timestamp(dt: datetime) -> str:
    """Sortable compact form used in filenames: YYYYMMDD_HHMM."""
    return _local(dt).strftime("%Y%m%d_%H%M")


def format_display_time(dt: datetime) -> str:
    """Human-readable form: YYYY-MM-DD HH:mm."""
    return _local(dt).strftime("%Y-%m-%d %H:%M")


def format_date_param(dt: datetime | date) -> str:
    if isinstance(dt, datetime):
        dt = _local(dt)
    return dt.strftime("%Y-%m-%d")


def add_hours(base: datetime, hours: float) -> datetime:
    return base + hours * _HOUR


def window_start_5h(now: Optional[datetime] = None) -> datetime:
    """Start of the 5-hour look-back window."""
    return (now or utcnow()) - timedelta(hours=5)


def window_start_7d(now: Optional[datetime] = None) -> datetime:
    """Start of the 7-day look-back window."""
    return (now or utcnow()) - timedelta(days=7)


def is_overdue(not_before: datetime, now: Optional[datetime] = None) -> bool:
    """True once not_before has been reached; exactly-now counts as overdue."""
    return not_before <= (now or utcnow())


def dates_in_range(from_: datetime, to: datetime) -> list[str]:
    """
    Every local calendar date (YYYY-MM-DD) overlapping [from_, to].

    Both endpoints' days are included, so from_ == to yields one date.
    An inverted range yields nothing.
    """
    cursor = _local(from_).date()
    end = _local(to).date()
    dates: list[str] = []
    while cursor <= end:
        dates.append(format_date_param(cursor))
        cursor += timedelta(days=1)
    return dates
