"""
Time source for billing-period and reset computations.

Services never read the wall clock directly; they receive a Clock so tests
can pin "now". All datetimes are naive UTC, matching the database columns.
"""
from datetime import datetime, timedelta, timezone
from typing import Protocol, Tuple


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return utcnow()


class FixedClock:
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> None:
        self._instant = self._instant + timedelta(**kwargs)


_system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock."""
    return _system_clock


def billing_period(now: datetime) -> Tuple[datetime, datetime]:
    """
    Calendar-month billing window containing `now`.

    Returns (first day of month 00:00:00, last day of month 23:59:59).
    """
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        next_month = start.replace(year=start.year + 1, month=1)
    else:
        next_month = start.replace(month=start.month + 1)
    end = next_month - timedelta(seconds=1)
    return start, end


def period_start(reset_period: str, now: datetime) -> datetime:
    """
    Start of the current reset window for a quota reset period.

    Weeks start on Sunday.
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if reset_period == "daily":
        return today
    if reset_period == "weekly":
        # isoweekday: Monday=1 .. Sunday=7
        return today - timedelta(days=today.isoweekday() % 7)
    if reset_period == "monthly":
        return today.replace(day=1)
    if reset_period == "yearly":
        return today.replace(month=1, day=1)
    raise ValueError(f"Invalid reset period: {reset_period}")
