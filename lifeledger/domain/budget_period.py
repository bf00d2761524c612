"""
Budget period windows.

A window is the inclusive range [start, start + one period - 1 tick].
DAILY and WEEKLY are fixed lengths; MONTHLY, QUARTERLY and YEARLY are
calendar months added in the user's local time zone, with the day clipped
to the length of the target month (Jan 31 + 1 month = Feb 28/29).
"""
import calendar
from datetime import datetime, timedelta, timezone, tzinfo

from lifeledger.domain.budget import BudgetPeriod


TICK = timedelta(microseconds=1)

FIXED_LENGTH = {
    BudgetPeriod.DAILY: timedelta(days=1),
    BudgetPeriod.WEEKLY: timedelta(days=7),
}

CALENDAR_MONTHS = {
    BudgetPeriod.MONTHLY: 1,
    BudgetPeriod.QUARTERLY: 3,
    BudgetPeriod.YEARLY: 12,
}


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: datetime, n: int) -> datetime:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(d.day, last_day_of_month(year, month))
    return d.replace(year=year, month=month, day=day)


def add_period(period: BudgetPeriod, start: datetime, tz: tzinfo) -> datetime:
    """Start of the window that follows the one beginning at `start`."""
    period = BudgetPeriod(period)
    if period in FIXED_LENGTH:
        return start + FIXED_LENGTH[period]

    # wall-clock arithmetic so month boundaries follow the local calendar
    local = start.astimezone(tz).replace(tzinfo=None)
    shifted = add_months(local, CALENDAR_MONTHS[period])
    return shifted.replace(tzinfo=tz).astimezone(timezone.utc)


def period_end(period: BudgetPeriod, start: datetime, tz: tzinfo) -> datetime:
    return add_period(period, start, tz) - TICK


def next_window(period: BudgetPeriod, old_end: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    new_start = old_end + TICK
    return new_start, period_end(period, new_start, tz)


def current_window(period: BudgetPeriod, now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """
    Fresh window containing `now`: local day, ISO week (Monday start),
    calendar month, calendar quarter or calendar year.
    """
    period = BudgetPeriod(period)
    local = now.astimezone(tz)
    day = datetime(local.year, local.month, local.day)

    if period == BudgetPeriod.DAILY:
        first = day
    elif period == BudgetPeriod.WEEKLY:
        first = day - timedelta(days=day.weekday())
    elif period == BudgetPeriod.MONTHLY:
        first = day.replace(day=1)
    elif period == BudgetPeriod.QUARTERLY:
        first = day.replace(month=3 * ((day.month - 1) // 3) + 1, day=1)
    else:
        first = day.replace(month=1, day=1)

    start = first.replace(tzinfo=tz).astimezone(timezone.utc)
    return start, period_end(period, start, tz)
