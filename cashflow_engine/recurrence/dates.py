"""Calendar helpers shared by the generator, the projection and the ledger."""

import calendar
from datetime import date

from dateutil.relativedelta import relativedelta

from cashflow_engine.models.recurrence import DateWindow


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    last_day = calendar.monthrange(d.year, d.month)[1]
    return d.replace(day=last_day)


def add_months(d: date, months: int) -> date:
    """Shift by calendar months, clamping the day to the target month's length."""
    return d + relativedelta(months=months)


def month_window(d: date) -> DateWindow:
    """Inclusive window covering the whole month containing d."""
    return DateWindow(start=month_start(d), end=month_end(d))


def months_between(earlier: date, later: date) -> int:
    """Whole calendar months from earlier's month to later's month."""
    return (later.year - earlier.year) * 12 + later.month - earlier.month


def iter_months(first: date, count: int) -> list[date]:
    """First-of-month dates for `count` consecutive months starting at first."""
    start = month_start(first)
    return [add_months(start, i) for i in range(count)]


def days_of_month(d: date) -> list[date]:
    start = month_start(d)
    return [start.replace(day=day) for day in range(1, month_end(d).day + 1)]


def reconcile_window(today: date, lookback_months: int, horizon_months: int) -> DateWindow:
    """
    First day of the month `lookback_months` before today's month to the
    last day of the month `horizon_months` after it.
    """
    current = month_start(today)
    return DateWindow(
        start=add_months(current, -lookback_months),
        end=month_end(add_months(current, horizon_months)),
    )
