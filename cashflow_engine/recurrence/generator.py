"""
Occurrence Generator

Turns a recurrence rule and a date window into the rule's occurrence
dates inside that window.

DESIGN DECISION: Occurrence k is always computed from the anchor date
(anchor + k intervals, in calendar arithmetic). Dates are never derived
from the previous, possibly clamped, occurrence: a rule anchored on
Jan 31 yields Feb 29, Mar 31, Apr 30 rather than drifting to the 29th.

This is the only place in the engine that answers "when does this rule
occur"; projections, materialization and next-due lookups all call it.
"""

from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta

from cashflow_engine.config import GenerationSettings, get_settings
from cashflow_engine.models.recurrence import DateWindow, Frequency, RecurrenceRule
from cashflow_engine.recurrence.dates import month_window


class GenerationError(Exception):
    """Base exception for occurrence generation."""
    pass


class GenerationOverrunError(GenerationError):
    """A rule produced more occurrences than the safety bound allows."""

    def __init__(self, rule_id: UUID, limit: int, window: DateWindow):
        self.rule_id = rule_id
        self.limit = limit
        self.window = window
        super().__init__(
            f"Rule {rule_id} produces more than {limit} occurrences between "
            f"{window.start.isoformat()} and {window.end.isoformat()}"
        )


# Fixed-length intervals, in days
DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.FORTNIGHTLY: 14,
}

# Calendar intervals, in months
MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}

# Stepping past date.max: timedelta raises OverflowError, relativedelta ValueError
DATE_OUT_OF_RANGE = (OverflowError, ValueError)


class OccurrenceGenerator:
    """
    Pure, bounded occurrence enumeration.

    GUARANTEES:
    - Ascending, window-clamped, finite output
    - Phase taken from the rule's own anchor date only
    - Never silently truncates: exceeding the bound raises
    """

    def __init__(self, settings: Optional[GenerationSettings] = None):
        self._settings = settings or get_settings().generation

    @property
    def max_occurrences(self) -> int:
        return self._settings.max_occurrences

    def occurrence(self, rule: RecurrenceRule, index: int) -> date:
        """The index-th occurrence of the rule (0 is the anchor)."""
        anchor = rule.anchor_date
        if rule.frequency in DAY_STEPS:
            return anchor + timedelta(days=DAY_STEPS[rule.frequency] * index)
        if rule.frequency == Frequency.YEARLY:
            return anchor + relativedelta(years=index)
        return anchor + relativedelta(months=MONTH_STEPS[rule.frequency] * index)

    def _first_index_on_or_after(self, rule: RecurrenceRule, target: date) -> int:
        anchor = rule.anchor_date
        if target <= anchor:
            return 0

        if rule.frequency in DAY_STEPS:
            step = DAY_STEPS[rule.frequency]
            return -(-(target - anchor).days // step)

        step = MONTH_STEPS[rule.frequency]
        elapsed = (target.year - anchor.year) * 12 + target.month - anchor.month
        index = max(elapsed // step - 1, 0)
        while self.occurrence(rule, index) < target:
            index += 1
        return index

    def generate(self, rule: RecurrenceRule, window: DateWindow) -> list[date]:
        """
        Occurrence dates of `rule` inside `window`, ascending.

        Raises:
            GenerationOverrunError: more than max_occurrences dates fall
                                    inside the window
        """
        if not rule.active:
            return []

        limit = window.end
        if rule.end_date is not None and rule.end_date < limit:
            limit = rule.end_date

        if rule.anchor_date > limit or rule.ended_before(window.start):
            return []

        try:
            index = self._first_index_on_or_after(rule, max(window.start, rule.anchor_date))
        except DATE_OUT_OF_RANGE:
            return []
        dates: list[date] = []

        while True:
            try:
                current = self.occurrence(rule, index)
            except DATE_OUT_OF_RANGE:
                break
            if current > limit:
                break
            if len(dates) >= self.max_occurrences:
                raise GenerationOverrunError(rule.id, self.max_occurrences, window)
            dates.append(current)
            index += 1

        return dates

    def occurrences_in_month(self, rule: RecurrenceRule, month: date) -> list[date]:
        """Occurrences inside the calendar month containing `month`."""
        return self.generate(rule, month_window(month))

    def next_occurrence(self, rule: RecurrenceRule, after: date) -> Optional[date]:
        """
        First occurrence strictly after `after`.

        Returns None for paused rules and rules that have ended.
        """
        if not rule.active:
            return None
        try:
            candidate = self.occurrence(
                rule, self._first_index_on_or_after(rule, after + timedelta(days=1))
            )
        except DATE_OUT_OF_RANGE:
            return None
        if rule.end_date is not None and candidate > rule.end_date:
            return None
        return candidate
