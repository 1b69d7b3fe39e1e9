"""
Balance Projection Engine

Monthly income, expense and running balance for an owner.

DESIGN DECISION: Three ways of producing a monthly figure exist and each
result is labeled with the one that produced it:

- EXACT: sum of materialized events of the month
- ESTIMATED: for a future month with nothing materialized yet, each
  active rule's real occurrence count in the month times its amount
- AVERAGED: fixed frequency-to-monthly multipliers, only for aggregate
  budget displays (see monthly_equivalent). Never used for dates and
  never mixed into a projection.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union
from uuid import UUID

import structlog

from cashflow_engine.audit import AuditLogger
from cashflow_engine.models.audit import AuditEventBuilder
from cashflow_engine.models.budget import (
    DayCashflow,
    MonthlyProjection,
    PlanningFrequency,
    ProjectionMode,
)
from cashflow_engine.models.recurrence import (
    EventKind,
    FinancialEvent,
    Frequency,
    RecurrenceRule,
    to_money,
)
from cashflow_engine.projection.ledger import ZERO, CarryoverLedger, event_totals
from cashflow_engine.recurrence import OccurrenceGenerator
from cashflow_engine.recurrence.dates import days_of_month, iter_months, month_start, month_window
from cashflow_engine.services.storage import FinanceStorageInterface


logger = structlog.get_logger(__name__)


# Averaged monthly equivalents: amount * factor, or amount / divisor
MONTHLY_FACTORS = {
    Frequency.DAILY: Decimal("30"),
    Frequency.WEEKLY: Decimal("4.33"),
    Frequency.FORTNIGHTLY: Decimal("2.17"),
    Frequency.MONTHLY: Decimal("1"),
}
MONTHLY_DIVISORS = {
    Frequency.QUARTERLY: Decimal("3"),
    Frequency.YEARLY: Decimal("12"),
}


def monthly_equivalent(
    amount: Decimal,
    frequency: Union[Frequency, PlanningFrequency, str],
) -> Decimal:
    """Averaged monthly value of a recurring amount. Display only."""
    frequency = Frequency(getattr(frequency, "value", frequency))
    if frequency in MONTHLY_DIVISORS:
        return to_money(amount / MONTHLY_DIVISORS[frequency])
    return to_money(amount * MONTHLY_FACTORS[frequency])


class BalanceProjectionEngine:
    """
    Builds labeled monthly projections with carryover.

    Month 0 is the current month and always uses exact totals, with its
    starting balance taken from the CarryoverLedger. Each later month
    starts from the previous month's ending balance.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        ledger: Optional[CarryoverLedger] = None,
        generator: Optional[OccurrenceGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self._storage = storage
        self._ledger = ledger or CarryoverLedger(storage, audit_logger=audit_logger)
        self._generator = generator or OccurrenceGenerator()
        self._audit_logger = audit_logger
        self._clock = clock or date.today

    @property
    def ledger(self) -> CarryoverLedger:
        return self._ledger

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------

    def exact_totals(self, events: list[FinancialEvent]) -> tuple[Decimal, Decimal]:
        return event_totals(events)

    def estimated_totals(
        self,
        rules: list[RecurrenceRule],
        month: date,
    ) -> tuple[Decimal, Decimal]:
        """Occurrence count in the month times amount, over active rules."""
        income = ZERO
        expense = ZERO
        for rule in rules:
            if not rule.active:
                continue
            count = len(self._generator.occurrences_in_month(rule, month))
            if rule.kind == EventKind.INCOME:
                income += rule.amount * count
            else:
                expense += rule.amount * count
        return to_money(income), to_money(expense)

    async def month_totals(
        self,
        owner_id: UUID,
        month: date,
        starting_balance: Decimal = ZERO,
        rules: Optional[list[RecurrenceRule]] = None,
    ) -> MonthlyProjection:
        """
        One labeled month.

        Exact when the month has materialized events or is not in the
        future; estimated from the owner's rules otherwise.
        """
        month = month_start(month)
        events = await self._storage.load_events(owner_id, window=month_window(month))

        if events or month <= month_start(self._clock()):
            income, expense = self.exact_totals(events)
            mode = ProjectionMode.EXACT
        else:
            if rules is None:
                rules = await self._storage.load_rules(owner_id)
            income, expense = self.estimated_totals(rules, month)
            mode = ProjectionMode.ESTIMATED

        return MonthlyProjection(
            month=month,
            mode=mode,
            starting_balance=to_money(starting_balance),
            income_total=income,
            expense_total=expense,
        )

    # -------------------------------------------------------------------------
    # Projection
    # -------------------------------------------------------------------------

    async def project(
        self,
        owner_id: UUID,
        months: int,
        correlation_id: Optional[UUID] = None,
    ) -> list[MonthlyProjection]:
        """
        Current month plus `months` following months (N+1 entries).

        ending_balance of entry i is the starting_balance of entry i+1.
        """
        if months < 0:
            raise ValueError("months must not be negative")

        first = month_start(self._clock())
        balance = await self._ledger.starting_balance(
            owner_id, first, correlation_id=correlation_id
        )
        rules = await self._storage.load_rules(owner_id)

        projections = []
        for month in iter_months(first, months + 1):
            projection = await self.month_totals(
                owner_id, month, starting_balance=balance, rules=rules
            )
            projections.append(projection)
            balance = projection.ending_balance

        logger.debug(
            "projection_built",
            owner_id=str(owner_id),
            first_month=first.isoformat(),
            months=len(projections),
        )
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.projection_built(
                owner_id=owner_id,
                first_month=first,
                months=len(projections),
                modes=[p.mode.value for p in projections],
                correlation_id=correlation_id,
            ))

        return projections

    async def daily_cashflow(self, owner_id: UUID, month: date) -> list[DayCashflow]:
        """Income, expense and net for every day of the month."""
        events = await self._storage.load_events(owner_id, window=month_window(month))

        by_day = {day: [] for day in days_of_month(month)}
        for event in events:
            by_day[event.date].append(event)

        days = []
        for day, day_events in by_day.items():
            income, expense = event_totals(day_events)
            days.append(DayCashflow(
                date=day,
                income=income,
                expense=expense,
                event_count=len(day_events),
            ))
        return days
