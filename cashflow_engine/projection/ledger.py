"""
Carryover Ledger

Per-month starting balances for an owner, backed by MonthlyBudgetSnapshot.

DESIGN DECISION: A stored snapshot is authoritative. The ledger only
ever fills gaps: it never recomputes or overwrites a month that already
has a snapshot, so an explicit user edit survives every later lookup.

Missing months are filled forward from the nearest earlier snapshot
(or from a seeded base month) with an iterative walk, one month at a
time. Each filled month is written with overwrite disabled, so a
concurrent user edit to the same month wins over the computed value.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from cashflow_engine.audit import AuditLogger
from cashflow_engine.models.audit import AuditEventBuilder
from cashflow_engine.models.budget import MonthlyBudgetSnapshot, SnapshotOrigin
from cashflow_engine.models.recurrence import EventKind, FinancialEvent, to_money
from cashflow_engine.recurrence.dates import add_months, month_start, month_window
from cashflow_engine.services.storage import FinanceStorageInterface


logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


def event_totals(events: Iterable[FinancialEvent]) -> tuple[Decimal, Decimal]:
    """(income, expense) totals of a collection of events."""
    income = ZERO
    expense = ZERO
    for event in events:
        if event.kind == EventKind.INCOME:
            income += event.amount
        else:
            expense += event.amount
    return to_money(income), to_money(expense)


class CarryoverLedger:
    """
    Starting balance lookups with lazy backfill.

    Base case: the earliest month with neither an earlier snapshot nor
    earlier events starts at the owner's profile default, or zero.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def month_net(self, owner_id: UUID, month: date) -> Decimal:
        """Income minus expenses of the materialized events of one month."""
        events = await self._storage.load_events(owner_id, window=month_window(month))
        income, expense = event_totals(events)
        return to_money(income - expense)

    async def snapshot(
        self,
        owner_id: UUID,
        month: date,
        correlation_id: Optional[UUID] = None,
    ) -> MonthlyBudgetSnapshot:
        """
        The snapshot for `month`, creating it and any missing earlier
        months it depends on.
        """
        month = month_start(month)

        existing = await self._storage.load_snapshot(owner_id, month)
        if existing is not None:
            return existing

        base = await self._base_snapshot(owner_id, month, correlation_id)

        current = base
        while current.month < month:
            net = await self.month_net(owner_id, current.month)
            current = await self._write_computed(
                MonthlyBudgetSnapshot(
                    owner_id=owner_id,
                    month=add_months(current.month, 1),
                    starting_balance=current.starting_balance + net,
                    origin=SnapshotOrigin.CARRYOVER,
                ),
                correlation_id,
            )

        return current

    async def starting_balance(
        self,
        owner_id: UUID,
        month: date,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        snapshot = await self.snapshot(owner_id, month, correlation_id=correlation_id)
        return snapshot.starting_balance

    async def set_starting_balance(
        self,
        owner_id: UUID,
        month: date,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> MonthlyBudgetSnapshot:
        """
        Explicit user edit. Always overwrites.

        Snapshots of later months are left as they are.
        """
        stored = await self._storage.upsert_snapshot(
            MonthlyBudgetSnapshot(
                owner_id=owner_id,
                month=month_start(month),
                starting_balance=amount,
                origin=SnapshotOrigin.USER,
            ),
            overwrite=True,
        )
        await self._audit_snapshot(stored, correlation_id)
        return stored

    async def _base_snapshot(
        self,
        owner_id: UUID,
        month: date,
        correlation_id: Optional[UUID],
    ) -> MonthlyBudgetSnapshot:
        """Nearest earlier snapshot, or a seeded one for the earliest month."""
        earlier = [s for s in await self._storage.list_snapshots(owner_id) if s.month < month]
        if earlier:
            return earlier[-1]

        base_month = month
        earliest_event = await self._storage.earliest_event_date(owner_id)
        if earliest_event is not None and month_start(earliest_event) < month:
            base_month = month_start(earliest_event)

        default = await self._storage.load_default_starting_balance(owner_id)
        return await self._write_computed(
            MonthlyBudgetSnapshot(
                owner_id=owner_id,
                month=base_month,
                starting_balance=default if default is not None else ZERO,
                origin=(
                    SnapshotOrigin.PROFILE_DEFAULT if default is not None
                    else SnapshotOrigin.ZERO_SEED
                ),
            ),
            correlation_id,
        )

    async def _write_computed(
        self,
        snapshot: MonthlyBudgetSnapshot,
        correlation_id: Optional[UUID],
    ) -> MonthlyBudgetSnapshot:
        stored = await self._storage.upsert_snapshot(snapshot, overwrite=False)
        if stored.created_at != snapshot.created_at:
            logger.info(
                "snapshot_kept",
                owner_id=str(snapshot.owner_id),
                month=snapshot.month.isoformat(),
                computed=str(snapshot.starting_balance),
                stored=str(stored.starting_balance),
            )
            return stored

        await self._audit_snapshot(stored, correlation_id)
        return stored

    async def _audit_snapshot(
        self,
        snapshot: MonthlyBudgetSnapshot,
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.snapshot_written(
                owner_id=snapshot.owner_id,
                month=snapshot.month,
                starting_balance=str(snapshot.starting_balance),
                origin=snapshot.origin.value,
                correlation_id=correlation_id,
            ))
