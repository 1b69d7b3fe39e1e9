"""
In-Memory Storage Implementation

DESIGN DECISION: The engine ships without a database. This backend is the
reference implementation of the storage contract:
1. Used by the test suite as the fake persistence layer
2. Documents the exact semantics real backends must provide
   (fingerprint-keyed upsert, insert-if-absent snapshots)
3. Usable for what-if sessions that should not touch real data

TRADEOFFS:
- Nothing survives the process
- Atomicity comes from asyncio's single thread: no method awaits while
  it mutates state
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from cashflow_engine.models.audit import AuditEvent
from cashflow_engine.models.budget import MonthlyBudgetSnapshot
from cashflow_engine.models.recurrence import (
    DateWindow,
    EventSource,
    FinancialEvent,
    Fingerprint,
    RecurrenceRule,
    to_money,
    utc_now,
)
from cashflow_engine.services.storage.interface import (
    AuditStorageInterface,
    FinanceStorageInterface,
    NotFoundError,
)


def _event_sort_key(event: FinancialEvent) -> tuple:
    return (event.date, event.created_at, str(event.id))


class InMemoryFinanceStorage(FinanceStorageInterface):
    """
    Dictionary-backed storage.

    Returned models are copies; mutating them never changes stored state.
    """

    def __init__(self):
        self._rules: dict[UUID, RecurrenceRule] = {}
        self._events: dict[UUID, FinancialEvent] = {}
        self._snapshots: dict[tuple[UUID, date], MonthlyBudgetSnapshot] = {}
        self._default_balances: dict[UUID, Decimal] = {}

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    def set_default_starting_balance(self, owner_id: UUID, amount: Decimal) -> None:
        """Configure the profile-level starting balance of an owner."""
        self._default_balances[owner_id] = to_money(amount)

    async def load_default_starting_balance(self, owner_id: UUID) -> Optional[Decimal]:
        return self._default_balances.get(owner_id)

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    async def load_rules(self, owner_id: UUID) -> list[RecurrenceRule]:
        rules = [
            rule.model_copy(deep=True)
            for rule in self._rules.values()
            if rule.owner_id == owner_id
        ]
        rules.sort(key=lambda r: (r.anchor_date, r.created_at, str(r.id)))
        return rules

    async def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def save_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        stored = rule.model_copy(deep=True)
        existing = self._rules.get(rule.id)
        if existing is not None:
            stored.cursor_date = existing.cursor_date
        self._rules[rule.id] = stored
        return stored.model_copy(deep=True)

    async def advance_cursor(self, rule_id: UUID, candidate: date) -> Optional[date]:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")

        previous = rule.cursor_date
        if previous is None or candidate > previous:
            self._rules[rule_id] = rule.model_copy(
                update={"cursor_date": candidate, "updated_at": utc_now()}
            )
        return previous

    async def delete_rule(self, rule_id: UUID) -> bool:
        return self._rules.pop(rule_id, None) is not None

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def add_event(self, event: FinancialEvent) -> FinancialEvent:
        """
        Insert an event unconditionally, bypassing fingerprint dedup.

        Stands in for rows written by other clients (manual entries,
        legacy duplicates) that the engine has to cope with.
        """
        self._events[event.id] = event.model_copy(deep=True)
        return event

    async def load_events(
        self,
        owner_id: UUID,
        window: Optional[DateWindow] = None,
        rule_id: Optional[UUID] = None,
    ) -> list[FinancialEvent]:
        events = []
        for event in self._events.values():
            if event.owner_id != owner_id:
                continue
            if window and not window.contains(event.date):
                continue
            if rule_id and not (
                event.source == EventSource.RECURRING and event.rule_id == rule_id
            ):
                continue
            events.append(event.model_copy(deep=True))
        events.sort(key=_event_sort_key)
        return events

    def _find_by_fingerprint(self, fingerprint: Fingerprint) -> Optional[FinancialEvent]:
        matches = [e for e in self._events.values() if e.fingerprint == fingerprint]
        if not matches:
            return None
        return min(matches, key=lambda e: (e.created_at, str(e.id)))

    async def upsert_events(
        self,
        events: list[FinancialEvent],
    ) -> list[FinancialEvent]:
        stored = []
        for event in events:
            if event.id in self._events:
                self._events[event.id] = event.model_copy(deep=True)
                stored.append(event.model_copy(deep=True))
                continue

            existing = self._find_by_fingerprint(event.fingerprint)
            if existing is not None:
                stored.append(existing.model_copy(deep=True))
                continue

            self._events[event.id] = event.model_copy(deep=True)
            stored.append(event.model_copy(deep=True))
        return stored

    async def delete_events(self, event_ids: list[UUID]) -> int:
        deleted = 0
        for event_id in event_ids:
            if self._events.pop(event_id, None) is not None:
                deleted += 1
        return deleted

    async def earliest_event_date(self, owner_id: UUID) -> Optional[date]:
        dates = [e.date for e in self._events.values() if e.owner_id == owner_id]
        return min(dates) if dates else None

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def load_snapshot(
        self,
        owner_id: UUID,
        month: date,
    ) -> Optional[MonthlyBudgetSnapshot]:
        snapshot = self._snapshots.get((owner_id, month))
        return snapshot.model_copy(deep=True) if snapshot else None

    async def list_snapshots(self, owner_id: UUID) -> list[MonthlyBudgetSnapshot]:
        snapshots = [
            s.model_copy(deep=True)
            for (owner, _), s in self._snapshots.items()
            if owner == owner_id
        ]
        snapshots.sort(key=lambda s: s.month)
        return snapshots

    async def upsert_snapshot(
        self,
        snapshot: MonthlyBudgetSnapshot,
        overwrite: bool = True,
    ) -> MonthlyBudgetSnapshot:
        key = (snapshot.owner_id, snapshot.month)
        existing = self._snapshots.get(key)
        if existing is not None and not overwrite:
            return existing.model_copy(deep=True)

        stored = snapshot.model_copy(deep=True)
        if existing is not None:
            stored.created_at = existing.created_at
            stored.updated_at = utc_now()
        self._snapshots[key] = stored
        return stored.model_copy(deep=True)


class InMemoryAuditStorage(AuditStorageInterface):
    """
    List-backed audit log.

    Audit events are append-only.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
