"""
Abstract Storage Interface

DESIGN DECISION: The engine never talks to a database directly.
Persistence is an external collaborator reached through this interface.
This allows us to:
1. Plug in whatever store the host application uses
2. Use in-memory storage for testing
3. Add retry and caching layers transparently
4. Keep reconciliation logic decoupled from storage implementation

The interface is intentionally small - just the operations the engine needs.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from cashflow_engine.models.audit import AuditEvent
from cashflow_engine.models.budget import MonthlyBudgetSnapshot
from cashflow_engine.models.recurrence import (
    DateWindow,
    FinancialEvent,
    RecurrenceRule,
)


class FinanceStorageInterface(ABC):
    """
    Abstract interface for rule, event and snapshot storage.

    Any storage implementation must implement these methods. Every
    method raises StorageError (or a subclass) on failure and must
    never report success for a write that did not happen.
    """

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def load_rules(self, owner_id: UUID) -> list[RecurrenceRule]:
        """
        Load every rule of an owner, active or paused.

        Returns:
            Rules ordered by anchor date
        """
        pass

    @abstractmethod
    async def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]:
        """Retrieve a rule by ID, or None if it does not exist."""
        pass

    @abstractmethod
    async def save_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        """
        Insert or replace a rule.

        Replacing keeps the stored cursor_date; once a rule exists its
        cursor only moves through advance_cursor.

        Returns:
            The stored rule
        """
        pass

    @abstractmethod
    async def advance_cursor(self, rule_id: UUID, candidate: date) -> Optional[date]:
        """
        Set the rule's cursor_date to max(stored cursor, candidate).

        Only the cursor is written, in one atomic step, so concurrent
        edits to the rule's other fields are never overwritten.

        Returns:
            The cursor stored before the call

        Raises:
            NotFoundError: the rule does not exist
        """
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: UUID) -> bool:
        """
        Delete a rule.

        Does NOT cascade; the engine deletes generated events first.

        Returns:
            True if a rule was deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    @abstractmethod
    async def load_events(
        self,
        owner_id: UUID,
        window: Optional[DateWindow] = None,
        rule_id: Optional[UUID] = None,
    ) -> list[FinancialEvent]:
        """
        Load events of an owner.

        Args:
            owner_id: Owner whose events are loaded
            window: Only events dated inside this inclusive window
            rule_id: Only recurring events generated by this rule

        Returns:
            Events ordered by date, then creation time
        """
        pass

    @abstractmethod
    async def upsert_events(
        self,
        events: list[FinancialEvent],
    ) -> list[FinancialEvent]:
        """
        Store events, keyed on their fingerprint.

        An event whose id is already stored replaces that row. A new
        event whose fingerprint matches a stored event is NOT inserted;
        the stored event is returned in its place. The check and the
        insert must be atomic with respect to other callers.

        Returns:
            The stored row for each input, in input order
        """
        pass

    @abstractmethod
    async def delete_events(self, event_ids: list[UUID]) -> int:
        """
        Delete events by ID. Unknown IDs are ignored.

        Returns:
            Number of events deleted
        """
        pass

    @abstractmethod
    async def earliest_event_date(self, owner_id: UUID) -> Optional[date]:
        """Date of the owner's oldest event, or None if there are none."""
        pass

    # -------------------------------------------------------------------------
    # Monthly snapshots
    # -------------------------------------------------------------------------

    @abstractmethod
    async def load_snapshot(
        self,
        owner_id: UUID,
        month: date,
    ) -> Optional[MonthlyBudgetSnapshot]:
        """Snapshot for (owner, first-of-month), or None."""
        pass

    @abstractmethod
    async def list_snapshots(self, owner_id: UUID) -> list[MonthlyBudgetSnapshot]:
        """All snapshots of an owner, ordered by month."""
        pass

    @abstractmethod
    async def upsert_snapshot(
        self,
        snapshot: MonthlyBudgetSnapshot,
        overwrite: bool = True,
    ) -> MonthlyBudgetSnapshot:
        """
        Store a monthly snapshot.

        Args:
            snapshot: Snapshot to store
            overwrite: When False, an existing snapshot for the same
                      month is kept and returned unchanged

        Returns:
            The snapshot now stored for that month
        """
        pass

    @abstractmethod
    async def load_default_starting_balance(self, owner_id: UUID) -> Optional[Decimal]:
        """Profile-level starting balance, or None if not configured."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events sharing a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations (persistence failure)."""
    pass


class TransientStorageError(StorageError):
    """A failure worth retrying (timeouts, dropped connections)."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass
