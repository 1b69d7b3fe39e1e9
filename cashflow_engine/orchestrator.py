"""
Main Orchestrator for the Cashflow Engine

This module ties together all the components and defines the
end-to-end flows for:
1. Rule lifecycle (validate → save → reconcile, pause/resume, delete with cascade)
2. Refresh (duplicate sweep → reconcile every active rule)
3. Reporting (monthly projection, carryover balances, daily cashflow)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No rule is stored without passing validation
- No rule change is left unreconciled
- Every step is audited

Consumers that used to listen on a global change event subscribe to
the AuditLogger instead.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from cashflow_engine.audit import AuditLogger, create_correlation_id
from cashflow_engine.config import Settings, get_settings
from cashflow_engine.materialization import MaterializationEngine
from cashflow_engine.models.audit import AuditEventBuilder
from cashflow_engine.models.budget import (
    BudgetPlanItem,
    DayCashflow,
    MonthlyBudgetSnapshot,
    MonthlyProjection,
    PlanTotals,
    ReconcileResult,
    SweepResult,
)
from cashflow_engine.models.recurrence import DateWindow, RecurrenceRule, utc_now
from cashflow_engine.projection import (
    BalanceProjectionEngine,
    BudgetPlanner,
    CarryoverLedger,
)
from cashflow_engine.recurrence import OccurrenceGenerator
from cashflow_engine.recurrence.dates import month_start, reconcile_window
from cashflow_engine.services.storage import (
    AuditStorageInterface,
    FinanceStorageInterface,
    InMemoryFinanceStorage,
    NotFoundError,
    RetryingFinanceStorage,
)
from cashflow_engine.validation import InvalidRuleError, RuleValidator


logger = structlog.get_logger(__name__)

# Fields a caller may never change through update_rule
_IMMUTABLE_FIELDS = {"id", "owner_id", "created_at", "cursor_date"}


class RecurringEventEngine:
    """
    Facade over generation, materialization and projection.

    Every public operation takes an optional correlation_id; one is
    created when missing so all audit events of a call can be traced.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        generator: Optional[OccurrenceGenerator] = None,
        validator: Optional[RuleValidator] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        settings = settings or get_settings()
        self._materialization_settings = settings.materialization
        self._clock = clock or date.today

        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._generator = generator or OccurrenceGenerator(settings.generation)
        self._validator = validator or RuleValidator(
            generator=self._generator,
            settings=self._materialization_settings,
        )
        self._materializer = MaterializationEngine(
            storage,
            generator=self._generator,
            audit_logger=self._audit_logger,
            settings=self._materialization_settings,
        )
        self._ledger = CarryoverLedger(storage, audit_logger=self._audit_logger)
        self._projection = BalanceProjectionEngine(
            storage,
            ledger=self._ledger,
            generator=self._generator,
            audit_logger=self._audit_logger,
            clock=self._clock,
        )
        self._planner = BudgetPlanner()

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    @property
    def storage(self) -> FinanceStorageInterface:
        return self._storage

    def default_window(self, today: Optional[date] = None) -> DateWindow:
        """
        First day of the month `lookback_months` back to the last day of
        the month `horizon_months` ahead.
        """
        return reconcile_window(
            today or self._clock(),
            self._materialization_settings.lookback_months,
            self._materialization_settings.horizon_months,
        )

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    async def reconcile_rule(
        self,
        rule: RecurrenceRule,
        window: Optional[DateWindow] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconcileResult:
        return await self._materializer.reconcile(
            rule,
            window or self.default_window(),
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def reconcile_all(
        self,
        owner_id: UUID,
        window: Optional[DateWindow] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[ReconcileResult]:
        return await self._materializer.reconcile_all(
            owner_id,
            window or self.default_window(),
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def sweep_duplicates(
        self,
        owner_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> SweepResult:
        return await self._materializer.sweep_duplicates(
            owner_id,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def refresh(
        self,
        owner_id: UUID,
        window: Optional[DateWindow] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[SweepResult, list[ReconcileResult]]:
        """
        The load-time trigger: clean duplicates, then reconcile every
        active rule.
        """
        correlation_id = correlation_id or create_correlation_id()
        sweep = await self.sweep_duplicates(owner_id, correlation_id=correlation_id)
        results = await self.reconcile_all(owner_id, window, correlation_id=correlation_id)
        return sweep, results

    # -------------------------------------------------------------------------
    # Rule lifecycle
    # -------------------------------------------------------------------------

    async def create_rule(
        self,
        data: Union[dict[str, Any], RecurrenceRule],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[RecurrenceRule, ReconcileResult]:
        """
        Validate, store and immediately materialize a new rule.

        Raises:
            InvalidRuleError: the rule was rejected; nothing was stored
        """
        correlation_id = correlation_id or create_correlation_id()
        rule = await self._validate(data, correlation_id)

        stored = await self._storage.save_rule(rule)
        await self._audit_logger.log(AuditEventBuilder.rule_created(
            rule_id=stored.id,
            owner_id=stored.owner_id,
            frequency=stored.frequency.value,
            correlation_id=correlation_id,
        ))

        result = await self.reconcile_rule(stored, correlation_id=correlation_id)
        return await self._reload(stored), result

    async def update_rule(
        self,
        rule_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[RecurrenceRule, ReconcileResult]:
        """
        Apply changes to a stored rule and reconcile it.

        Events of the old schedule inside the window are replaced by the
        new schedule's events. The stored cursor is kept as it is when the
        rule is written, even if a reconcile advanced it meanwhile.

        Raises:
            NotFoundError: no such rule
            InvalidRuleError: the changed rule is invalid; nothing was stored
        """
        correlation_id = correlation_id or create_correlation_id()
        existing = await self._get_rule(rule_id)

        blocked = _IMMUTABLE_FIELDS & set(changes)
        if blocked:
            raise ValueError(f"Cannot change fields: {sorted(blocked)}")

        merged = existing.model_dump()
        merged.update(changes)
        rule = await self._validate(merged, correlation_id)
        rule.updated_at = utc_now()

        changed_fields = sorted(
            name for name in changes
            if getattr(existing, name, None) != getattr(rule, name, None)
        )
        stored = await self._storage.save_rule(rule)
        await self._audit_logger.log(AuditEventBuilder.rule_updated(
            rule_id=stored.id,
            owner_id=stored.owner_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

        result = await self.reconcile_rule(stored, correlation_id=correlation_id)
        return await self._reload(stored), result

    async def set_rule_active(
        self,
        rule_id: UUID,
        active: bool,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[RecurrenceRule, ReconcileResult]:
        """Pause or resume a rule. Pausing keeps already materialized events."""
        correlation_id = correlation_id or create_correlation_id()
        existing = await self._get_rule(rule_id)

        rule = existing.model_copy(update={"active": active, "updated_at": utc_now()})
        stored = await self._storage.save_rule(rule)
        if existing.active != active:
            await self._audit_logger.log(AuditEventBuilder.rule_active_changed(
                rule_id=stored.id,
                owner_id=stored.owner_id,
                active=active,
                correlation_id=correlation_id,
            ))

        result = await self.reconcile_rule(stored, correlation_id=correlation_id)
        return await self._reload(stored), result

    async def delete_rule(
        self,
        rule_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete a rule and every event it generated.

        Returns the number of events removed with it.
        """
        correlation_id = correlation_id or create_correlation_id()
        rule = await self._get_rule(rule_id)

        removed = await self._materializer.delete_rule_events(rule, correlation_id=correlation_id)
        await self._storage.delete_rule(rule.id)
        await self._audit_logger.log(AuditEventBuilder.rule_deleted(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            cascaded_events=len(removed),
            correlation_id=correlation_id,
        ))
        return len(removed)

    async def _validate(
        self,
        data: Union[dict[str, Any], RecurrenceRule],
        correlation_id: UUID,
    ) -> RecurrenceRule:
        try:
            return self._validator.build_rule(data, today=self._clock())
        except InvalidRuleError as e:
            await self._audit_logger.log(AuditEventBuilder.rule_rejected(
                owner_id=_owner_of(data),
                issues=[issue.model_dump() for issue in e.issues],
                correlation_id=correlation_id,
            ))
            raise

    async def _get_rule(self, rule_id: UUID) -> RecurrenceRule:
        rule = await self._storage.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule not found: {rule_id}")
        return rule

    async def _reload(self, rule: RecurrenceRule) -> RecurrenceRule:
        return await self._storage.get_rule(rule.id) or rule

    # -------------------------------------------------------------------------
    # Balances and reports
    # -------------------------------------------------------------------------

    async def project_months(
        self,
        owner_id: UUID,
        months: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[MonthlyProjection]:
        if months is None:
            months = self._materialization_settings.default_projection_months
        return await self._projection.project(
            owner_id,
            months,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def starting_balance(self, owner_id: UUID, month: date) -> Decimal:
        return await self._ledger.starting_balance(owner_id, month)

    async def set_starting_balance(
        self,
        owner_id: UUID,
        month: date,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> MonthlyBudgetSnapshot:
        return await self._ledger.set_starting_balance(
            owner_id,
            month,
            amount,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def daily_cashflow(self, owner_id: UUID, month: date) -> list[DayCashflow]:
        return await self._projection.daily_cashflow(owner_id, month)

    # -------------------------------------------------------------------------
    # Budget planning
    # -------------------------------------------------------------------------

    def plan_totals(self, items: list[BudgetPlanItem]) -> PlanTotals:
        return self._planner.totals(items)

    async def save_budget_plan(
        self,
        owner_id: UUID,
        items: list[BudgetPlanItem],
        month: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[RecurrenceRule]:
        """Create one rule per planned line with a positive amount."""
        correlation_id = correlation_id or create_correlation_id()
        month = month or self._clock()

        created = []
        for rule in self._planner.to_rules(owner_id, items, month):
            stored, _ = await self.create_rule(rule, correlation_id=correlation_id)
            created.append(stored)

        logger.info(
            "budget_plan_saved",
            owner_id=str(owner_id),
            month=month_start(month).isoformat(),
            rules=len(created),
        )
        return created


def _owner_of(data: Union[dict[str, Any], RecurrenceRule]) -> Optional[UUID]:
    if isinstance(data, RecurrenceRule):
        return data.owner_id
    owner_id = data.get("owner_id")
    return owner_id if isinstance(owner_id, UUID) else None


def create_engine_components(
    storage: Optional[FinanceStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], date]] = None,
) -> RecurringEventEngine:
    """
    Factory function to create a fully wired engine.

    Args:
        storage: Persistence backend. Falls back to in-memory storage
                 when not given.
        audit_storage: Optional audit persistence
        settings: Settings override (defaults to get_settings())
        clock: Source of "today" (defaults to date.today)

    Returns:
        RecurringEventEngine with storage wrapped in the retry layer
    """
    settings = settings or get_settings()

    if storage is None:
        logger.warning("storage_not_configured", fallback="in_memory")
        storage = InMemoryFinanceStorage()

    return RecurringEventEngine(
        RetryingFinanceStorage(storage, settings=settings.storage),
        audit_logger=AuditLogger(audit_storage),
        settings=settings,
        clock=clock,
    )
