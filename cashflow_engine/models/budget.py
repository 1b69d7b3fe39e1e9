"""
Budget and Projection Models

Snapshots are persisted; projections, plan totals and reconcile results
are derived values handed back to callers.

DESIGN DECISION: Every derived total says how it was computed
(exact, estimated or averaged). Numbers from different modes are never
placed side by side unlabeled.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

from cashflow_engine.models.recurrence import (
    DateWindow,
    EventKind,
    FinancialEvent,
    to_money,
    utc_now,
)


class ProjectionMode(str, Enum):
    """How a monthly figure was produced."""
    EXACT = "exact"            # Sum of materialized events
    ESTIMATED = "estimated"    # Exact occurrence counts of active rules
    AVERAGED = "averaged"      # Frequency-to-monthly multipliers (display only)


class PlanningFrequency(str, Enum):
    """Frequencies offered by the budget planner."""
    DAILY = "daily"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class SnapshotOrigin(str, Enum):
    """Who wrote a monthly starting balance."""
    USER = "user"
    CARRYOVER = "carryover"
    PROFILE_DEFAULT = "profile_default"
    ZERO_SEED = "zero_seed"  # no profile default configured


# =============================================================================
# PERSISTED
# =============================================================================

class MonthlyBudgetSnapshot(BaseModel):
    """
    Starting balance of one month for one owner.

    CRITICAL: Once a snapshot exists it is authoritative. Only an
    explicit user edit replaces it.
    """

    owner_id: UUID
    month: date = Field(
        ...,
        description="First day of the month"
    )
    starting_balance: Decimal = Field(..., decimal_places=2)
    origin: SnapshotOrigin = Field(default=SnapshotOrigin.USER)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('month')
    @classmethod
    def validate_month(cls, v: date) -> date:
        if v.day != 1:
            raise ValueError("Snapshot month must be the first day of a month")
        return v

    @field_validator('starting_balance')
    @classmethod
    def normalize_balance(cls, v: Decimal) -> Decimal:
        return to_money(v)


# =============================================================================
# DERIVED
# =============================================================================

class MonthlyProjection(BaseModel):
    """
    One month of a balance projection.

    ending_balance of month n is the starting_balance of month n+1.
    """

    month: date
    mode: ProjectionMode
    starting_balance: Decimal
    income_total: Decimal
    expense_total: Decimal

    @computed_field
    @property
    def net(self) -> Decimal:
        return to_money(self.income_total - self.expense_total)

    @computed_field
    @property
    def ending_balance(self) -> Decimal:
        return to_money(self.starting_balance + self.net)


class DayCashflow(BaseModel):
    """Income and expense of a single calendar day."""

    date: date
    income: Decimal = Decimal("0.00")
    expense: Decimal = Decimal("0.00")
    event_count: int = Field(default=0, ge=0)

    @computed_field
    @property
    def net(self) -> Decimal:
        return to_money(self.income - self.expense)


class BudgetPlanItem(BaseModel):
    """A line in the budget planner."""

    category: str = Field(..., min_length=1, max_length=200)
    kind: EventKind
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    frequency: PlanningFrequency = PlanningFrequency.MONTHLY
    due_date: Optional[date] = None


class PlanTotals(BaseModel):
    """Averaged monthly totals of a budget plan. Never used for dates."""

    mode: ProjectionMode = ProjectionMode.AVERAGED
    income: Decimal
    expense: Decimal
    by_category: dict[str, Decimal] = Field(default_factory=dict)

    @computed_field
    @property
    def balance(self) -> Decimal:
        return to_money(self.income - self.expense)


class ReconcileResult(BaseModel):
    """Outcome of reconciling one rule over one window."""

    rule_id: UUID
    window: DateWindow
    created: list[FinancialEvent] = Field(default_factory=list)
    deleted: list[UUID] = Field(default_factory=list)
    suppressed: list[date] = Field(
        default_factory=list,
        description="Occurrence dates satisfied by an existing event with the same fingerprint"
    )
    cursor_date: Optional[date] = None
    skipped_reason: Optional[str] = None

    @property
    def changed(self) -> bool:
        return bool(self.created or self.deleted)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


class SweepResult(BaseModel):
    """Outcome of a duplicate sweep for one owner."""

    owner_id: UUID
    groups_examined: int = Field(default=0, ge=0)
    kept_ids: list[UUID] = Field(default_factory=list)
    deleted_ids: list[UUID] = Field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_ids)
