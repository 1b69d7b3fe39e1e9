"""
Core Data Models for the Cashflow Engine

These models define the strict schemas for rules and events flowing
through the engine. They are designed to:
1. Enforce type safety at runtime
2. Keep money in fixed-point Decimal with two fractional digits
3. Be serializable for storage and logging
4. Expose the natural key used for duplicate suppression

DESIGN DECISION: We use Pydantic v2. Invalid rules are rejected when the
model is built, so nothing malformed ever reaches the generator.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import NamedTuple, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize a numeric value to two fractional digits (half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EventKind(str, Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class Frequency(str, Enum):
    """
    Supported recurrence frequencies.

    DESIGN DECISION: Quarterly is a storable frequency (three calendar
    months from the anchor), not only a planning multiplier.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class EventSource(str, Enum):
    """Where a financial event came from."""
    MANUAL = "manual"        # Entered directly by the user
    RECURRING = "recurring"  # Materialized from a recurrence rule


# =============================================================================
# WINDOWS
# =============================================================================

class DateWindow(BaseModel):
    """An inclusive calendar date range."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode='after')
    def validate_order(self) -> 'DateWindow':
        if self.end < self.start:
            raise ValueError("Window end cannot be before window start")
        return self

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


# =============================================================================
# RECURRENCE RULE
# =============================================================================

class RecurrenceRule(BaseModel):
    """
    A declarative recurrence: frequency + anchor date + optional end date.

    CRITICAL: anchor_date is the phase origin for every occurrence.
    Two rules with the same frequency align by elapsed intervals from
    their own anchors, never from a shared calendar grid.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique rule ID"
    )
    owner_id: UUID = Field(
        ...,
        description="Owner of the rule"
    )

    # What is generated
    kind: EventKind
    category: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Category label copied onto each event"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount of each occurrence"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500
    )

    # When it is generated
    frequency: Frequency
    anchor_date: date = Field(
        ...,
        description="First occurrence and phase reference"
    )
    end_date: Optional[date] = Field(
        default=None,
        description="Last possible occurrence date (inclusive)"
    )

    # State
    active: bool = Field(
        default=True,
        description="Paused rules keep their history but generate nothing new"
    )
    cursor_date: Optional[date] = Field(
        default=None,
        description="Latest date up to which occurrences are materialized"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('amount')
    @classmethod
    def normalize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurrenceRule':
        if self.end_date and self.end_date < self.anchor_date:
            raise ValueError("End date cannot be before anchor date")
        return self

    def ended_before(self, d: date) -> bool:
        return self.end_date is not None and self.end_date < d


# =============================================================================
# FINANCIAL EVENT
# =============================================================================

class Fingerprint(NamedTuple):
    """Natural key used to detect duplicate events regardless of source."""
    owner_id: UUID
    kind: EventKind
    category: str
    amount: Decimal
    date: date


class FinancialEvent(BaseModel):
    """A concrete dated income or expense."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID

    kind: EventKind
    category: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    date: date

    source: EventSource = Field(default=EventSource.MANUAL)
    rule_id: Optional[UUID] = Field(
        default=None,
        description="Generating rule, set only for recurring events"
    )

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('amount')
    @classmethod
    def normalize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode='after')
    def validate_source(self) -> 'FinancialEvent':
        if self.source == EventSource.RECURRING and self.rule_id is None:
            raise ValueError("Recurring events must reference their rule")
        if self.source == EventSource.MANUAL and self.rule_id is not None:
            raise ValueError("Manual events cannot reference a rule")
        return self

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(
            owner_id=self.owner_id,
            kind=self.kind,
            category=self.category,
            amount=self.amount,
            date=self.date,
        )

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind == EventKind.INCOME else -self.amount

    @classmethod
    def from_rule(cls, rule: RecurrenceRule, on: date) -> 'FinancialEvent':
        """Build the event a rule produces on one occurrence date."""
        return cls(
            owner_id=rule.owner_id,
            kind=rule.kind,
            category=rule.category,
            amount=rule.amount,
            description=rule.description,
            date=on,
            source=EventSource.RECURRING,
            rule_id=rule.id,
        )

    def matches_rule(self, rule: RecurrenceRule) -> bool:
        """True when the event still carries the rule's current payload."""
        return (
            self.kind == rule.kind
            and self.category == rule.category
            and self.amount == rule.amount
            and (self.description or None) == (rule.description or None)
        )


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'out_of_order')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage rule validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (generation bounds, suspicious values)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]
