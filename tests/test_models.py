"""
Tests for the cashflow engine data models.

Models are the first line of defense: anything malformed is rejected
before it reaches the generator or the store.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from cashflow_engine.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    DateWindow,
    EventKind,
    EventSource,
    FinancialEvent,
    Frequency,
    MonthlyBudgetSnapshot,
    MonthlyProjection,
    PlanTotals,
    ProjectionMode,
    RecurrenceRule,
    ValidationIssue,
    ValidationResult,
    to_money,
)


def make_rule(**overrides):
    data = {
        "owner_id": uuid4(),
        "kind": EventKind.EXPENSE,
        "category": "Rent",
        "amount": Decimal("1200.00"),
        "frequency": Frequency.MONTHLY,
        "anchor_date": date(2024, 1, 1),
    }
    data.update(overrides)
    return RecurrenceRule(**data)


class TestMoney:
    """Tests for fixed-point money helpers."""

    def test_to_money_rounds_half_up(self):
        """Test that half cents round away from zero."""
        assert to_money(Decimal("2.005")) == Decimal("2.01")
        assert to_money(Decimal("2.004")) == Decimal("2.00")

    def test_to_money_accepts_int_and_str(self):
        """Test that non-Decimal input is converted exactly."""
        assert to_money(5) == Decimal("5.00")
        assert to_money("0.1") == Decimal("0.10")


class TestRecurrenceRule:
    """Tests for the RecurrenceRule model."""

    def test_rule_creation(self):
        """Test RecurrenceRule creation with defaults."""
        rule = make_rule()
        assert rule.active is True
        assert rule.cursor_date is None
        assert rule.end_date is None
        assert rule.amount == Decimal("1200.00")

    def test_category_whitespace_stripped(self):
        """Test that whitespace is stripped from the category."""
        rule = make_rule(category="  Rent  ")
        assert rule.category == "Rent"

    def test_amount_normalized_to_cents(self):
        """Test that amounts are stored with two fractional digits."""
        rule = make_rule(amount=Decimal("10.5"))
        assert str(rule.amount) == "10.50"

    def test_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        with pytest.raises(ValueError):
            make_rule(amount=Decimal("0"))
        with pytest.raises(ValueError):
            make_rule(amount=Decimal("-5"))

    def test_rejects_sub_cent_amount(self):
        """Test that more than two fractional digits are rejected."""
        with pytest.raises(ValueError):
            make_rule(amount=Decimal("10.005"))

    def test_rejects_end_before_anchor(self):
        """Test that an end date before the anchor is rejected."""
        with pytest.raises(ValueError):
            make_rule(anchor_date=date(2024, 5, 1), end_date=date(2024, 4, 30))

    def test_end_equal_to_anchor_allowed(self):
        """Test that a rule may end on its anchor date."""
        rule = make_rule(anchor_date=date(2024, 5, 1), end_date=date(2024, 5, 1))
        assert rule.end_date == rule.anchor_date

    def test_rejects_unknown_frequency(self):
        """Test that frequencies outside the enum are rejected."""
        with pytest.raises(ValueError):
            make_rule(frequency="hourly")

    def test_quarterly_is_a_rule_frequency(self):
        """Test that quarterly rules can be stored."""
        rule = make_rule(frequency="quarterly")
        assert rule.frequency == Frequency.QUARTERLY

    def test_ended_before(self):
        """Test ended_before against the end date."""
        rule = make_rule(end_date=date(2024, 3, 1))
        assert rule.ended_before(date(2024, 3, 2))
        assert not rule.ended_before(date(2024, 3, 1))
        assert not make_rule().ended_before(date(2099, 1, 1))


class TestFinancialEvent:
    """Tests for the FinancialEvent model."""

    def test_from_rule_copies_payload(self):
        """Test that a rule-built event carries the rule's payload."""
        rule = make_rule(description="Flat")
        event = FinancialEvent.from_rule(rule, date(2024, 2, 1))

        assert event.source == EventSource.RECURRING
        assert event.rule_id == rule.id
        assert event.owner_id == rule.owner_id
        assert event.amount == rule.amount
        assert event.description == "Flat"
        assert event.matches_rule(rule)

    def test_matches_rule_detects_changes(self):
        """Test that payload edits on the rule make the event stale."""
        rule = make_rule()
        event = FinancialEvent.from_rule(rule, date(2024, 2, 1))

        assert not event.matches_rule(rule.model_copy(update={"amount": Decimal("1300.00")}))
        assert not event.matches_rule(rule.model_copy(update={"category": "Housing"}))
        assert not event.matches_rule(rule.model_copy(update={"kind": EventKind.INCOME}))
        assert not event.matches_rule(rule.model_copy(update={"description": "New"}))

    def test_recurring_event_requires_rule(self):
        """Test that recurring events must reference a rule."""
        with pytest.raises(ValueError):
            FinancialEvent(
                owner_id=uuid4(),
                kind=EventKind.EXPENSE,
                category="Rent",
                amount=Decimal("10"),
                date=date(2024, 1, 1),
                source=EventSource.RECURRING,
            )

    def test_manual_event_cannot_reference_rule(self):
        """Test that manual events never carry a rule id."""
        with pytest.raises(ValueError):
            FinancialEvent(
                owner_id=uuid4(),
                kind=EventKind.EXPENSE,
                category="Rent",
                amount=Decimal("10"),
                date=date(2024, 1, 1),
                rule_id=uuid4(),
            )

    def test_fingerprint_ignores_source_and_description(self):
        """Test that a manual and a recurring event can share a fingerprint."""
        rule = make_rule()
        recurring = FinancialEvent.from_rule(rule, date(2024, 2, 1))
        manual = FinancialEvent(
            owner_id=rule.owner_id,
            kind=EventKind.EXPENSE,
            category="Rent",
            amount=Decimal("1200"),
            description="paid by hand",
            date=date(2024, 2, 1),
        )
        assert recurring.fingerprint == manual.fingerprint

    def test_fingerprint_differs_by_date(self):
        """Test that the date is part of the fingerprint."""
        rule = make_rule()
        first = FinancialEvent.from_rule(rule, date(2024, 2, 1))
        second = FinancialEvent.from_rule(rule, date(2024, 3, 1))
        assert first.fingerprint != second.fingerprint

    def test_signed_amount(self):
        """Test that expenses are negative and income positive."""
        income = FinancialEvent.from_rule(make_rule(kind=EventKind.INCOME), date(2024, 1, 1))
        expense = FinancialEvent.from_rule(make_rule(), date(2024, 1, 1))
        assert income.signed_amount == Decimal("1200.00")
        assert expense.signed_amount == Decimal("-1200.00")


class TestWindowsAndBudgets:
    """Tests for windows, snapshots and derived totals."""

    def test_window_rejects_reversed_bounds(self):
        """Test that a window cannot end before it starts."""
        with pytest.raises(ValueError):
            DateWindow(start=date(2024, 2, 1), end=date(2024, 1, 1))

    def test_window_contains_is_inclusive(self):
        """Test that both window bounds are included."""
        window = DateWindow(start=date(2024, 1, 1), end=date(2024, 1, 31))
        assert window.contains(date(2024, 1, 1))
        assert window.contains(date(2024, 1, 31))
        assert not window.contains(date(2024, 2, 1))

    def test_snapshot_month_must_be_first_day(self):
        """Test that snapshots are keyed by first-of-month."""
        with pytest.raises(ValueError):
            MonthlyBudgetSnapshot(
                owner_id=uuid4(),
                month=date(2024, 2, 15),
                starting_balance=Decimal("0"),
            )

    def test_snapshot_balance_quantized(self):
        """Test that snapshot balances carry two fractional digits."""
        snapshot = MonthlyBudgetSnapshot(
            owner_id=uuid4(),
            month=date(2024, 2, 1),
            starting_balance=Decimal("12"),
        )
        assert str(snapshot.starting_balance) == "12.00"

    def test_projection_ending_balance(self):
        """Test computed net and ending balance of a projection month."""
        projection = MonthlyProjection(
            month=date(2024, 1, 1),
            mode=ProjectionMode.EXACT,
            starting_balance=Decimal("100.00"),
            income_total=Decimal("500.00"),
            expense_total=Decimal("300.00"),
        )
        assert projection.net == Decimal("200.00")
        assert projection.ending_balance == Decimal("300.00")
        assert projection.model_dump()["ending_balance"] == Decimal("300.00")

    def test_plan_totals_labeled_averaged(self):
        """Test that plan totals always say they are averaged."""
        totals = PlanTotals(income=Decimal("1000"), expense=Decimal("400"))
        assert totals.mode == ProjectionMode.AVERAGED
        assert totals.balance == Decimal("600.00")


class TestValidationModels:
    """Tests for validation result models."""

    def test_validation_result_valid(self):
        """Test ValidationResult when valid."""
        result = ValidationResult(schema_valid=True, semantic_valid=True)
        assert result.is_valid
        assert not result.has_errors

    def test_validation_result_counts(self):
        """Test error and warning accessors."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=False,
            issues=[
                ValidationIssue(
                    field="frequency",
                    issue_type="generation_bound",
                    message="too many",
                    severity="error",
                ),
                ValidationIssue(
                    field="anchor_date",
                    issue_type="suspicious_value",
                    message="old",
                    severity="warning",
                ),
            ],
        )
        assert not result.is_valid
        assert result.error_count == 1
        assert len(result.warnings) == 1

    def test_issue_severity_restricted(self):
        """Test that unknown severities are rejected."""
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            description="Rule created",
        )
        assert event.event_id is not None
        assert event.timestamp.tzinfo == timezone.utc
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test AuditEvent conversion to log dict."""
        owner_id = uuid4()
        event = AuditEventBuilder.events_materialized(
            rule_id=uuid4(),
            owner_id=owner_id,
            dates=[date(2024, 1, 31), date(2024, 2, 29)],
        )
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "events_materialized"
        assert log_dict["owner_id"] == str(owner_id)
        assert log_dict["details"]["dates"] == ["2024-01-31", "2024-02-29"]
        assert isinstance(datetime.fromisoformat(log_dict["timestamp"]), datetime)

    def test_builder_rule_active_changed(self):
        """Test that pausing and resuming map to distinct event types."""
        rule_id, owner_id = uuid4(), uuid4()
        paused = AuditEventBuilder.rule_active_changed(rule_id, owner_id, active=False)
        resumed = AuditEventBuilder.rule_active_changed(rule_id, owner_id, active=True)
        assert paused.event_type == AuditEventType.RULE_PAUSED
        assert resumed.event_type == AuditEventType.RULE_RESUMED

    def test_builder_snapshot_origin(self):
        """Test that user edits and computed snapshots are told apart."""
        owner_id = uuid4()
        edited = AuditEventBuilder.snapshot_written(owner_id, date(2024, 2, 1), "50.00", "user")
        computed = AuditEventBuilder.snapshot_written(owner_id, date(2024, 2, 1), "300.00", "carryover")
        assert edited.event_type == AuditEventType.SNAPSHOT_EDITED
        assert computed.event_type == AuditEventType.SNAPSHOT_CREATED

    def test_builder_persistence_failed(self):
        """Test that persistence failures are errors."""
        event = AuditEventBuilder.persistence_failed(
            operation="upsert_events",
            error_message="timeout",
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "timeout"
        assert event.details["operation"] == "upsert_events"
