"""
Tests for the materialization engine.

Covers idempotent reconciliation, fingerprint suppression across rules
and sources, cursor behavior on success and on partial failure, and the
duplicate sweep.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from cashflow_engine.config import GenerationSettings
from cashflow_engine.materialization import MaterializationEngine
from cashflow_engine.models import (
    AuditEventType,
    DateWindow,
    EventKind,
    EventSource,
    FinancialEvent,
    Frequency,
    RecurrenceRule,
)
from cashflow_engine.recurrence import GenerationOverrunError, OccurrenceGenerator
from cashflow_engine.services.storage import InMemoryFinanceStorage, StorageError


Q1 = DateWindow(start=date(2024, 1, 1), end=date(2024, 3, 31))
H1 = DateWindow(start=date(2024, 1, 1), end=date(2024, 6, 30))


class FailingUpsertStorage(InMemoryFinanceStorage):
    """Fails the n-th upsert_events call until disarmed."""

    def __init__(self, fail_on_call):
        super().__init__()
        self.fail_on_call = fail_on_call
        self.calls = 0

    async def upsert_events(self, events):
        self.calls += 1
        if self.fail_on_call and self.calls == self.fail_on_call:
            raise StorageError("write rejected")
        return await super().upsert_events(events)


def make_rule(owner_id, anchor=date(2024, 1, 1), **overrides):
    data = {
        "owner_id": owner_id,
        "kind": EventKind.EXPENSE,
        "category": "Rent",
        "amount": Decimal("1200.00"),
        "frequency": Frequency.MONTHLY,
        "anchor_date": anchor,
    }
    data.update(overrides)
    return RecurrenceRule(**data)


@pytest.fixture
def engine(storage, audit_logger, materialization_settings):
    return MaterializationEngine(
        storage,
        generator=OccurrenceGenerator(GenerationSettings()),
        audit_logger=audit_logger,
        settings=materialization_settings,
    )


def saved(run, storage, rule):
    return run(storage.save_rule(rule))


class TestReconcile:
    """Tests for MaterializationEngine.reconcile."""

    def test_creates_one_event_per_occurrence(self, run, engine, storage, owner_id):
        """Test that a fresh rule is fully materialized."""
        rule = saved(run, storage, make_rule(owner_id))

        result = run(engine.reconcile(rule, Q1))

        assert [e.date for e in result.created] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
        assert result.deleted == []
        assert result.suppressed == []
        events = run(storage.load_events(owner_id))
        assert len(events) == 3
        assert all(e.source == EventSource.RECURRING and e.rule_id == rule.id for e in events)

    def test_second_reconcile_is_a_no_op(self, run, engine, storage, owner_id):
        """Test that reconciling twice changes nothing the second time."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, Q1))
        before = run(storage.load_events(owner_id))

        result = run(engine.reconcile(rule, Q1))

        assert result.created == []
        assert result.deleted == []
        assert not result.changed
        assert [e.id for e in run(storage.load_events(owner_id))] == [e.id for e in before]

    def test_advances_cursor(self, run, engine, storage, owner_id):
        """Test that the stored cursor moves to the last occurrence."""
        rule = saved(run, storage, make_rule(owner_id))

        result = run(engine.reconcile(rule, Q1))

        assert result.cursor_date == date(2024, 3, 1)
        assert run(storage.get_rule(rule.id)).cursor_date == date(2024, 3, 1)

    def test_cursor_never_moves_backward(self, run, engine, storage, owner_id):
        """Test that a narrower later window keeps the cursor."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, H1))

        stored = run(storage.get_rule(rule.id))
        result = run(engine.reconcile(stored, Q1))

        assert result.cursor_date == date(2024, 6, 1)
        assert run(storage.get_rule(rule.id)).cursor_date == date(2024, 6, 1)

    def test_cursor_write_keeps_concurrent_edit(self, run, engine, storage, owner_id):
        """Test that advancing the cursor never writes back the rule copy being reconciled."""
        rule = saved(run, storage, make_rule(owner_id))
        edited = rule.model_copy(update={"amount": Decimal("1300.00")})
        run(storage.save_rule(edited))

        run(engine.reconcile(rule, Q1))

        stored = run(storage.get_rule(rule.id))
        assert stored.amount == Decimal("1300.00")
        assert stored.cursor_date == date(2024, 3, 1)

    def test_unsaved_rule_leaves_cursor_unset(self, run, engine, storage, owner_id):
        """Test that a rule deleted mid-reconcile does not fail the reconcile."""
        rule = make_rule(owner_id)

        result = run(engine.reconcile(rule, Q1))

        assert result.created_count == 3
        assert result.cursor_date is None
        assert run(storage.get_rule(rule.id)) is None

    def test_paused_rule_is_skipped(self, run, engine, storage, owner_id):
        """Test that pausing keeps history and creates nothing."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, Q1))

        paused = rule.model_copy(update={"active": False})
        result = run(engine.reconcile(paused, H1))

        assert result.skipped_reason == "rule_paused"
        assert result.created == []
        assert len(run(storage.load_events(owner_id))) == 3

    def test_amount_change_replaces_events(self, run, engine, storage, owner_id):
        """Test that stale events are deleted and recreated."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, Q1))

        edited = saved(run, storage, rule.model_copy(update={"amount": Decimal("1300.00")}))
        result = run(engine.reconcile(edited, Q1))

        assert result.deleted_count == 3
        assert result.created_count == 3
        events = run(storage.load_events(owner_id))
        assert len(events) == 3
        assert all(e.amount == Decimal("1300.00") for e in events)

    def test_shortened_end_date_removes_later_events(self, run, engine, storage, owner_id):
        """Test that dates no longer generated are deleted."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, Q1))

        edited = saved(run, storage, rule.model_copy(update={"end_date": date(2024, 1, 31)}))
        result = run(engine.reconcile(edited, Q1))

        assert result.created == []
        assert result.deleted_count == 2
        assert [e.date for e in run(storage.load_events(owner_id))] == [date(2024, 1, 1)]

    def test_events_outside_window_untouched(self, run, engine, storage, owner_id):
        """Test that reconcile only looks inside its window."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, H1))

        edited = saved(run, storage, rule.model_copy(update={"end_date": date(2024, 1, 31)}))
        run(engine.reconcile(edited, Q1))

        dates = [e.date for e in run(storage.load_events(owner_id))]
        assert dates == [date(2024, 1, 1), date(2024, 4, 1), date(2024, 5, 1), date(2024, 6, 1)]

    def test_same_rule_duplicates_collapsed(self, run, engine, storage, owner_id):
        """Test that at most one event per rule and date survives."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, Q1))
        storage.add_event(FinancialEvent.from_rule(rule, date(2024, 2, 1)))

        result = run(engine.reconcile(rule, Q1))

        assert result.deleted_count == 1
        feb = [e for e in run(storage.load_events(owner_id)) if e.date == date(2024, 2, 1)]
        assert len(feb) == 1


class TestFingerprintSuppression:
    """Tests for duplicate suppression across rules and sources."""

    def test_two_rent_rules_share_dates(self, run, engine, storage, owner_id):
        """Test that identical rules with different anchors store one event per date."""
        first = saved(run, storage, make_rule(owner_id, anchor=date(2024, 1, 1)))
        second = saved(run, storage, make_rule(owner_id, anchor=date(2023, 12, 1)))

        run(engine.reconcile(first, Q1))
        result = run(engine.reconcile(second, Q1))

        assert result.created == []
        assert result.suppressed == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
        on_feb_first = [
            e for e in run(storage.load_events(owner_id)) if e.date == date(2024, 2, 1)
        ]
        assert len(on_feb_first) == 1

    def test_suppressed_dates_advance_cursor(self, run, engine, storage, owner_id):
        """Test that a suppressed occurrence counts as satisfied."""
        first = saved(run, storage, make_rule(owner_id))
        second = saved(run, storage, make_rule(owner_id, anchor=date(2023, 12, 1)))
        run(engine.reconcile(first, Q1))

        result = run(engine.reconcile(second, Q1))

        assert result.cursor_date == date(2024, 3, 1)

    def test_manual_event_suppresses_creation(self, run, engine, storage, owner_id):
        """Test that a manual entry with the same fingerprint satisfies the occurrence."""
        storage.add_event(FinancialEvent(
            owner_id=owner_id,
            kind=EventKind.EXPENSE,
            category="Rent",
            amount=Decimal("1200.00"),
            date=date(2024, 2, 1),
        ))
        rule = saved(run, storage, make_rule(owner_id))

        result = run(engine.reconcile(rule, Q1))

        assert [e.date for e in result.created] == [date(2024, 1, 1), date(2024, 3, 1)]
        assert result.suppressed == [date(2024, 2, 1)]

    def test_other_owner_does_not_suppress(self, run, engine, storage, owner_id):
        """Test that fingerprints are scoped to the owner."""
        other = saved(run, storage, make_rule(uuid4()))
        mine = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(other, Q1))

        result = run(engine.reconcile(mine, Q1))

        assert result.created_count == 3

    def test_suppression_is_audited(self, run, engine, storage, owner_id, captured_events):
        """Test that suppression is observable but not an error."""
        first = saved(run, storage, make_rule(owner_id))
        second = saved(run, storage, make_rule(owner_id, anchor=date(2023, 12, 1)))
        run(engine.reconcile(first, Q1))
        run(engine.reconcile(second, Q1))

        types = [e.event_type for e in captured_events]
        assert AuditEventType.DUPLICATE_SUPPRESSED in types
        assert AuditEventType.PERSISTENCE_FAILED not in types

    def test_concurrent_reconciles_store_one_event_per_date(self, run, engine, storage, owner_id):
        """Test that racing reconciles of the same rule never duplicate."""
        rule = saved(run, storage, make_rule(owner_id))

        async def race():
            return await asyncio.gather(
                engine.reconcile(rule, Q1),
                engine.reconcile(rule, Q1),
            )

        results = run(race())

        assert sum(r.created_count for r in results) == 3
        assert len(run(storage.load_events(owner_id))) == 3


class TestFailures:
    """Tests for error propagation and partial reconcile."""

    def test_partial_failure_holds_cursor(self, run, owner_id, materialization_settings):
        """Test that the cursor stops before the failing batch."""
        storage = FailingUpsertStorage(fail_on_call=2)
        engine = MaterializationEngine(storage, settings=materialization_settings)
        rule = saved(run, storage, make_rule(owner_id))

        with pytest.raises(StorageError):
            run(engine.reconcile(rule, H1))

        assert [e.date for e in run(storage.load_events(owner_id))] == [date(2024, 1, 1), date(2024, 2, 1)]
        assert run(storage.get_rule(rule.id)).cursor_date == date(2024, 2, 1)

    def test_retry_after_failure_fills_gap(self, run, owner_id, materialization_settings):
        """Test that re-running after a failure completes the window."""
        storage = FailingUpsertStorage(fail_on_call=2)
        engine = MaterializationEngine(storage, settings=materialization_settings)
        rule = saved(run, storage, make_rule(owner_id))
        with pytest.raises(StorageError):
            run(engine.reconcile(rule, H1))

        storage.fail_on_call = None
        result = run(engine.reconcile(run(storage.get_rule(rule.id)), H1))

        assert [e.date for e in result.created] == [
            date(2024, 3, 1), date(2024, 4, 1), date(2024, 5, 1), date(2024, 6, 1),
        ]
        assert result.cursor_date == date(2024, 6, 1)
        assert len(run(storage.load_events(owner_id))) == 6

    def test_failure_is_audited(self, run, owner_id, audit_logger, captured_events, materialization_settings):
        """Test that persistence failures are recorded before propagating."""
        storage = FailingUpsertStorage(fail_on_call=1)
        engine = MaterializationEngine(storage, audit_logger=audit_logger, settings=materialization_settings)
        rule = saved(run, storage, make_rule(owner_id))

        with pytest.raises(StorageError):
            run(engine.reconcile(rule, Q1))

        failures = [e for e in captured_events if e.event_type == AuditEventType.PERSISTENCE_FAILED]
        assert len(failures) == 1
        assert failures[0].details["operation"] == "upsert_events"
        assert run(storage.get_rule(rule.id)).cursor_date is None

    def test_generation_overrun_propagates(self, run, storage, owner_id, audit_logger, captured_events):
        """Test that overruns are fatal and write nothing."""
        engine = MaterializationEngine(
            storage,
            generator=OccurrenceGenerator(GenerationSettings(max_occurrences=5)),
            audit_logger=audit_logger,
        )
        rule = saved(run, storage, make_rule(owner_id, frequency=Frequency.DAILY))

        with pytest.raises(GenerationOverrunError):
            run(engine.reconcile(rule, Q1))

        assert run(storage.load_events(owner_id)) == []
        assert captured_events[-1].event_type == AuditEventType.GENERATION_OVERRUN


class TestReconcileAll:
    """Tests for reconcile_all."""

    def test_reconciles_only_active_rules(self, run, engine, storage, owner_id):
        """Test that paused rules are left out."""
        saved(run, storage, make_rule(owner_id))
        saved(run, storage, make_rule(owner_id, category="Gym", amount=Decimal("40"), active=False))

        results = run(engine.reconcile_all(owner_id, Q1))

        assert len(results) == 1
        assert {e.category for e in run(storage.load_events(owner_id))} == {"Rent"}


class TestSweepDuplicates:
    """Tests for the duplicate sweep."""

    def _add_copies(self, storage, owner_id, count):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        events = []
        for i in range(count):
            event = FinancialEvent(
                owner_id=owner_id,
                kind=EventKind.EXPENSE,
                category="Rent",
                amount=Decimal("1200.00"),
                date=date(2024, 2, 1),
                created_at=base + timedelta(minutes=i),
            )
            storage.add_event(event)
            events.append(event)
        return events

    def test_keeps_earliest_created(self, run, engine, storage, owner_id):
        """Test that each fingerprint group keeps its earliest row."""
        copies = self._add_copies(storage, owner_id, 3)

        result = run(engine.sweep_duplicates(owner_id))

        assert result.deleted_count == 2
        assert result.kept_ids == [copies[0].id]
        assert [e.id for e in run(storage.load_events(owner_id))] == [copies[0].id]

    def test_sweep_is_idempotent(self, run, engine, storage, owner_id):
        """Test that a second sweep deletes nothing."""
        self._add_copies(storage, owner_id, 3)
        run(engine.sweep_duplicates(owner_id))

        result = run(engine.sweep_duplicates(owner_id))

        assert result.deleted_ids == []
        assert result.groups_examined == 1

    def test_distinct_events_survive(self, run, engine, storage, owner_id):
        """Test that events with different fingerprints are kept."""
        rule = saved(run, storage, make_rule(owner_id))
        run(engine.reconcile(rule, Q1))

        result = run(engine.sweep_duplicates(owner_id))

        assert result.deleted_ids == []
        assert result.groups_examined == 3


class TestDeleteRuleEvents:
    """Tests for the rule deletion cascade."""

    def test_removes_only_that_rules_events(self, run, engine, storage, owner_id):
        """Test that manual and other-rule events are kept."""
        rent = saved(run, storage, make_rule(owner_id))
        gym = saved(run, storage, make_rule(owner_id, category="Gym", amount=Decimal("40")))
        run(engine.reconcile(rent, Q1))
        run(engine.reconcile(gym, Q1))

        removed = run(engine.delete_rule_events(rent))

        assert len(removed) == 3
        assert {e.category for e in run(storage.load_events(owner_id))} == {"Gym"}
