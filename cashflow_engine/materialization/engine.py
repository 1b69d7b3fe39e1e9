"""
Materialization Engine

DESIGN DECISION: Materialization is set reconciliation, not appending.
For one rule and one window the engine computes the occurrence dates,
compares them with the events already stored for that rule, and writes
only the difference. Running it twice changes nothing the second time.

Duplicate protection works without locks:
1. Before creating, each candidate's fingerprint is checked against all
   events of the owner, from any source
2. The storage upsert is itself keyed on the fingerprint, so two
   reconciles racing for the same date still store one row
3. A periodic duplicate sweep removes anything that slipped through
   (legacy data, other writers)

A fingerprint hit is expected steady-state behavior. It is counted and
logged, never raised.
"""

from collections import defaultdict
from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from cashflow_engine.audit import AuditLogger
from cashflow_engine.config import MaterializationSettings, get_settings
from cashflow_engine.models.audit import AuditEvent, AuditEventBuilder
from cashflow_engine.models.budget import ReconcileResult, SweepResult
from cashflow_engine.models.recurrence import (
    DateWindow,
    EventSource,
    FinancialEvent,
    Fingerprint,
    RecurrenceRule,
)
from cashflow_engine.recurrence import GenerationOverrunError, OccurrenceGenerator
from cashflow_engine.services.storage import (
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


def _sweep_order(event: FinancialEvent) -> tuple:
    return (event.created_at, str(event.id))


class MaterializationEngine:
    """
    Keeps persisted recurring events in line with their rules.

    GUARANTEES:
    - At most one event per (rule, date) and per fingerprint
    - Paused rules are never reconciled; their history is kept
    - cursor_date only moves forward, and never past a failed write
    - Storage failures propagate; they are never reported as reconciled
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        generator: Optional[OccurrenceGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[MaterializationSettings] = None,
    ):
        self._storage = storage
        self._generator = generator or OccurrenceGenerator()
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().materialization

    async def _audit(self, event: AuditEvent) -> None:
        if self._audit_logger:
            await self._audit_logger.log(event)

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    async def reconcile(
        self,
        rule: RecurrenceRule,
        window: DateWindow,
        correlation_id: Optional[UUID] = None,
    ) -> ReconcileResult:
        """
        Bring the stored events of `rule` inside `window` in line with
        its occurrences.

        Raises:
            GenerationOverrunError: the rule overruns the generation bound
            StorageError: a read or write failed after retries
        """
        if not rule.active:
            logger.debug("reconcile_skipped", rule_id=str(rule.id), reason="rule_paused")
            return ReconcileResult(
                rule_id=rule.id,
                window=window,
                cursor_date=rule.cursor_date,
                skipped_reason="rule_paused",
            )

        try:
            occurrences = self._generator.generate(rule, window)
        except GenerationOverrunError as e:
            await self._audit(AuditEventBuilder.generation_overrun(
                rule_id=rule.id,
                owner_id=rule.owner_id,
                limit=e.limit,
                correlation_id=correlation_id,
            ))
            raise

        owner_events = await self._load_events(rule, window, correlation_id)
        wanted = set(occurrences)

        # Split this rule's stored events into keepers and stale rows
        keep_by_date: dict[date, FinancialEvent] = {}
        stale: list[FinancialEvent] = []
        for event in owner_events:
            if event.source != EventSource.RECURRING or event.rule_id != rule.id:
                continue
            if (
                event.date not in wanted
                or not event.matches_rule(rule)
                or event.date in keep_by_date
            ):
                stale.append(event)
            else:
                keep_by_date[event.date] = event

        stale_ids = {event.id for event in stale}
        taken: dict[Fingerprint, FinancialEvent] = {
            event.fingerprint: event
            for event in owner_events
            if event.id not in stale_ids
        }

        to_create: list[FinancialEvent] = []
        suppressed: list[date] = []
        for occurrence in occurrences:
            if occurrence in keep_by_date:
                continue
            candidate = FinancialEvent.from_rule(rule, occurrence)
            if candidate.fingerprint in taken:
                suppressed.append(occurrence)
                continue
            taken[candidate.fingerprint] = candidate
            to_create.append(candidate)

        deleted_ids = await self._delete_stale(rule, stale, correlation_id)
        created, raced = await self._create_missing(
            rule, to_create, keep_by_date, suppressed, correlation_id
        )
        suppressed = sorted(suppressed + raced)

        satisfied = list(keep_by_date) + suppressed + [e.date for e in created]
        cursor = await self._advance_cursor(
            rule, max(satisfied) if satisfied else None, correlation_id
        )

        if created:
            await self._audit(AuditEventBuilder.events_materialized(
                rule_id=rule.id,
                owner_id=rule.owner_id,
                dates=[e.date for e in created],
                correlation_id=correlation_id,
            ))
        if suppressed:
            await self._audit(AuditEventBuilder.duplicate_suppressed(
                rule_id=rule.id,
                owner_id=rule.owner_id,
                dates=suppressed,
                correlation_id=correlation_id,
            ))
        await self._audit(AuditEventBuilder.reconcile_completed(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            created=len(created),
            deleted=len(deleted_ids),
            suppressed=len(suppressed),
            correlation_id=correlation_id,
        ))

        return ReconcileResult(
            rule_id=rule.id,
            window=window,
            created=created,
            deleted=deleted_ids,
            suppressed=suppressed,
            cursor_date=cursor,
        )

    async def reconcile_all(
        self,
        owner_id: UUID,
        window: DateWindow,
        correlation_id: Optional[UUID] = None,
    ) -> list[ReconcileResult]:
        """Reconcile every active rule of the owner over the same window."""
        rules = await self._storage.load_rules(owner_id)
        results = []
        for rule in rules:
            if not rule.active:
                continue
            results.append(await self.reconcile(rule, window, correlation_id=correlation_id))

        logger.info(
            "reconcile_all_completed",
            owner_id=str(owner_id),
            rules=len(results),
            created=sum(r.created_count for r in results),
            deleted=sum(r.deleted_count for r in results),
            suppressed=sum(len(r.suppressed) for r in results),
        )
        return results

    async def _load_events(
        self,
        rule: RecurrenceRule,
        window: DateWindow,
        correlation_id: Optional[UUID],
    ) -> list[FinancialEvent]:
        try:
            return await self._storage.load_events(rule.owner_id, window=window)
        except StorageError as e:
            await self._audit(AuditEventBuilder.persistence_failed(
                operation="load_events",
                error_message=str(e),
                owner_id=rule.owner_id,
                rule_id=rule.id,
                correlation_id=correlation_id,
            ))
            raise

    async def _delete_stale(
        self,
        rule: RecurrenceRule,
        stale: list[FinancialEvent],
        correlation_id: Optional[UUID],
    ) -> list[UUID]:
        if not stale:
            return []

        ids = [event.id for event in stale]
        try:
            await self._storage.delete_events(ids)
        except StorageError as e:
            await self._audit(AuditEventBuilder.persistence_failed(
                operation="delete_events",
                error_message=str(e),
                owner_id=rule.owner_id,
                rule_id=rule.id,
                correlation_id=correlation_id,
            ))
            raise

        await self._audit(AuditEventBuilder.events_removed(
            owner_id=rule.owner_id,
            event_ids=ids,
            reason="no_longer_generated",
            rule_id=rule.id,
            correlation_id=correlation_id,
        ))
        return ids

    async def _create_missing(
        self,
        rule: RecurrenceRule,
        to_create: list[FinancialEvent],
        keep_by_date: dict[date, FinancialEvent],
        suppressed: list[date],
        correlation_id: Optional[UUID],
    ) -> tuple[list[FinancialEvent], list[date]]:
        """
        Write new events in ascending date batches.

        Returns (created, raced) where raced are dates another writer
        stored first. On failure the cursor is moved to the last date
        satisfied before the failing batch, then the error is re-raised.
        """
        created: list[FinancialEvent] = []
        raced: list[date] = []
        batch_size = self._settings.write_batch_size

        for start in range(0, len(to_create), batch_size):
            batch = to_create[start:start + batch_size]
            try:
                stored = await self._storage.upsert_events(batch)
            except StorageError as e:
                failed_from = batch[0].date
                satisfied_before = [
                    d
                    for d in list(keep_by_date) + suppressed + raced + [c.date for c in created]
                    if d < failed_from
                ]
                await self._audit(AuditEventBuilder.persistence_failed(
                    operation="upsert_events",
                    error_message=str(e),
                    owner_id=rule.owner_id,
                    rule_id=rule.id,
                    correlation_id=correlation_id,
                ))
                if created:
                    await self._audit(AuditEventBuilder.events_materialized(
                        rule_id=rule.id,
                        owner_id=rule.owner_id,
                        dates=[c.date for c in created],
                        correlation_id=correlation_id,
                    ))
                await self._advance_cursor_after_failure(
                    rule, max(satisfied_before) if satisfied_before else None, correlation_id
                )
                raise

            for candidate, row in zip(batch, stored):
                if row.id == candidate.id:
                    created.append(row)
                else:
                    raced.append(candidate.date)

        return created, raced

    # -------------------------------------------------------------------------
    # Cursor
    # -------------------------------------------------------------------------

    async def _advance_cursor(
        self,
        rule: RecurrenceRule,
        candidate: Optional[date],
        correlation_id: Optional[UUID],
    ) -> Optional[date]:
        """
        Move the stored cursor forward to `candidate`.

        The storage writes max(stored, candidate) and nothing else, so
        neither a concurrent reconcile that already moved further nor a
        concurrent edit of the rule is rolled back.
        """
        if candidate is None:
            return rule.cursor_date

        try:
            previous = await self._storage.advance_cursor(rule.id, candidate)
        except NotFoundError:
            # Rule deleted while reconciling
            return rule.cursor_date

        if previous is not None and candidate <= previous:
            return previous

        await self._audit(AuditEventBuilder.cursor_advanced(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            previous=previous,
            current=candidate,
            correlation_id=correlation_id,
        ))
        return candidate

    async def _advance_cursor_after_failure(
        self,
        rule: RecurrenceRule,
        candidate: Optional[date],
        correlation_id: Optional[UUID],
    ) -> None:
        try:
            await self._advance_cursor(rule, candidate, correlation_id)
        except StorageError as e:
            # The write failure is what the caller must see
            logger.error(
                "cursor_update_failed",
                rule_id=str(rule.id),
                cursor=candidate.isoformat() if candidate else None,
                error=str(e),
            )

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def sweep_duplicates(
        self,
        owner_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> SweepResult:
        """
        Delete all but the earliest-created event of every fingerprint group.

        Idempotent: a second sweep finds nothing to delete.
        """
        events = await self._storage.load_events(owner_id)

        groups: dict[Fingerprint, list[FinancialEvent]] = defaultdict(list)
        for event in events:
            groups[event.fingerprint].append(event)

        kept: list[UUID] = []
        doomed: list[UUID] = []
        for members in groups.values():
            members.sort(key=_sweep_order)
            kept.append(members[0].id)
            doomed.extend(event.id for event in members[1:])

        if doomed:
            try:
                await self._storage.delete_events(doomed)
            except StorageError as e:
                await self._audit(AuditEventBuilder.persistence_failed(
                    operation="delete_events",
                    error_message=str(e),
                    owner_id=owner_id,
                    correlation_id=correlation_id,
                ))
                raise
            await self._audit(AuditEventBuilder.events_removed(
                owner_id=owner_id,
                event_ids=doomed,
                reason="duplicate_fingerprint",
                correlation_id=correlation_id,
            ))

        await self._audit(AuditEventBuilder.duplicates_swept(
            owner_id=owner_id,
            groups=len(groups),
            deleted=len(doomed),
            correlation_id=correlation_id,
        ))

        return SweepResult(
            owner_id=owner_id,
            groups_examined=len(groups),
            kept_ids=kept,
            deleted_ids=doomed,
        )

    async def delete_rule_events(
        self,
        rule: RecurrenceRule,
        correlation_id: Optional[UUID] = None,
    ) -> list[UUID]:
        """Delete every event generated by the rule, at any date."""
        events = await self._storage.load_events(rule.owner_id, rule_id=rule.id)
        ids = [event.id for event in events]
        if ids:
            await self._storage.delete_events(ids)
            await self._audit(AuditEventBuilder.events_removed(
                owner_id=rule.owner_id,
                event_ids=ids,
                reason="rule_deleted",
                rule_id=rule.id,
                correlation_id=correlation_id,
            ))
        return ids
