"""
Audit Models for the Cashflow Engine

Every significant engine action is recorded as an AuditEvent.
This provides:
1. Traceability of every create, delete and cursor move
2. Observable dedup suppression (expected, but counted)
3. The payload delivered to change listeners

DESIGN DECISION: Audit events are append-only. We never delete or modify them.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from cashflow_engine.models.recurrence import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Listeners typically refresh on the *_MATERIALIZED, *_REMOVED,
    RULE_* and SNAPSHOT_* types.
    """
    # Rule lifecycle
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_PAUSED = "rule_paused"
    RULE_RESUMED = "rule_resumed"
    RULE_DELETED = "rule_deleted"
    RULE_REJECTED = "rule_rejected"

    # Materialization
    EVENTS_MATERIALIZED = "events_materialized"
    EVENTS_REMOVED = "events_removed"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    CURSOR_ADVANCED = "cursor_advanced"
    RECONCILE_COMPLETED = "reconcile_completed"
    DUPLICATES_SWEPT = "duplicates_swept"

    # Balances
    SNAPSHOT_CREATED = "snapshot_created"
    SNAPSHOT_EDITED = "snapshot_edited"
    PROJECTION_BUILT = "projection_built"

    # Failures
    GENERATION_OVERRUN = "generation_overrun"
    PERSISTENCE_FAILED = "persistence_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)

    # Context - what entity is this about?
    owner_id: Optional[UUID] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'rule', 'snapshot', 'owner')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one refresh)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": str(self.owner_id) if self.owner_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.events_materialized(rule_id, owner_id, dates)
        await audit_logger.log(event)
    """

    @staticmethod
    def rule_created(
        rule_id: UUID,
        owner_id: UUID,
        frequency: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurrence rule created ({frequency})",
            details={"frequency": frequency},
        )

    @staticmethod
    def rule_updated(
        rule_id: UUID,
        owner_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_UPDATED,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurrence rule updated ({len(changed_fields)} fields)",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def rule_active_changed(
        rule_id: UUID,
        owner_id: UUID,
        active: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_RESUMED if active else AuditEventType.RULE_PAUSED,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurrence rule resumed" if active else "Recurrence rule paused",
        )

    @staticmethod
    def rule_deleted(
        rule_id: UUID,
        owner_id: UUID,
        cascaded_events: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DELETED,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurrence rule deleted with {cascaded_events} generated events",
            details={"cascaded_events": cascaded_events},
        )

    @staticmethod
    def rule_rejected(
        owner_id: Optional[UUID],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="rule",
            correlation_id=correlation_id,
            description=f"Recurrence rule rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def events_materialized(
        rule_id: UUID,
        owner_id: UUID,
        dates: list[date],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENTS_MATERIALIZED,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Materialized {len(dates)} events",
            details={"dates": [d.isoformat() for d in dates]},
        )

    @staticmethod
    def events_removed(
        owner_id: UUID,
        event_ids: list[UUID],
        reason: str,
        rule_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENTS_REMOVED,
            owner_id=owner_id,
            entity_type="rule" if rule_id else "owner",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Removed {len(event_ids)} events ({reason})",
            details={
                "reason": reason,
                "event_ids": [str(i) for i in event_ids],
            },
        )

    @staticmethod
    def duplicate_suppressed(
        rule_id: UUID,
        owner_id: UUID,
        dates: list[date],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SUPPRESSED,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Suppressed {len(dates)} occurrences already present by fingerprint",
            details={"dates": [d.isoformat() for d in dates]},
        )

    @staticmethod
    def cursor_advanced(
        rule_id: UUID,
        owner_id: UUID,
        previous: Optional[date],
        current: date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURSOR_ADVANCED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Cursor advanced to {current.isoformat()}",
            details={"previous": _iso(previous), "current": current.isoformat()},
        )

    @staticmethod
    def reconcile_completed(
        rule_id: UUID,
        owner_id: UUID,
        created: int,
        deleted: int,
        suppressed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILE_COMPLETED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Reconciled: {created} created, {deleted} deleted, {suppressed} suppressed",
            details={"created": created, "deleted": deleted, "suppressed": suppressed},
        )

    @staticmethod
    def duplicates_swept(
        owner_id: UUID,
        groups: int,
        deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_SWEPT,
            severity=AuditSeverity.WARNING if deleted else AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Duplicate sweep removed {deleted} events from {groups} groups",
            details={"groups": groups, "deleted": deleted},
        )

    @staticmethod
    def snapshot_written(
        owner_id: UUID,
        month: date,
        starting_balance: str,
        origin: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.SNAPSHOT_EDITED
            if origin == "user"
            else AuditEventType.SNAPSHOT_CREATED
        )
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="snapshot",
            correlation_id=correlation_id,
            description=f"Starting balance for {month:%Y-%m} set to {starting_balance}",
            details={
                "month": month.isoformat(),
                "starting_balance": starting_balance,
                "origin": origin,
            },
        )

    @staticmethod
    def projection_built(
        owner_id: UUID,
        first_month: date,
        months: int,
        modes: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROJECTION_BUILT,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Projected {months} months from {first_month:%Y-%m}",
            details={"first_month": first_month.isoformat(), "modes": modes},
        )

    @staticmethod
    def generation_overrun(
        rule_id: UUID,
        owner_id: UUID,
        limit: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GENERATION_OVERRUN,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule exceeded the generation bound of {limit} occurrences",
            details={"limit": limit},
            error_message="generation_overrun",
        )

    @staticmethod
    def persistence_failed(
        operation: str,
        error_message: str,
        owner_id: Optional[UUID] = None,
        rule_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="rule" if rule_id else None,
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Storage operation failed: {operation}",
            details={"operation": operation},
            error_message=error_message,
        )
