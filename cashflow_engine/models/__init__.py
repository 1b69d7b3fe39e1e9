"""
Data Models Package

This package contains all Pydantic models used by the cashflow engine.
All data flowing through the engine must conform to these schemas.
"""

from cashflow_engine.models.recurrence import (
    DateWindow,
    EventKind,
    EventSource,
    FinancialEvent,
    Fingerprint,
    Frequency,
    RecurrenceRule,
    ValidationIssue,
    ValidationResult,
    to_money,
)
from cashflow_engine.models.budget import (
    BudgetPlanItem,
    DayCashflow,
    MonthlyBudgetSnapshot,
    MonthlyProjection,
    PlanningFrequency,
    PlanTotals,
    ProjectionMode,
    ReconcileResult,
    SnapshotOrigin,
    SweepResult,
)
from cashflow_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Recurrence models
    "DateWindow",
    "EventKind",
    "EventSource",
    "FinancialEvent",
    "Fingerprint",
    "Frequency",
    "RecurrenceRule",
    "ValidationIssue",
    "ValidationResult",
    "to_money",
    # Budget models
    "BudgetPlanItem",
    "DayCashflow",
    "MonthlyBudgetSnapshot",
    "MonthlyProjection",
    "PlanningFrequency",
    "PlanTotals",
    "ProjectionMode",
    "ReconcileResult",
    "SnapshotOrigin",
    "SweepResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
