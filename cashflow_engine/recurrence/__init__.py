"""Recurrence package: occurrence generation and calendar helpers."""

from cashflow_engine.recurrence.generator import (
    GenerationError,
    GenerationOverrunError,
    OccurrenceGenerator,
)

__all__ = [
    "GenerationError",
    "GenerationOverrunError",
    "OccurrenceGenerator",
]
