"""Materialization package: keeps stored recurring events in line with their rules."""

from cashflow_engine.materialization.engine import MaterializationEngine

__all__ = ["MaterializationEngine"]
