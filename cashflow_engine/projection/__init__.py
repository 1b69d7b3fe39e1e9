"""Projection package: balances, carryover and budget planning."""

from cashflow_engine.projection.engine import (
    MONTHLY_DIVISORS,
    MONTHLY_FACTORS,
    BalanceProjectionEngine,
    monthly_equivalent,
)
from cashflow_engine.projection.ledger import CarryoverLedger, event_totals
from cashflow_engine.projection.planner import BudgetPlanner

__all__ = [
    "MONTHLY_DIVISORS",
    "MONTHLY_FACTORS",
    "BalanceProjectionEngine",
    "BudgetPlanner",
    "CarryoverLedger",
    "event_totals",
    "monthly_equivalent",
]
