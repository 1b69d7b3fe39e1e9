"""
Cashflow Engine - Source Package

The recurring-event engine behind a personal finance tracker: recurrence
rules become dated financial events, materialized events are kept
duplicate-free, and monthly balances are projected with carryover.

DESIGN PRINCIPLES:
1. The anchor date is the only phase origin for a rule
2. Reconciliation is idempotent and safe to re-run
3. Money is Decimal, never float
4. Estimates are always labeled as estimates
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Cashflow Engine Team"
