"""
Budget Planner

Turns a list of planned income and expense lines into averaged monthly
totals, and into recurrence rules once the plan is saved.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from cashflow_engine.models.budget import BudgetPlanItem, PlanTotals
from cashflow_engine.models.recurrence import EventKind, Frequency, RecurrenceRule, to_money
from cashflow_engine.projection.engine import monthly_equivalent
from cashflow_engine.projection.ledger import ZERO
from cashflow_engine.recurrence.dates import month_start


BUDGET_DESCRIPTION_PREFIX = "Budget: "


class BudgetPlanner:
    """
    Averaged plan totals and plan-to-rule conversion.

    Plan totals are always labeled averaged. They are a display
    aggregate and never feed a projection.
    """

    def totals(self, items: list[BudgetPlanItem]) -> PlanTotals:
        income = ZERO
        expense = ZERO
        by_category: dict[str, Decimal] = {}

        for item in items:
            monthly = monthly_equivalent(item.amount, item.frequency)
            if item.kind == EventKind.INCOME:
                income += monthly
            else:
                expense += monthly
            by_category[item.category] = by_category.get(item.category, ZERO) + monthly

        return PlanTotals(
            income=to_money(income),
            expense=to_money(expense),
            by_category=by_category,
        )

    def to_rules(
        self,
        owner_id: UUID,
        items: list[BudgetPlanItem],
        month: date,
    ) -> list[RecurrenceRule]:
        """
        One rule per item with a positive amount.

        The rule is anchored on the item's due date, or on the first day
        of the planned month when it has none.
        """
        rules = []
        for item in items:
            amount = to_money(item.amount)
            if amount <= 0:
                continue
            rules.append(RecurrenceRule(
                owner_id=owner_id,
                kind=item.kind,
                category=item.category,
                amount=amount,
                description=f"{BUDGET_DESCRIPTION_PREFIX}{item.category}",
                frequency=Frequency(item.frequency.value),
                anchor_date=item.due_date or month_start(month),
            ))
        return rules
