"""Rule validation package."""

from cashflow_engine.validation.validator import InvalidRuleError, RuleValidator

__all__ = ["InvalidRuleError", "RuleValidator"]
