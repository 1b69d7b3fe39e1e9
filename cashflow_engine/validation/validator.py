"""
Two-Stage Rule Validation

DESIGN DECISION: A rule is validated before it is stored, and an invalid
rule never reaches the generator.

STAGE 1 - SCHEMA VALIDATION:
- Type checking
- Required field presence
- Positive amount with at most two fractional digits
- Known frequency
- End date not before anchor date

STAGE 2 - SEMANTIC VALIDATION:
- Generation bound: the rule must not overrun the occurrence ceiling
  inside the engine's reconcile window
- Suspicious values (single-occurrence rules, very old anchors)

IMPORTANT: Validation NEVER silently fixes values. The only rewriting is
mapping legacy frequency spellings ("fortnight", "annually") onto the
canonical names.
"""

from datetime import date, timedelta
from typing import Any, Optional, Union

from pydantic import ValidationError

from cashflow_engine.config import MaterializationSettings, get_settings
from cashflow_engine.models.recurrence import (
    DateWindow,
    RecurrenceRule,
    ValidationIssue,
    ValidationResult,
)
from cashflow_engine.recurrence import GenerationOverrunError, OccurrenceGenerator
from cashflow_engine.recurrence.dates import reconcile_window


FREQUENCY_ALIASES = {
    "fortnight": "fortnightly",
    "biweekly": "fortnightly",
    "annually": "yearly",
    "annual": "yearly",
}

# pydantic error types mapped onto our issue vocabulary
_ISSUE_TYPES = {
    "missing": "missing",
    "enum": "unknown_value",
    "greater_than": "invalid_value",
    "decimal_max_places": "too_precise",
    "decimal_parsing": "invalid_format",
    "date_from_datetime_parsing": "invalid_format",
    "date_parsing": "invalid_format",
    "string_too_short": "missing",
    "uuid_parsing": "invalid_format",
}

OLD_ANCHOR_YEARS = 50


class InvalidRuleError(Exception):
    """A recurrence rule failed validation and was rejected."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        summary = "; ".join(f"{i.field}: {i.message}" for i in issues if i.severity == "error")
        super().__init__(f"Invalid recurrence rule: {summary}")


class RuleValidator:
    """
    Validates recurrence rules through a two-stage pipeline.

    Stage 1: Schema validation (pydantic)
    Stage 2: Semantic validation (needs the generator and window settings)
    """

    def __init__(
        self,
        generator: Optional[OccurrenceGenerator] = None,
        settings: Optional[MaterializationSettings] = None,
    ):
        self._generator = generator or OccurrenceGenerator()
        self._settings = settings or get_settings().materialization

    def _normalize(self, data: dict[str, Any]) -> dict[str, Any]:
        data = dict(data)
        frequency = data.get("frequency")
        if isinstance(frequency, str):
            key = frequency.strip().lower()
            data["frequency"] = FREQUENCY_ALIASES.get(key, key)
        return data

    def _validate_schema(
        self,
        data: dict[str, Any],
    ) -> tuple[Optional[RecurrenceRule], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (rule_or_None, list_of_issues)
        """
        try:
            return RecurrenceRule.model_validate(self._normalize(data)), []
        except ValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "rule"
                issue_type = _ISSUE_TYPES.get(error["type"], "invalid_value")
                if error["type"] == "value_error":
                    issue_type = "out_of_order"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type=issue_type,
                    message=error["msg"],
                    severity="error",
                ))
            return None, issues

    def _reconcile_window(self, today: date) -> DateWindow:
        return reconcile_window(
            today, self._settings.lookback_months, self._settings.horizon_months
        )

    def _validate_semantics(
        self,
        rule: RecurrenceRule,
        today: date,
    ) -> list[ValidationIssue]:
        """
        Stage 2: Semantic validation.

        Checks:
        - The rule fits the generation bound over the reconcile window
        - Rules that can only ever occur once
        - Anchors so old they are likely typos
        """
        issues = []

        window = self._reconcile_window(today)
        try:
            self._generator.generate(rule.model_copy(update={"active": True}), window)
        except GenerationOverrunError as e:
            issues.append(ValidationIssue(
                field="frequency",
                issue_type="generation_bound",
                message=(
                    f"Rule would produce more than {e.limit} occurrences "
                    f"in the reconcile window"
                ),
                severity="error",
            ))

        if rule.end_date is not None and self._generator.next_occurrence(
            rule.model_copy(update={"active": True}), rule.anchor_date
        ) is None:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="single_occurrence",
                message="Rule ends before its second occurrence",
                severity="warning",
            ))

        if rule.anchor_date < today - timedelta(days=365 * OLD_ANCHOR_YEARS):
            issues.append(ValidationIssue(
                field="anchor_date",
                issue_type="suspicious_value",
                message=f"Anchor date is more than {OLD_ANCHOR_YEARS} years in the past",
                severity="warning",
            ))

        return issues

    def validate(
        self,
        data: Union[dict[str, Any], RecurrenceRule],
        today: Optional[date] = None,
    ) -> tuple[ValidationResult, Optional[RecurrenceRule]]:
        """
        Run both stages.

        Stage 2 is skipped when stage 1 fails.

        Returns:
            (validation_result, rule_or_None)
        """
        today = today or date.today()
        if isinstance(data, RecurrenceRule):
            data = data.model_dump()

        rule, issues = self._validate_schema(data)
        if rule is None:
            return ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                issues=issues,
            ), None

        semantic_issues = self._validate_semantics(rule, today)
        semantic_valid = not any(i.severity == "error" for i in semantic_issues)
        return ValidationResult(
            schema_valid=True,
            semantic_valid=semantic_valid,
            issues=semantic_issues,
        ), rule

    def build_rule(
        self,
        data: Union[dict[str, Any], RecurrenceRule],
        today: Optional[date] = None,
    ) -> RecurrenceRule:
        """
        Validate and return the rule.

        Raises:
            InvalidRuleError: with every issue found, if any stage failed
        """
        result, rule = self.validate(data, today=today)
        if rule is None or not result.is_valid:
            raise InvalidRuleError(result.issues)
        return rule

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Short plain-language summary for the caller to display."""
        if result.is_valid and not result.issues:
            return "Rule looks good."
        if result.is_valid:
            return "Rule saved with warnings: " + "; ".join(
                i.message for i in result.warnings
            )
        return f"Rule rejected ({result.error_count} problems): " + "; ".join(
            i.message for i in result.issues if i.severity == "error"
        )
