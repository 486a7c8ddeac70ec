"""
Rule engine for applying field validation rules to cleansed rows.

The rule engine builds validators from rule configurations, applies them to
a row and reports errors (row rejected) and warnings (row retained).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.core.errors import FieldError
from src.core.models import BusinessRuleWarning
from src.core.validators import (
    AllowedValuesValidator,
    BaseValidator,
    DateWindowValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TypeValidator,
)


class RuleEvaluation(BaseModel):
    """Outcome of running every rule against one row (ephemeral)."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    errors: list[FieldError] = Field(default_factory=list)
    warnings: list[BusinessRuleWarning] = Field(default_factory=list)
    passed_rules: list[str] = Field(default_factory=list)
    failed_rules: list[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


class RuleEngine:
    """
    Applies validation rules to rows.

    Rules run in configuration order and every rule runs, so a row reports
    all of its problems at once. A failing rule with severity "warning" is
    downgraded to a BusinessRuleWarning.
    """

    VALIDATOR_REGISTRY = {
        "required_field": RequiredFieldValidator,
        "type_check": TypeValidator,
        "range": RangeValidator,
        "regex": RegexValidator,
        "allowed_values": AllowedValuesValidator,
        "date_window": DateWindowValidator,
    }

    def __init__(self, rules: list[dict[str, Any]]):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: List of rule configurations, each containing:
                   - rule_name: str
                   - rule_type: str (key of VALIDATOR_REGISTRY)
                   - field_name: str
                   - parameters: Dict[str, Any] (optional)
                   - severity: str (error or warning)
                   - enabled: bool (default True)
        """
        self.rules = rules
        self.validators: list[tuple[str, str, BaseValidator]] = []
        self._build_validators()

    def _build_validators(self) -> None:
        """Build validator instances from rule configurations."""
        for rule in self.rules:
            if not rule.get("enabled", True):
                continue

            rule_name = rule["rule_name"]
            rule_type = rule["rule_type"]
            field_name = rule["field_name"]
            parameters = rule.get("parameters", {})
            severity = rule.get("severity", "error")

            validator_class = self.VALIDATOR_REGISTRY.get(rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule_type}")

            try:
                validator = validator_class(field_name, parameters)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Failed to create validator for rule '{rule_name}': {e}") from e
            self.validators.append((rule_name, severity, validator))

    def evaluate(self, values: dict[str, Any], row_number: int | None = None) -> RuleEvaluation:
        """
        Validate one cleansed row against all rules.

        Args:
            values: Canonical field -> cleansed value
            row_number: Source line number attached to every finding

        Returns:
            RuleEvaluation with errors, warnings and rule names
        """
        result = RuleEvaluation()

        for rule_name, severity, validator in self.validators:
            value = values.get(validator.field_name)

            try:
                validator.validate(value, values)
            except FieldError as e:
                e.row_number = row_number
                if severity == "error":
                    result.errors.append(e)
                    result.failed_rules.append(rule_name)
                else:
                    result.warnings.append(
                        BusinessRuleWarning(
                            code=e.code,
                            field=e.field,
                            message=e.message,
                            value=e.value,
                            row_number=row_number,
                        )
                    )
                continue

            result.passed_rules.append(rule_name)
            for warning in validator.warnings(value, values):
                warning.row_number = row_number
                result.warnings.append(warning)

        return result

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts and types
        """
        return {
            "total_rules": len(self.validators),
            "rules_by_type": self._count_by_type(),
            "rules_by_severity": self._count_by_severity(),
        }

    def _count_by_type(self) -> dict[str, int]:
        """Count validators by rule type."""
        counts: dict[str, int] = {}
        for _, _, validator in self.validators:
            rule_type = validator.rule_type
            counts[rule_type] = counts.get(rule_type, 0) + 1
        return counts

    def _count_by_severity(self) -> dict[str, int]:
        """Count validators by severity."""
        counts: dict[str, int] = {}
        for _, severity, _ in self.validators:
            counts[severity] = counts.get(severity, 0) + 1
        return counts
