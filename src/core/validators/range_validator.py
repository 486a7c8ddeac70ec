"""
RangeValidator - rejects implausible magnitudes and flags unusual ones.
"""

from typing import Any

from src.core.errors import BusinessRuleError
from src.core.models import BusinessRuleWarning

from .base_validator import BaseValidator


class RangeValidator(BaseValidator):
    """
    Validates that a numeric field is within a specified range.

    Parameters:
    - min: Minimum value (inclusive)
    - max: Maximum value (inclusive)
    - min_exclusive: Minimum value (exclusive)
    - max_exclusive: Maximum value (exclusive)
    - warn_above / warn_above_code: Warn (not fail) when the value exceeds this
    - warn_below / warn_below_code: Warn (not fail) when the value is under this
    """

    default_code = "VALUE_OUT_OF_RANGE"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")
        self.min_exclusive = self.parameters.get("min_exclusive")
        self.max_exclusive = self.parameters.get("max_exclusive")
        self.warn_above = self.parameters.get("warn_above")
        self.warn_below = self.parameters.get("warn_below")
        self.warn_above_code = self.parameters.get("warn_above_code", "VALUE_ABOVE_EXPECTED")
        self.warn_below_code = self.parameters.get("warn_below_code", "VALUE_BELOW_EXPECTED")

        bounds = [self.min_value, self.max_value, self.min_exclusive, self.max_exclusive,
                  self.warn_above, self.warn_below]
        if all(v is None for v in bounds):
            raise ValueError(
                "RangeValidator requires at least one of: min, max, min_exclusive, "
                "max_exclusive, warn_above, warn_below"
            )

    def _error(self, message: str, value: Any) -> BusinessRuleError:
        return BusinessRuleError(self.field_name, message, value=value, code=self.code)

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate that the value is within the specified range.

        Raises:
            FieldError: If the value is not numeric
            BusinessRuleError: If value is outside the range
        """
        if value is None:
            return

        if isinstance(value, bool) or not isinstance(value, int | float):
            raise self.fail(f"Value must be numeric, got {type(value).__name__}", value)

        if self.min_value is not None and value < self.min_value:
            raise self._error(f"Value {value} is less than minimum {self.min_value}", value)

        if self.min_exclusive is not None and value <= self.min_exclusive:
            raise self._error(f"Value {value} must be greater than {self.min_exclusive}", value)

        if self.max_value is not None and value > self.max_value:
            raise self._error(f"Value {value} exceeds maximum {self.max_value}", value)

        if self.max_exclusive is not None and value >= self.max_exclusive:
            raise self._error(f"Value {value} must be less than {self.max_exclusive}", value)

    def warnings(self, value: Any, record: dict[str, Any]) -> list[BusinessRuleWarning]:
        if value is None or isinstance(value, bool) or not isinstance(value, int | float):
            return []

        found = []
        if self.warn_above is not None and value > self.warn_above:
            found.append(
                BusinessRuleWarning(
                    code=self.warn_above_code,
                    field=self.field_name,
                    message=f"Value {value} is above the usual limit of {self.warn_above}",
                    value=value,
                )
            )
        if self.warn_below is not None and value < self.warn_below:
            found.append(
                BusinessRuleWarning(
                    code=self.warn_below_code,
                    field=self.field_name,
                    message=f"Value {value} is below the usual minimum of {self.warn_below}",
                    value=value,
                )
            )
        return found

    @property
    def rule_type(self) -> str:
        return "range"
