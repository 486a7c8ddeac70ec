"""
AllowedValuesValidator - whitelist check on categorical fields.
"""

from typing import Any

from src.core.errors import BusinessRuleError

from .base_validator import BaseValidator


class AllowedValuesValidator(BaseValidator):
    """
    Rejects values outside a fixed set (e.g. only two equipment families).

    Parameters:
    - values: Accepted values (compared after cleansing)
    - case_sensitive: Compare exactly (default False)
    - label: Noun used in the error message (default "Value")
    """

    default_code = "VALUE_NOT_ALLOWED"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        values = self.parameters.get("values")
        if not values:
            raise ValueError("AllowedValuesValidator requires a non-empty 'values' parameter")

        self.case_sensitive = self.parameters.get("case_sensitive", False)
        self.values = [str(v) for v in values]
        self._accepted = set(self.values) if self.case_sensitive else {v.upper() for v in self.values}
        self.label = self.parameters.get("label", "Value")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate that the value belongs to the allowed set.

        Raises:
            BusinessRuleError: If the value is not allowed
        """
        if value is None:
            return

        candidate = str(value) if self.case_sensitive else str(value).upper()
        if candidate not in self._accepted:
            raise BusinessRuleError(
                self.field_name,
                f"{self.label} '{value}' is not allowed; expected one of {', '.join(self.values)}",
                value=value,
                code=self.code,
            )

    @property
    def rule_type(self) -> str:
        return "allowed_values"
