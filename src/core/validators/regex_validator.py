"""
RegexValidator - validates field values against a regular expression pattern.
"""

import re
from re import Pattern
from typing import Any

from .base_validator import BaseValidator


class RegexValidator(BaseValidator):
    """
    Validates that a field value matches a regular expression pattern.

    Parameters:
    - pattern: Regular expression pattern (string or compiled Pattern)
    - flags: Optional regex flags (e.g., re.IGNORECASE)
    - message: Optional error message (defaults to a pattern mismatch text)
    """

    default_code = "PATTERN_MISMATCH"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        pattern = self.parameters.get("pattern")
        if not pattern:
            raise ValueError("RegexValidator requires 'pattern' parameter")

        flags = self.parameters.get("flags", 0)

        try:
            if isinstance(pattern, str):
                self.pattern: Pattern = re.compile(pattern, flags)
            elif isinstance(pattern, Pattern):
                self.pattern = pattern
            else:
                raise ValueError(f"Pattern must be string or compiled Pattern, got {type(pattern)}")
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}")

        self.message = self.parameters.get("message")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate that the value matches the regex pattern.

        Raises:
            FieldError: If value doesn't match the pattern
        """
        # None is handled by required_field
        if value is None:
            return

        value_str = value if isinstance(value, str) else str(value)

        if not self.pattern.fullmatch(value_str):
            raise self.fail(
                self.message or f"Value '{value_str}' does not match pattern '{self.pattern.pattern}'",
                value_str,
            )

    @property
    def rule_type(self) -> str:
        return "regex"
