"""
TypeValidator - checks that a cleansed value has the field's declared type.
"""

import re
from datetime import date
from typing import Any

from .base_validator import BaseValidator

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class TypeValidator(BaseValidator):
    """
    Validates that a field matches the expected type after cleansing.

    Cleansing already parses numbers, dates and times; this rule is the
    schema check that rejects anything that slipped through untyped.

    Supported types:
    - number, integer, date, time (HH:MM string), boolean, string
    - Aliases: "float"/"decimal" for number, "int" for integer, "str" for string
    """

    default_code = "INVALID_TYPE"

    TYPE_ALIASES = {
        "number": "number",
        "float": "number",
        "decimal": "number",
        "integer": "integer",
        "int": "integer",
        "date": "date",
        "time": "time",
        "boolean": "boolean",
        "bool": "boolean",
        "string": "string",
        "str": "string",
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        self.expected_type = self.TYPE_ALIASES.get(str(expected_type).lower())
        if not self.expected_type:
            raise ValueError(f"Unsupported type: {expected_type}")

    def _matches(self, value: Any) -> bool:
        if self.expected_type == "number":
            return isinstance(value, int | float) and not isinstance(value, bool)
        if self.expected_type == "integer":
            return isinstance(value, int) and not isinstance(value, bool)
        if self.expected_type == "date":
            return isinstance(value, date)
        if self.expected_type == "time":
            return isinstance(value, str) and bool(_TIME_RE.match(value))
        if self.expected_type == "boolean":
            return isinstance(value, bool)
        return isinstance(value, str)

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate that the value matches the expected type.

        Raises:
            FieldError: If the value has the wrong type
        """
        # None is handled by required_field
        if value is None:
            return

        if not self._matches(value):
            raise self.fail(f"Expected {self.expected_type}, got {type(value).__name__}", value)

    @property
    def rule_type(self) -> str:
        return "type_check"
