"""
RequiredFieldValidator - ensures a field is present and not null/empty.
"""

from typing import Any, Dict
from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Validates that a required field is present and not null/empty.

    Fails if:
    - Field is missing from the row
    - Field value is None (empty cell, or a value cleansing could not parse)
    - Field value is a blank string (configurable)
    """

    default_code = "REQUIRED_FIELD_MISSING"

    def __init__(self, field_name: str, parameters: Dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_empty_string = self.parameters.get("allow_empty_string", False)

    def validate(self, value: Any, record: Dict[str, Any]) -> None:
        """
        Validate that the field is present and not null/empty.

        Raises:
            FieldError: If field is missing, None, or blank
        """
        if self.field_name not in record:
            raise self.fail("Field is missing from row")

        if value is None:
            raise self.fail("Required field is empty")

        if not self.allow_empty_string and isinstance(value, str) and value.strip() == "":
            raise self.fail("Required field is blank", value)

    @property
    def rule_type(self) -> str:
        return "required_field"
