"""
Base validator interface for all field rules.

All validators inherit from BaseValidator and implement validate(). A
validator raises FieldError (or BusinessRuleError for domain rules) when the
value is rejected, and may return non-blocking warnings from warnings().
"""

from abc import ABC, abstractmethod
from typing import Any

from src.core.errors import FieldError
from src.core.models import BusinessRuleWarning


class BaseValidator(ABC):
    """
    Abstract base class for all validators.

    Each validator implements a specific rule type (required_field,
    type_check, range, regex, allowed_values, date_window).
    """

    default_code = "FIELD_ERROR"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        """
        Initialize validator.

        Args:
            field_name: Name of the field to validate
            parameters: Rule-specific parameters (e.g., min/max for range).
                ``code`` overrides the error code reported on failure.
        """
        self.field_name = field_name
        self.parameters = parameters or {}
        self.code = self.parameters.get("code", self.default_code)

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate a value against this rule.

        Args:
            value: The field value to validate (already cleansed)
            record: The entire row (for context-dependent validation)

        Raises:
            FieldError: If validation fails
        """
        pass

    def warnings(self, value: Any, record: dict[str, Any]) -> list[BusinessRuleWarning]:
        """
        Non-blocking findings for a value that passed ``validate``.

        Returns:
            Warnings (empty by default)
        """
        return []

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Return the rule type identifier."""
        pass

    def fail(self, message: str, value: Any = None) -> FieldError:
        return FieldError(self.field_name, message, value=value, code=self.code)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"
