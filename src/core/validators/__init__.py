"""
Field validation rule implementations.

Provides validators for required fields, types, ranges, regex patterns,
allowed values and date windows.
"""

from .allowed_values_validator import AllowedValuesValidator
from .base_validator import BaseValidator
from .date_window_validator import DateWindowValidator
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator

__all__ = [
    "BaseValidator",
    "RequiredFieldValidator",
    "TypeValidator",
    "RangeValidator",
    "RegexValidator",
    "AllowedValuesValidator",
    "DateWindowValidator",
]
