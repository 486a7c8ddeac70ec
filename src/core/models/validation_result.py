"""
Row-level validation outcome models (ephemeral).
"""

from typing import Any

from pydantic import BaseModel, Field

from .processed_record import ProcessedRecord


class CleansingWarning(BaseModel):
    """A value was changed during cleansing; never blocks processing."""

    field: str
    message: str
    original_value: Any = None
    cleaned_value: Any = None
    row_number: int | None = None


class BusinessRuleWarning(BaseModel):
    """
    Suspicious-but-retained value.

    Attributes:
        code: Warning code (e.g. SUSPICIOUS_VALUE, FUTURE_DATE_WARNING)
        field: Field the warning refers to
        message: Human-readable description
        value: Offending value
        row_number: Source line number
    """

    code: str
    field: str
    message: str
    value: Any = None
    row_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "field": self.field,
            "value": None if self.value is None else str(self.value),
            "message": self.message,
            "code": self.code,
        }


class RowValidationResult(BaseModel):
    """
    Outcome of cleansing and validating a single row.

    Note: ephemeral, not persisted (used in-memory during processing).

    Attributes:
        row_number: Source line number
        passed: True when ``record`` is set and no errors were found
        record: Typed record when the row passed
        errors: Field-level error dictionaries
        warnings: Business rule warnings
        cleansing_warnings: Values changed during cleansing
    """

    row_number: int
    passed: bool
    record: ProcessedRecord | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[BusinessRuleWarning] = Field(default_factory=list)
    cleansing_warnings: list[CleansingWarning] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "row_number": 5,
                "passed": False,
                "errors": [
                    {
                        "row_number": 5,
                        "field": "equipamento",
                        "value": "TRATOR",
                        "message": "Equipment 'TRATOR' is not allowed; expected one of BAHMAN, SILOKING",
                        "code": "EQUIPMENT_NOT_ALLOWED",
                    }
                ],
                "warnings": [],
            }
        }
