"""
DateWindowValidator - future-date policy and stale-date warnings.
"""

from datetime import date, datetime, timedelta
from typing import Any, Callable

from src.core.errors import BusinessRuleError
from src.core.models import BusinessRuleWarning

from .base_validator import BaseValidator


class DateWindowValidator(BaseValidator):
    """
    Validates reference dates against a tolerance window around today.

    Parameters:
    - allow_future_dates: Accept any future date (default False)
    - max_days_in_future: Future dates up to this many days are kept with a
      FUTURE_DATE_WARNING; beyond it they are rejected (default 1)
    - old_date_days: Warn with OLD_DATE when older than this (default None)
    - today: Callable returning today's date (tests inject a fixed clock)
    """

    default_code = "FUTURE_DATE"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_future_dates = self.parameters.get("allow_future_dates", False)
        self.max_days_in_future = int(self.parameters.get("max_days_in_future", 1))
        self.old_date_days = self.parameters.get("old_date_days")
        self.today: Callable[[], date] = self.parameters.get("today", date.today)

    @staticmethod
    def _as_date(value: Any) -> date | None:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return None

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Reject dates further in the future than the tolerance.

        Raises:
            FieldError: If the value is not a date
            BusinessRuleError: If the date is beyond the future tolerance
        """
        if value is None:
            return

        ref = self._as_date(value)
        if ref is None:
            raise self.fail(f"Expected a date, got {type(value).__name__}", value)

        if self.allow_future_dates:
            return

        limit = self.today() + timedelta(days=self.max_days_in_future)
        if ref > limit:
            raise BusinessRuleError(
                self.field_name,
                f"Date {ref.isoformat()} is more than {self.max_days_in_future} day(s) in the future",
                value=ref.isoformat(),
                code=self.code,
            )

    def warnings(self, value: Any, record: dict[str, Any]) -> list[BusinessRuleWarning]:
        ref = self._as_date(value)
        if ref is None:
            return []

        today = self.today()
        found = []
        if ref > today and not self.allow_future_dates:
            found.append(
                BusinessRuleWarning(
                    code="FUTURE_DATE_WARNING",
                    field=self.field_name,
                    message=f"Date {ref.isoformat()} is in the future (within tolerance)",
                    value=ref.isoformat(),
                )
            )
        if self.old_date_days is not None and (today - ref).days > int(self.old_date_days):
            found.append(
                BusinessRuleWarning(
                    code="OLD_DATE",
                    field=self.field_name,
                    message=f"Date {ref.isoformat()} is older than {self.old_date_days} days",
                    value=ref.isoformat(),
                )
            )
        return found

    @property
    def rule_type(self) -> str:
        return "date_window"
