"""
Cross-field business rules specific to each pipeline type.

Single-field rules (whitelists, ranges, date windows) are declared in the
pipeline YAML and run by the RuleEngine. What cannot be expressed per field
lives here: deviation arithmetic, shift/time consistency, and the
post-natural-key plausibility pass.
"""

from abc import ABC, abstractmethod
from typing import Any

from src.core.errors import BusinessRuleError, FieldError
from src.core.models import BusinessRuleWarning, ProcessedRecord

DEFAULT_SUSPICIOUS_MULTIPLIER = 5.0
DEFAULT_DEVIATION_TOLERANCE = 0.01


def compute_deviation(planned: float, actual: float) -> tuple[float, float]:
    """
    Deviation of the actual quantity from plan.

    Args:
        planned: Planned kilograms (must be > 0)
        actual: Actual kilograms

    Returns:
        Tuple of (actual - planned, (actual - planned) / planned * 100),
        both rounded to 2 decimals

    Raises:
        ValueError: If planned is not positive
    """
    if planned is None or planned <= 0:
        raise ValueError("planned quantity must be positive to compute a deviation")
    deviation_kg = actual - planned
    deviation_pct = deviation_kg / planned * 100
    return round(deviation_kg, 2), round(deviation_pct, 2)


class BusinessRuleSet(ABC):
    """
    Cross-field rules of one pipeline.

    ``apply`` runs after field rules and may fill computed fields in
    ``values``. ``post_key_checks`` runs once the natural key is assigned and
    only produces warnings.
    """

    name = "base"

    def __init__(self, policy: dict[str, Any] | None = None):
        self.policy = policy or {}

    @abstractmethod
    def apply(
        self, values: dict[str, Any], row_number: int | None = None
    ) -> tuple[list[FieldError], list[BusinessRuleWarning]]:
        """
        Run cross-field rules.

        Args:
            values: Cleansed values (mutated in place for computed fields)
            row_number: Source line number

        Returns:
            Tuple of (errors, warnings)
        """

    def post_key_checks(self, record: ProcessedRecord) -> list[BusinessRuleWarning]:
        """Plausibility warnings on a keyed record (none by default)."""
        return []


class LoadingDeviationRules(BusinessRuleSet):
    """
    Planned vs. actual loading weight.

    Policy keys:
    - suspicious_multiplier: actual >= multiplier x planned is SUSPICIOUS_VALUE (default 5)
    - deviation_tolerance: allowed gap between supplied and computed deviation (default 0.01)
    - extreme_deviation_pct: |deviation %| above this is EXTREME_DEVIATION (default 200)
    - deviation_mismatch_severity: "error" (default) or "warning"
    """

    name = "loading_deviation"

    @property
    def suspicious_multiplier(self) -> float:
        return float(self.policy.get("suspicious_multiplier", DEFAULT_SUSPICIOUS_MULTIPLIER))

    @property
    def tolerance(self) -> float:
        return float(self.policy.get("deviation_tolerance", DEFAULT_DEVIATION_TOLERANCE))

    def _check_supplied(
        self,
        field: str,
        supplied: float | None,
        computed: float,
        row_number: int | None,
        errors: list[FieldError],
        warnings: list[BusinessRuleWarning],
    ) -> None:
        if supplied is None or abs(supplied - computed) <= self.tolerance + 1e-9:
            return

        message = f"Supplied value {supplied} does not match computed {computed}"
        if self.policy.get("deviation_mismatch_severity", "error") == "warning":
            warnings.append(
                BusinessRuleWarning(
                    code="DEVIATION_MISMATCH", field=field, message=message, value=supplied, row_number=row_number
                )
            )
        else:
            errors.append(
                BusinessRuleError(field, message, value=supplied, row_number=row_number, code="DEVIATION_MISMATCH")
            )

    def apply(
        self, values: dict[str, Any], row_number: int | None = None
    ) -> tuple[list[FieldError], list[BusinessRuleWarning]]:
        errors: list[FieldError] = []
        warnings: list[BusinessRuleWarning] = []

        planned = values.get("kg_planejado")
        actual = values.get("kg_real")
        if planned is None or actual is None or planned <= 0:
            return errors, warnings

        deviation_kg, deviation_pct = compute_deviation(planned, actual)

        self._check_supplied("desvio_kg", values.get("desvio_kg"), deviation_kg, row_number, errors, warnings)
        self._check_supplied("desvio_pct", values.get("desvio_pct"), deviation_pct, row_number, errors, warnings)

        # Computed values win so stored deviations are always consistent
        values["desvio_kg"] = deviation_kg
        values["desvio_pct"] = deviation_pct

        extreme = float(self.policy.get("extreme_deviation_pct", 200))
        if abs(deviation_pct) > extreme:
            warnings.append(
                BusinessRuleWarning(
                    code="EXTREME_DEVIATION",
                    field="desvio_pct",
                    message=f"Deviation of {deviation_pct}% exceeds {extreme}%",
                    value=deviation_pct,
                    row_number=row_number,
                )
            )

        return errors, warnings

    def post_key_checks(self, record: ProcessedRecord) -> list[BusinessRuleWarning]:
        planned = record.values.get("kg_planejado")
        actual = record.values.get("kg_real")
        if planned is None or actual is None or planned <= 0:
            return []

        multiplier = self.suspicious_multiplier
        # Exact multiples must warn despite float error in the product
        if round(actual / planned, 6) >= multiplier:
            return [
                BusinessRuleWarning(
                    code="SUSPICIOUS_VALUE",
                    field="kg_real",
                    message=(
                        f"Actual {actual} kg is at least {multiplier:g}x the planned {planned} kg; "
                        f"row kept as low-confidence"
                    ),
                    value=actual,
                    row_number=record.row_number,
                )
            ]
        return []


class FeedingTreatmentRules(BusinessRuleSet):
    """
    Per-pen treatment log.

    Policy keys:
    - earliest_expected_hour / latest_expected_hour: SUSPICIOUS_TIME outside (default 5-22)
    - derive_shift_from_time: fill an empty shift from the treatment time (default True)
    - shift_hours: shift -> [start_hour, end_hour), anything else is NOITE
    """

    name = "feeding_treatment"

    DEFAULT_SHIFT_HOURS = {"MANHA": [5, 12], "TARDE": [12, 18]}
    FALLBACK_SHIFT = "NOITE"

    def expected_shift(self, hour: int) -> str:
        """Shift covering a given hour of the day."""
        for shift, (start, end) in self.policy.get("shift_hours", self.DEFAULT_SHIFT_HOURS).items():
            if start <= hour < end:
                return shift
        return self.FALLBACK_SHIFT

    def apply(
        self, values: dict[str, Any], row_number: int | None = None
    ) -> tuple[list[FieldError], list[BusinessRuleWarning]]:
        errors: list[FieldError] = []
        warnings: list[BusinessRuleWarning] = []

        time_text = values.get("hora_trato")
        if not isinstance(time_text, str) or len(time_text) != 5:
            return errors, warnings

        hour, minute = int(time_text[:2]), int(time_text[3:])
        minutes = hour * 60 + minute

        earliest = int(self.policy.get("earliest_expected_hour", 5)) * 60
        latest = int(self.policy.get("latest_expected_hour", 22)) * 60
        if minutes < earliest or minutes > latest:
            warnings.append(
                BusinessRuleWarning(
                    code="SUSPICIOUS_TIME",
                    field="hora_trato",
                    message=f"Treatment at {time_text} is outside usual hours",
                    value=time_text,
                    row_number=row_number,
                )
            )

        expected = self.expected_shift(hour)
        shift = values.get("turno")
        if shift is None:
            if self.policy.get("derive_shift_from_time", True):
                values["turno"] = expected
                warnings.append(
                    BusinessRuleWarning(
                        code="SHIFT_DERIVED",
                        field="turno",
                        message=f"Shift derived from time {time_text}: {expected}",
                        value=expected,
                        row_number=row_number,
                    )
                )
        elif shift != expected:
            warnings.append(
                BusinessRuleWarning(
                    code="INCONSISTENT_SHIFT",
                    field="turno",
                    message=f"Shift {shift} does not match time {time_text} (expected {expected})",
                    value=shift,
                    row_number=row_number,
                )
            )

        return errors, warnings


RULE_SETS: dict[str, type[BusinessRuleSet]] = {
    LoadingDeviationRules.name: LoadingDeviationRules,
    FeedingTreatmentRules.name: FeedingTreatmentRules,
}


def build_rule_set(name: str, policy: dict[str, Any] | None = None) -> BusinessRuleSet:
    """
    Instantiate a registered rule set.

    Raises:
        ValueError: If no rule set has that name
    """
    rule_set_class = RULE_SETS.get(name)
    if rule_set_class is None:
        raise ValueError(f"Unknown business rule set: {name}")
    return rule_set_class(policy)
