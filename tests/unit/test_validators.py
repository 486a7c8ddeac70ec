"""
Unit tests for validation rules.

Includes property-based testing with hypothesis for validators.
"""

import re
from datetime import date, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.core.errors import BusinessRuleError, FieldError
from src.core.validators import (
    AllowedValuesValidator,
    DateWindowValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TypeValidator,
)

FIXED_TODAY = date(2025, 1, 15)


@pytest.mark.unit
class TestRequiredFieldValidator:
    """Tests for RequiredFieldValidator"""

    def test_valid_required_field(self):
        """Test validation passes for present field"""
        validator = RequiredFieldValidator("curral_codigo")
        record = {"curral_codigo": "C01"}
        validator.validate(record["curral_codigo"], record)  # Should not raise

    def test_missing_field_raises_error(self):
        """Test validation fails for missing field"""
        validator = RequiredFieldValidator("curral_codigo")

        with pytest.raises(FieldError) as exc_info:
            validator.validate(None, {"turno": "MANHA"})

        assert "missing" in str(exc_info.value).lower()
        assert exc_info.value.field == "curral_codigo"
        assert exc_info.value.code == "REQUIRED_FIELD_MISSING"

    def test_null_field_raises_error(self):
        """Test validation fails for a value cleansing could not parse"""
        validator = RequiredFieldValidator("kg_real")

        with pytest.raises(FieldError, match="empty"):
            validator.validate(None, {"kg_real": None})

    def test_blank_string_raises_error(self):
        """Test validation fails for whitespace by default"""
        validator = RequiredFieldValidator("trateiro")

        with pytest.raises(FieldError, match="blank"):
            validator.validate("   ", {"trateiro": "   "})

    def test_blank_string_allowed_when_configured(self):
        """Test allow_empty_string parameter"""
        validator = RequiredFieldValidator("trateiro", {"allow_empty_string": True})
        validator.validate("", {"trateiro": ""})


@pytest.mark.unit
class TestTypeValidator:
    """Tests for TypeValidator"""

    @pytest.mark.parametrize("expected_type,value", [
        ("number", 12.5),
        ("number", 3),
        ("float", 1.0),
        ("integer", 40),
        ("date", date(2025, 1, 15)),
        ("time", "07:05"),
        ("boolean", False),
        ("string", "C01"),
    ])
    def test_matching_types_pass(self, expected_type, value):
        """Test cleansed values of the declared type pass"""
        TypeValidator("f", {"expected_type": expected_type}).validate(value, {})

    @pytest.mark.parametrize("expected_type,value", [
        ("number", "12,5"),
        ("number", True),
        ("integer", 1.5),
        ("date", "2025-01-15"),
        ("time", "7:05"),
        ("time", "24:00"),
        ("string", 12),
    ])
    def test_mismatching_types_fail(self, expected_type, value):
        """Test untyped leftovers are rejected"""
        with pytest.raises(FieldError) as exc_info:
            TypeValidator("f", {"expected_type": expected_type}).validate(value, {})
        assert exc_info.value.code == "INVALID_TYPE"

    def test_none_is_left_to_required_rule(self):
        """Test None passes the type check"""
        TypeValidator("f", {"expected_type": "number"}).validate(None, {})

    def test_unsupported_type(self):
        """Test unknown type names are rejected at construction"""
        with pytest.raises(ValueError, match="Unsupported type"):
            TypeValidator("f", {"expected_type": "uuid"})

    def test_missing_expected_type(self):
        with pytest.raises(ValueError):
            TypeValidator("f")


@pytest.mark.unit
class TestRangeValidator:
    """Tests for RangeValidator"""

    def test_within_range(self):
        """Test value inside bounds passes"""
        RangeValidator("kg_planejado", {"min": 0.1, "max": 50000}).validate(1200.0, {})

    def test_below_min(self):
        """Test value under minimum raises BusinessRuleError"""
        validator = RangeValidator("kg_planejado", {"min": 0.1, "code": "IMPLAUSIBLE_PLANNED_WEIGHT"})

        with pytest.raises(BusinessRuleError) as exc_info:
            validator.validate(0.0, {})

        assert exc_info.value.code == "IMPLAUSIBLE_PLANNED_WEIGHT"
        assert "less than minimum" in exc_info.value.message

    def test_above_max(self):
        """Test value over maximum"""
        with pytest.raises(BusinessRuleError, match="exceeds maximum"):
            RangeValidator("kg_real", {"max": 250000}).validate(250000.5, {})

    def test_exclusive_bounds(self):
        """Test min_exclusive and max_exclusive"""
        validator = RangeValidator("quantidade_kg", {"min_exclusive": 0, "max_exclusive": 10})

        with pytest.raises(BusinessRuleError):
            validator.validate(0, {})
        with pytest.raises(BusinessRuleError):
            validator.validate(10, {})
        validator.validate(5, {})

    def test_non_numeric_value(self):
        """Test non-numeric values are type errors, not range errors"""
        with pytest.raises(FieldError) as exc_info:
            RangeValidator("kg_real", {"min": 0}).validate("100", {})
        assert not isinstance(exc_info.value, BusinessRuleError)

    def test_warn_thresholds(self):
        """Test warn_above and warn_below produce warnings, not errors"""
        validator = RangeValidator("quantidade_kg", {
            "min_exclusive": 0,
            "warn_above": 5000,
            "warn_above_code": "EXCESSIVE_QUANTITY",
            "warn_below": 10,
            "warn_below_code": "LOW_QUANTITY",
        })

        validator.validate(6000, {})
        assert [w.code for w in validator.warnings(6000, {})] == ["EXCESSIVE_QUANTITY"]
        assert [w.code for w in validator.warnings(5, {})] == ["LOW_QUANTITY"]
        assert validator.warnings(100, {}) == []

    def test_requires_a_bound(self):
        """Test construction without any bound fails"""
        with pytest.raises(ValueError):
            RangeValidator("kg_real", {})

    @given(st.floats(min_value=0.1, max_value=50000, allow_nan=False))
    def test_property_values_in_range_pass(self, value):
        """Property test: any value inside [min, max] passes"""
        RangeValidator("kg_planejado", {"min": 0.1, "max": 50000}).validate(value, {})

    @given(st.floats(min_value=50000.001, max_value=1e12, allow_nan=False))
    def test_property_values_above_max_fail(self, value):
        """Property test: any value above max fails"""
        with pytest.raises(BusinessRuleError):
            RangeValidator("kg_planejado", {"min": 0.1, "max": 50000}).validate(value, {})


@pytest.mark.unit
class TestRegexValidator:
    """Tests for RegexValidator"""

    def test_full_match_required(self):
        """Test the pattern must match the whole value"""
        validator = RegexValidator("hora_trato", {"pattern": r"\d{2}:\d{2}", "code": "INVALID_TIME"})

        validator.validate("07:05", {})
        with pytest.raises(FieldError) as exc_info:
            validator.validate("07:05:00", {})
        assert exc_info.value.code == "INVALID_TIME"

    def test_custom_message(self):
        validator = RegexValidator("curral_codigo", {"pattern": r"C\d+", "message": "Pen codes start with C"})
        with pytest.raises(FieldError, match="Pen codes start with C"):
            validator.validate("X1", {})

    def test_compiled_pattern_and_flags(self):
        """Test compiled patterns and flags are accepted"""
        RegexValidator("f", {"pattern": re.compile(r"abc", re.IGNORECASE)}).validate("ABC", {})
        RegexValidator("f", {"pattern": "abc", "flags": re.IGNORECASE}).validate("AbC", {})

    def test_invalid_pattern(self):
        with pytest.raises(ValueError, match="Invalid regex"):
            RegexValidator("f", {"pattern": "(unclosed"})

    def test_missing_pattern(self):
        with pytest.raises(ValueError):
            RegexValidator("f", {})


@pytest.mark.unit
class TestAllowedValuesValidator:
    """Tests for AllowedValuesValidator"""

    def test_allowed_value_passes(self):
        validator = AllowedValuesValidator("equipamento", {"values": ["BAHMAN", "SILOKING"]})
        validator.validate("SILOKING", {})
        validator.validate("bahman", {})  # Case-insensitive by default

    def test_other_value_rejected(self):
        """Test equipment outside the allowed families is a business error"""
        validator = AllowedValuesValidator("equipamento", {
            "values": ["BAHMAN", "SILOKING"],
            "code": "EQUIPMENT_NOT_ALLOWED",
            "label": "Equipment",
        })

        with pytest.raises(BusinessRuleError) as exc_info:
            validator.validate("TRATOR", {})

        assert exc_info.value.code == "EQUIPMENT_NOT_ALLOWED"
        assert exc_info.value.message.startswith("Equipment 'TRATOR' is not allowed")

    def test_case_sensitive(self):
        validator = AllowedValuesValidator("f", {"values": ["A"], "case_sensitive": True})
        with pytest.raises(BusinessRuleError):
            validator.validate("a", {})

    def test_requires_values(self):
        with pytest.raises(ValueError):
            AllowedValuesValidator("f", {"values": []})


@pytest.mark.unit
class TestDateWindowValidator:
    """Tests for DateWindowValidator"""

    def make(self, **params):
        params.setdefault("today", lambda: FIXED_TODAY)
        return DateWindowValidator("data_ref", params)

    def test_today_passes_without_warnings(self):
        validator = self.make()
        validator.validate(FIXED_TODAY, {})
        assert validator.warnings(FIXED_TODAY, {}) == []

    def test_tomorrow_is_kept_with_warning(self):
        """Test dates within the future tolerance are retained with a warning"""
        validator = self.make(max_days_in_future=1)
        tomorrow = FIXED_TODAY + timedelta(days=1)

        validator.validate(tomorrow, {})
        assert [w.code for w in validator.warnings(tomorrow, {})] == ["FUTURE_DATE_WARNING"]

    def test_beyond_tolerance_rejected(self):
        """Test dates past the tolerance are rejected"""
        with pytest.raises(BusinessRuleError) as exc_info:
            self.make(max_days_in_future=1).validate(FIXED_TODAY + timedelta(days=2), {})
        assert exc_info.value.code == "FUTURE_DATE"

    def test_allow_future_dates(self):
        validator = self.make(allow_future_dates=True)
        far = FIXED_TODAY + timedelta(days=400)
        validator.validate(far, {})
        assert validator.warnings(far, {}) == []

    def test_old_date_warning(self):
        """Test dates older than old_date_days are flagged"""
        validator = self.make(old_date_days=365)
        old = FIXED_TODAY - timedelta(days=400)

        validator.validate(old, {})
        assert [w.code for w in validator.warnings(old, {})] == ["OLD_DATE"]

    def test_non_date_value(self):
        with pytest.raises(FieldError):
            self.make().validate("2025-01-15", {})
