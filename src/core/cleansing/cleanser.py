"""
Per-field value normalization.

Recoverable oddities (Brazilian decimal commas, DD/MM/YYYY dates, "Bahmann"
instead of "BAHMAN", stray whitespace) are fixed and reported as
CleansingWarnings. Values that cannot be recovered raise FieldError.
"""

import re
import unicodedata
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from src.core.errors import FieldError
from src.core.models import CleansingWarning

from .vocabularies import DEFAULT_VOCABULARIES

_WHITESPACE_RE = re.compile(r"\s+")
_CURRENCY_RE = re.compile(r"(R\$|US\$|\$|kg|KG|Kg)")
_NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")
_TIME_RE = re.compile(r"^(\d{1,2})\s*[:hH]\s*(\d{1,2})(?:\s*:\s*(\d{1,2}))?$")

ISO_DATE_FORMAT = "%Y-%m-%d"

# Tried in order after ISO; day-first formats dominate farm exports
DATE_FORMATS = [
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d/%m/%y",
    "%Y/%m/%d",
    "%Y%m%d",
]

DATETIME_FORMATS = [
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
]

TRUE_VALUES = {"true", "1", "yes", "y", "sim", "s", "verdadeiro"}
FALSE_VALUES = {"false", "0", "no", "n", "nao", "não", "falso"}


class FieldCleansingRule(BaseModel):
    """
    How one canonical field is cleansed.

    Attributes:
        kind: number, integer, date, time, text, enum or boolean
        case: upper, lower or None for text fields
        max_length: Truncate text beyond this length
        vocabulary: Synonym table name for enum fields
        partial_match: Allow substring matches against the vocabulary
    """

    kind: str = "text"
    case: str | None = None
    max_length: int | None = Field(None, ge=1)
    vocabulary: str | None = None
    partial_match: bool = True


def fold_accents(text: str) -> str:
    """Strip combining marks: 'MANHÃ' -> 'MANHA'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def vocabulary_key(text: str) -> str:
    """Comparison key for controlled vocabulary values."""
    key = fold_accents(text).upper()
    key = re.sub(r"[\s\-_]+", " ", key)
    return key.strip()


class DataCleanser:
    """
    Normalizes mapped string values into typed values.

    Each ``clean_*`` method returns the cleaned value and appends a warning
    to ``warnings`` whenever the value was changed.
    """

    def __init__(self, vocabularies: dict[str, dict[str, list[str]]] | None = None):
        """
        Initialize cleanser.

        Args:
            vocabularies: Synonym tables, name -> canonical -> synonyms.
                Merged over the built-in tables.
        """
        self.vocabularies: dict[str, dict[str, list[str]]] = {
            name: dict(table) for name, table in DEFAULT_VOCABULARIES.items()
        }
        for name, table in (vocabularies or {}).items():
            self.vocabularies[name] = dict(table)
        self._indexes = {name: self._index(table) for name, table in self.vocabularies.items()}

    @staticmethod
    def _index(table: dict[str, list[str]]) -> dict[str, str]:
        index: dict[str, str] = {}
        for canonical, synonyms in table.items():
            index[vocabulary_key(canonical)] = canonical
            for synonym in synonyms:
                index.setdefault(vocabulary_key(synonym), canonical)
        return index

    def clean_number(
        self,
        value: Any,
        field: str,
        warnings: list[CleansingWarning],
    ) -> float | None:
        """
        Parse a locale-formatted number.

        ``1.234,56`` and ``1234.56`` both give 1234.56: when both separators
        appear, the one that comes last is the decimal mark; a lone comma is
        a decimal comma; repeated identical separators are thousands marks.

        Raises:
            FieldError: If the value is not a number
        """
        if value is None:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)

        original = str(value)
        text = _CURRENCY_RE.sub("", original)
        text = text.replace("\u00a0", "").replace(" ", "").strip()

        if text.startswith("(") and text.endswith(")"):
            text = "-" + text[1:-1]

        last_comma = text.rfind(",")
        last_dot = text.rfind(".")
        if last_comma >= 0 and last_dot >= 0:
            if last_comma > last_dot:
                text = text.replace(".", "").replace(",", ".")
            else:
                text = text.replace(",", "")
        elif last_comma >= 0:
            text = text.replace(",", "") if text.count(",") > 1 else text.replace(",", ".")
        elif text.count(".") > 1:
            text = text.replace(".", "")

        if not _NUMBER_RE.match(text):
            raise FieldError(field, f"'{original}' is not a valid number", value=original, code="INVALID_NUMBER")

        number = float(text)

        if text != original.strip():
            warnings.append(
                CleansingWarning(
                    field=field,
                    message="Numeric format normalized",
                    original_value=original,
                    cleaned_value=number,
                )
            )
        return number

    def clean_integer(self, value: Any, field: str, warnings: list[CleansingWarning]) -> int | None:
        """
        Parse a whole number.

        Raises:
            FieldError: If the value is not a whole number
        """
        number = self.clean_number(value, field, warnings)
        if number is None:
            return None
        if not number.is_integer():
            raise FieldError(field, f"'{value}' is not a whole number", value=value, code="INVALID_INTEGER")
        return int(number)

    def clean_date(self, value: Any, field: str, warnings: list[CleansingWarning]) -> date | None:
        """
        Parse a date in any of the known export formats.

        ISO dates pass unchanged; any other accepted format is converted and
        reported.

        Raises:
            FieldError: If no known format matches
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value

        original = str(value).strip()

        try:
            return datetime.strptime(original, ISO_DATE_FORMAT).date()
        except ValueError:
            pass

        for fmt in DATE_FORMATS + DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(original, fmt).date()
            except ValueError:
                continue
            warnings.append(
                CleansingWarning(
                    field=field,
                    message=f"Date converted from format {fmt} to ISO",
                    original_value=original,
                    cleaned_value=parsed.isoformat(),
                )
            )
            return parsed

        raise FieldError(field, f"'{original}' is not a recognised date", value=original, code="INVALID_DATE")

    def clean_time(self, value: Any, field: str, warnings: list[CleansingWarning]) -> str | None:
        """
        Normalize a time of day to HH:MM.

        Accepts ``7:05``, ``07h05`` and ``07:05:00``.

        Raises:
            FieldError: If the value is not a valid time
        """
        if value is None:
            return None

        original = str(value).strip()
        match = _TIME_RE.match(original)
        if not match:
            raise FieldError(field, f"'{original}' is not a time in HH:MM format", value=original, code="INVALID_TIME")

        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            raise FieldError(field, f"'{original}' is not a valid time of day", value=original, code="INVALID_TIME")

        cleaned = f"{hours:02d}:{minutes:02d}"
        if cleaned != original:
            warnings.append(
                CleansingWarning(
                    field=field,
                    message="Time normalized to HH:MM",
                    original_value=original,
                    cleaned_value=cleaned,
                )
            )
        return cleaned

    def clean_text(
        self,
        value: Any,
        field: str,
        warnings: list[CleansingWarning],
        case: str | None = None,
        max_length: int | None = None,
    ) -> str | None:
        """Trim, collapse whitespace, apply capitalization and length limit."""
        if value is None:
            return None

        original = str(value)
        cleaned = _WHITESPACE_RE.sub(" ", original).strip()

        if case == "upper":
            cleaned = cleaned.upper()
        elif case == "lower":
            cleaned = cleaned.lower()
        elif case == "title":
            cleaned = cleaned.title()

        if max_length is not None and len(cleaned) > max_length:
            warnings.append(
                CleansingWarning(
                    field=field,
                    message=f"Text truncated to {max_length} characters",
                    original_value=original,
                    cleaned_value=cleaned[:max_length],
                )
            )
            cleaned = cleaned[:max_length]
        elif cleaned != original:
            warnings.append(
                CleansingWarning(
                    field=field,
                    message="Text normalized",
                    original_value=original,
                    cleaned_value=cleaned,
                )
            )

        return cleaned or None

    def clean_enum(
        self,
        value: Any,
        field: str,
        vocabulary: str,
        warnings: list[CleansingWarning],
        partial_match: bool = True,
    ) -> str | None:
        """
        Map a controlled-vocabulary value to its canonical form.

        Exact synonym matches map silently unless the text changed; partial
        matches map with an explicit warning. Unknown values come back
        upper-cased so the business validator can reject them.

        Raises:
            KeyError: If the vocabulary does not exist
        """
        if value is None:
            return None

        index = self._indexes[vocabulary]
        original = str(value)
        key = vocabulary_key(original)
        if not key:
            return None

        canonical = index.get(key)
        message = "Value normalized via synonym table"

        if canonical is None and partial_match:
            for synonym_key, candidate in index.items():
                if len(synonym_key) >= 3 and len(key) >= 3 and (synonym_key in key or key in synonym_key):
                    canonical = candidate
                    message = f"Partial match mapped to '{candidate}'"
                    break

        if canonical is None:
            return _WHITESPACE_RE.sub(" ", original).strip().upper()

        if canonical != original:
            warnings.append(
                CleansingWarning(
                    field=field,
                    message=message,
                    original_value=original,
                    cleaned_value=canonical,
                )
            )
        return canonical

    def clean_boolean(self, value: Any, field: str, warnings: list[CleansingWarning]) -> bool | None:
        """
        Parse yes/no style values in Portuguese or English.

        Raises:
            FieldError: If the token is not recognised
        """
        if value is None or isinstance(value, bool):
            return value

        token = str(value).strip().lower()
        if token in TRUE_VALUES:
            return True
        if token in FALSE_VALUES:
            return False
        raise FieldError(field, f"'{value}' is not a boolean", value=value, code="INVALID_BOOLEAN")

    def clean_value(
        self,
        value: Any,
        field: str,
        rule: FieldCleansingRule,
        warnings: list[CleansingWarning],
    ) -> Any:
        """Dispatch to the cleaner matching ``rule.kind``."""
        if rule.kind == "number":
            return self.clean_number(value, field, warnings)
        if rule.kind == "integer":
            return self.clean_integer(value, field, warnings)
        if rule.kind == "date":
            return self.clean_date(value, field, warnings)
        if rule.kind == "time":
            return self.clean_time(value, field, warnings)
        if rule.kind == "enum":
            return self.clean_enum(value, field, rule.vocabulary, warnings, partial_match=rule.partial_match)
        if rule.kind == "boolean":
            return self.clean_boolean(value, field, warnings)
        return self.clean_text(value, field, warnings, case=rule.case, max_length=rule.max_length)

    def cleanse(
        self,
        values: dict[str, Any],
        plan: dict[str, FieldCleansingRule],
        row_number: int | None = None,
    ) -> tuple[dict[str, Any], list[CleansingWarning], list[FieldError]]:
        """
        Cleanse every field of a mapped row.

        Fields without a rule are cleaned as plain text. A field that fails
        to parse is reported and set to None; other fields still get cleansed
        so the row's full error list is reported at once.

        Args:
            values: Canonical field -> raw value
            plan: Canonical field -> cleansing rule
            row_number: Source line number for warnings and errors

        Returns:
            Tuple of (cleaned values, warnings, errors)
        """
        cleaned: dict[str, Any] = {}
        warnings: list[CleansingWarning] = []
        errors: list[FieldError] = []
        default_rule = FieldCleansingRule()

        for field, value in values.items():
            rule = plan.get(field, default_rule)
            try:
                cleaned[field] = self.clean_value(value, field, rule, warnings)
            except FieldError as e:
                e.row_number = row_number
                errors.append(e)
                cleaned[field] = None

        for warning in warnings:
            warning.row_number = row_number

        return cleaned, warnings, errors
