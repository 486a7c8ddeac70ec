"""
Header mapping from arbitrary export headers to canonical field names.

Equipment vendors and farm staff rename columns freely ("Data", "DATA REF",
"dt_ref"...). Headers are normalized, matched against canonical names and
aliases, and anything left over gets an edit-distance suggestion that is
reported but never applied automatically.
"""

import re
import unicodedata
from typing import Any

from pydantic import BaseModel, Field
from rapidfuzz.distance import Levenshtein

from src.core.errors import FieldError, MappingError
from src.core.models import MappedRow, RawRow
from src.observability.logger import get_logger

from .field_spec import HeaderMappingConfig

logger = get_logger(__name__)

_SEPARATORS_RE = re.compile(r"[\s\-\.]+")


class HeaderSuggestion(BaseModel):
    """Best guess for an unmapped header."""

    header: str
    field: str
    score: float


class MappingAnalysis(BaseModel):
    """
    File-level result of header mapping (computed once per file).

    Attributes:
        detected_headers: Headers as they appear in the file
        field_index: Canonical field -> column index
        mapped: Header -> canonical field
        unmapped_headers: Headers with no canonical field
        missing_required: Required fields with no column
        suggestions: Edit-distance suggestions for unmapped headers
        confidence: Mapped required / total required (or mapped / headers
            when no field is required)
    """

    detected_headers: list[str]
    field_index: dict[str, int] = Field(default_factory=dict)
    mapped: dict[str, str] = Field(default_factory=dict)
    unmapped_headers: list[str] = Field(default_factory=list)
    missing_required: list[str] = Field(default_factory=list)
    suggestions: list[HeaderSuggestion] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    @property
    def is_complete(self) -> bool:
        return not self.missing_required


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """
    Similarity in [0, 1] derived from edit distance.

    Args:
        a: First string
        b: Second string

    Returns:
        (max_len - distance) / max_len, 1.0 for two empty strings
    """
    return Levenshtein.normalized_similarity(a, b)


class HeaderMapper:
    """
    Maps file headers to canonical fields and builds MappedRows.
    """

    def __init__(self, config: HeaderMappingConfig):
        """
        Initialize header mapper.

        Args:
            config: Pipeline header mapping configuration
        """
        self.config = config
        self._lookup = self._build_lookup()

    def normalize(self, header: str) -> str:
        """
        Normalize header text for matching.

        Trims, strips the configured prefix/suffix, removes accents, folds
        case (unless case-sensitive) and turns spaces, dots and hyphens into
        underscores.
        """
        text = header.strip()

        prefix = self.config.remove_prefix
        if prefix and text.lower().startswith(prefix.lower()):
            text = text[len(prefix):]
        suffix = self.config.remove_suffix
        if suffix and text.lower().endswith(suffix.lower()):
            text = text[: len(text) - len(suffix)]

        text = unicodedata.normalize("NFKD", text)
        text = "".join(ch for ch in text if not unicodedata.combining(ch))
        text = _SEPARATORS_RE.sub("_", text.strip()).strip("_")

        if not self.config.case_sensitive:
            text = text.casefold()
        return text

    def _build_lookup(self) -> dict[str, str]:
        lookup: dict[str, str] = {}
        # Canonical names win over aliases of other fields
        for name in self.config.fields:
            lookup.setdefault(self.normalize(name), name)
        for name, spec in self.config.fields.items():
            for alias in spec.aliases:
                lookup.setdefault(self.normalize(alias), name)
        return lookup

    def _suggest(self, normalized_header: str) -> tuple[str, float] | None:
        best_field = None
        best_score = 0.0
        for candidate, field_name in self._lookup.items():
            score = similarity(normalized_header, candidate)
            if score > best_score:
                best_field, best_score = field_name, score
        if best_field is None or best_score <= self.config.suggestion_threshold:
            return None
        return best_field, best_score

    def analyze(self, headers: list[str]) -> MappingAnalysis:
        """
        Map a file's headers to canonical fields.

        Args:
            headers: Header row of the file

        Returns:
            MappingAnalysis for the file
        """
        field_index: dict[str, int] = {}
        mapped: dict[str, str] = {}
        unmapped: list[str] = []
        suggestions: list[HeaderSuggestion] = []

        for idx, header in enumerate(headers):
            normalized = self.normalize(header)
            field_name = self._lookup.get(normalized)

            if field_name is not None and field_name not in field_index:
                field_index[field_name] = idx
                mapped[header] = field_name
                continue

            unmapped.append(header)
            if field_name is None:
                suggestion = self._suggest(normalized)
                if suggestion:
                    suggestions.append(
                        HeaderSuggestion(header=header, field=suggestion[0], score=round(suggestion[1], 3))
                    )

        required = self.config.required_fields
        missing_required = [name for name in required if name not in field_index]

        if required:
            confidence = (len(required) - len(missing_required)) / len(required)
        elif headers:
            confidence = len(mapped) / len(headers)
        else:
            confidence = 0.0

        analysis = MappingAnalysis(
            detected_headers=list(headers),
            field_index=field_index,
            mapped=mapped,
            unmapped_headers=unmapped,
            missing_required=missing_required,
            suggestions=suggestions,
            confidence=round(confidence, 4),
        )

        logger.debug(
            f"Mapped {len(mapped)}/{len(headers)} headers",
            extra={
                "unmapped_headers": unmapped,
                "missing_required": missing_required,
                "mapping_confidence": analysis.confidence,
            },
        )
        return analysis

    def require_complete(self, analysis: MappingAnalysis) -> None:
        """
        Fail the file when a required field has no column at all.

        Args:
            analysis: Result of ``analyze``

        Raises:
            MappingError: If required fields are missing, or if strict mode
                is on and some headers are unmapped
        """
        suggestions = {s.header: s.field for s in analysis.suggestions}
        if analysis.missing_required:
            raise MappingError(analysis.missing_required, suggestions)
        if self.config.strict and analysis.unmapped_headers:
            raise MappingError(
                [f"unexpected column '{h}'" for h in analysis.unmapped_headers], suggestions
            )

    def map_row(self, raw_row: RawRow, analysis: MappingAnalysis) -> MappedRow:
        """
        Build a MappedRow from a raw row using the file's analysis.

        Empty required values without a default are row-level errors; empty
        optional values take their default (or None).

        Args:
            raw_row: Row produced by the CSV reader
            analysis: Result of ``analyze`` for the same file

        Returns:
            MappedRow with raw string values keyed by canonical field
        """
        mapped_row = MappedRow(raw=raw_row, unmapped_headers=list(analysis.unmapped_headers))
        cells = raw_row.cells
        expected = len(analysis.detected_headers)

        # Trailing empty cells from extra separators are ignored
        if len(cells) < expected or any(c for c in cells[expected:]):
            mapped_row.add_error(
                FieldError(
                    field="*",
                    message=f"Row has {len(cells)} columns, header has {expected}",
                    row_number=raw_row.row_number,
                    code="COLUMN_COUNT_MISMATCH",
                ).to_dict()
            )

        values: dict[str, Any] = {}
        for name, spec in self.config.fields.items():
            idx = analysis.field_index.get(name)
            raw_value = cells[idx] if idx is not None and idx < len(cells) else ""

            if raw_value == "":
                if spec.default is not None:
                    values[name] = spec.default
                    continue
                values[name] = None
                if spec.required:
                    mapped_row.missing_fields.append(name)
                    mapped_row.add_error(
                        FieldError(
                            field=name,
                            message="Required field is empty",
                            row_number=raw_row.row_number,
                            code="REQUIRED_FIELD_MISSING",
                        ).to_dict()
                    )
                continue

            values[name] = spec.apply_transform(raw_value)

        mapped_row.values = values
        return mapped_row
