"""
Field separator detection for CSV exports.

Equipment exports arrive with commas, semicolons (Brazilian locale), tabs or
pipes. The detector scores each candidate on a sample of lines; the caller
decides what to do when the best score is not convincing.
"""

import statistics
from typing import Any

from pydantic import BaseModel, Field

from src.core.errors import ParseError, SeparatorDetectionError
from src.observability.logger import get_logger

logger = get_logger(__name__)

CANDIDATE_SEPARATORS = [",", ";", "\t", "|"]

SEPARATOR_NAMES = {
    ",": "comma",
    ";": "semicolon",
    "\t": "tab",
    "|": "pipe",
}

QUOTE_CHAR = '"'


class SeparatorScore(BaseModel):
    """Per-candidate breakdown of the detection."""

    separator: str
    average_count: float
    consistency: float
    coverage: float
    score: float


class SeparatorDetectionResult(BaseModel):
    """
    Outcome of separator detection.

    Attributes:
        separator: Best candidate
        confidence: 0.0-1.0, how clearly the best candidate beat the runner-up
        sample_lines: Number of non-blank lines examined
        candidates: Score breakdown for every candidate, in candidate order
        fallback_used: True when the caller replaced a low-confidence guess
    """

    separator: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    sample_lines: int = 0
    candidates: list[SeparatorScore] = Field(default_factory=list)
    fallback_used: bool = False

    @property
    def separator_name(self) -> str:
        return separator_name(self.separator)


def separator_name(separator: str) -> str:
    """Human-readable name of a separator (comma, semicolon, tab, pipe)."""
    return SEPARATOR_NAMES.get(separator, repr(separator))


def count_unquoted(line: str, separator: str) -> int:
    """
    Count separator occurrences outside double-quoted sections.

    A doubled quote inside a quoted section is an escaped quote.

    Args:
        line: One line of CSV text
        separator: Single-character separator

    Returns:
        Number of separators outside quotes
    """
    count = 0
    in_quotes = False
    idx = 0
    length = len(line)

    while idx < length:
        char = line[idx]
        if char == QUOTE_CHAR:
            if in_quotes and idx + 1 < length and line[idx + 1] == QUOTE_CHAR:
                idx += 2
                continue
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            count += 1
        idx += 1

    return count


def _score_candidate(lines: list[str], separator: str) -> SeparatorScore:
    counts = [count_unquoted(line, separator) for line in lines]
    non_zero = [c for c in counts if c > 0]

    if not non_zero:
        return SeparatorScore(
            separator=separator, average_count=0.0, consistency=0.0, coverage=0.0, score=0.0
        )

    average = sum(counts) / len(counts)

    # Zero variance across lines is a perfectly consistent separator
    if len(non_zero) > 1:
        mean = statistics.fmean(non_zero)
        consistency = max(0.0, 1.0 - statistics.pstdev(non_zero) / mean)
    else:
        consistency = 1.0

    coverage = len(non_zero) / len(counts)
    score = average * consistency * coverage

    return SeparatorScore(
        separator=separator,
        average_count=round(average, 4),
        consistency=round(consistency, 4),
        coverage=round(coverage, 4),
        score=score,
    )


def detect_separator(
    content: str,
    sample_lines: int = 5,
    candidates: list[str] | None = None,
) -> SeparatorDetectionResult:
    """
    Score candidate separators over the first non-blank lines of ``content``.

    Confidence compares the best score with twice the runner-up, capped at 1.
    Ties keep candidate order (comma first). Empty content yields confidence 0.

    Args:
        content: Decoded file content (or a prefix of it)
        sample_lines: Number of non-blank lines to examine
        candidates: Separators to consider (defaults to comma, semicolon, tab, pipe)

    Returns:
        SeparatorDetectionResult with the per-candidate breakdown
    """
    candidates = candidates or CANDIDATE_SEPARATORS

    lines = []
    for line in content.splitlines():
        if line.strip():
            lines.append(line)
        if len(lines) >= sample_lines:
            break

    if not lines:
        return SeparatorDetectionResult(separator=candidates[0], confidence=0.0, sample_lines=0)

    scores = [_score_candidate(lines, sep) for sep in candidates]

    best = scores[0]
    for candidate in scores[1:]:
        if candidate.score > best.score:
            best = candidate

    runner_up = max((s.score for s in scores if s is not best), default=0.0)

    if best.score <= 0:
        confidence = 0.0
    else:
        confidence = min(1.0, best.score / max(runner_up * 2, 0.1))

    return SeparatorDetectionResult(
        separator=best.separator,
        confidence=round(confidence, 4),
        sample_lines=len(lines),
        candidates=scores,
    )


class SeparatorDetector:
    """
    Applies the low-confidence policy on top of ``detect_separator``.

    With a ``fallback_separator`` configured, a low-confidence guess is replaced
    by the fallback; without one the file fails fast.
    """

    def __init__(
        self,
        sample_lines: int = 5,
        min_confidence: float = 0.7,
        fallback_separator: str | None = None,
    ):
        """
        Initialize detector.

        Args:
            sample_lines: Lines sampled for detection
            min_confidence: Threshold under which detection is not trusted
            fallback_separator: Separator to use on low confidence (None = fail)
        """
        self.sample_lines = sample_lines
        self.min_confidence = min_confidence
        self.fallback_separator = fallback_separator

    def choose(self, content: str, context: dict[str, Any] | None = None) -> SeparatorDetectionResult:
        """
        Detect the separator and enforce the confidence policy.

        Args:
            content: Decoded file content
            context: Extra log fields (file_id, organization_id)

        Returns:
            SeparatorDetectionResult to parse with

        Raises:
            ParseError: If the content has no non-blank lines
            SeparatorDetectionError: If confidence is low and no fallback is configured
        """
        context = context or {}
        result = detect_separator(content, sample_lines=self.sample_lines)

        if result.sample_lines == 0:
            raise ParseError("File is empty")

        if result.confidence >= self.min_confidence:
            logger.debug(
                f"Detected separator {result.separator_name} (confidence {result.confidence:.2f})",
                extra=context,
            )
            return result

        if self.fallback_separator is None:
            raise SeparatorDetectionError(result.separator, result.confidence, self.min_confidence)

        logger.warning(
            f"Low separator confidence {result.confidence:.2f} for {result.separator_name}; "
            f"using configured fallback {separator_name(self.fallback_separator)}",
            extra=context,
        )
        return result.model_copy(
            update={"separator": self.fallback_separator, "fallback_used": True}
        )
