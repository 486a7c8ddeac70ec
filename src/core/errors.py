"""
Exception taxonomy for the ETL engine.

File-level errors (parse, mapping, exhausted retries, timeouts) fail the whole
run and move the file to ``failed``. Row-level errors reject a single row and
the run continues. Warnings are data, not exceptions, and live in
``src.core.models``.
"""

from typing import Any


class EtlError(Exception):
    """Base class for all engine errors."""


class ParseError(EtlError):
    """Raised when the CSV structure itself cannot be read."""

    def __init__(self, message: str, row_number: int | None = None):
        self.message = message
        self.row_number = row_number
        location = f" (row {row_number})" if row_number is not None else ""
        super().__init__(f"{message}{location}")


class SeparatorDetectionError(ParseError):
    """Raised when separator confidence is below threshold and no fallback is configured."""

    def __init__(self, best_separator: str, confidence: float, threshold: float):
        self.best_separator = best_separator
        self.confidence = confidence
        self.threshold = threshold
        super().__init__(
            f"Could not reliably detect the field separator: best candidate "
            f"{best_separator!r} has confidence {confidence:.2f}, below {threshold:.2f}"
        )


class MappingError(EtlError):
    """Raised when a required canonical field is absent from the file headers."""

    def __init__(
        self,
        missing_fields: list[str],
        suggestions: dict[str, str] | None = None,
    ):
        self.missing_fields = missing_fields
        self.suggestions = suggestions or {}
        hint = ""
        if self.suggestions:
            pairs = ", ".join(f"'{h}' -> {f}" for h, f in self.suggestions.items())
            hint = f". Possible matches: {pairs}"
        super().__init__(
            f"Required columns not found: {', '.join(missing_fields)}{hint}"
        )


class FieldError(EtlError):
    """
    Row-level violation on a single field.

    Rejects the row; the rest of the file keeps processing.
    """

    def __init__(
        self,
        field: str,
        message: str,
        value: Any = None,
        row_number: int | None = None,
        code: str = "FIELD_ERROR",
    ):
        self.field = field
        self.message = message
        self.value = value
        self.row_number = row_number
        self.code = code
        super().__init__(f"[{code}] {field}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "field": self.field,
            "value": None if self.value is None else str(self.value),
            "message": self.message,
            "code": self.code,
        }


class BusinessRuleError(FieldError):
    """Row rejected by a domain rule (e.g. equipment outside the allowed set)."""

    def __init__(
        self,
        field: str,
        message: str,
        value: Any = None,
        row_number: int | None = None,
        code: str = "BUSINESS_RULE",
    ):
        super().__init__(field, message, value=value, row_number=row_number, code=code)


class DimensionUnresolved(EtlError):
    """A dimension code had no match; a pending entry stands in for it."""

    def __init__(self, dimension_type: str, code: str, pending_id: str | None = None):
        self.dimension_type = dimension_type
        self.code = code
        self.pending_id = pending_id
        super().__init__(f"Unresolved {dimension_type} code '{code}' (pending: {pending_id})")


class StorageError(EtlError):
    """Failure while reading or writing the warehouse."""

    def __init__(self, message: str, transient: bool = True, cause: Exception | None = None):
        self.transient = transient
        self.cause = cause
        super().__init__(message)


class ConcurrencyConflict(EtlError):
    """Optimistic-lock version mismatch; the caller must re-read and retry."""

    def __init__(
        self,
        file_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ):
        self.file_id = file_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"File {file_id} was modified concurrently: expected version "
            f"{expected_version}, found {actual_version}"
        )


class DuplicateFileError(EtlError):
    """Uploaded content matches an existing file and reprocessing is not permitted."""

    def __init__(self, checksum: str, original_file_id: str, original_state: str):
        self.checksum = checksum
        self.original_file_id = original_file_id
        self.original_state = original_state
        super().__init__(
            f"Duplicate of file {original_file_id} (state: {original_state}); "
            f"pass force=True with a reason and actor to reprocess"
        )


class InvalidTransitionError(EtlError):
    """Attempted lifecycle transition is not in the transition table."""

    def __init__(self, current_state: str, attempted_state: str):
        self.current_state = current_state
        self.attempted_state = attempted_state
        super().__init__(
            f"Invalid transition from '{current_state}' to '{attempted_state}'"
        )


class RunCancelledError(EtlError):
    """Cancellation requested; honoured at a batch boundary."""


class RunTimeoutError(EtlError):
    """The run exceeded its wall-clock budget."""

    def __init__(self, elapsed_seconds: float, budget_seconds: float):
        self.elapsed_seconds = elapsed_seconds
        self.budget_seconds = budget_seconds
        super().__init__(
            f"Run exceeded time budget: {elapsed_seconds:.1f}s > {budget_seconds:.1f}s"
        )


class RetryExhaustedError(EtlError):
    """All retry attempts for an operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")
