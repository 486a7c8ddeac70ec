"""
Error classification and retry with backoff.
"""

import time
from enum import Enum
from typing import Any, Callable, TypeVar

import psycopg

from src.core.errors import (
    EtlError,
    FieldError,
    MappingError,
    ParseError,
    RetryExhaustedError,
    StorageError,
)
from src.core.models import DeadLetterRecord
from src.observability.logger import get_logger
from src.observability.metrics import dead_letter_total, increment_counter, retries_total

logger = get_logger(__name__)

T = TypeVar("T")


class ErrorType(str, Enum):
    """Retry classes of a failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMITED = "rate_limited"
    RESOURCE = "resource"


# Checked in this order; the first keyword found wins
_KEYWORDS: list[tuple[ErrorType, tuple[str, ...]]] = [
    (ErrorType.RATE_LIMITED, ("rate limit", "too many requests", "429")),
    (ErrorType.RESOURCE, ("out of memory", "memory", "pool exhausted", "too many connections", "lock timeout", "disk full")),
    (ErrorType.PERMANENT, ("validation", "schema", "constraint", "parse", "malformed", "mapping", "invalid", "duplicate")),
    (ErrorType.TRANSIENT, ("network", "timeout", "timed out", "connection", "temporary", "unavailable", "deadlock")),
]


def classify_error(error: BaseException) -> ErrorType:
    """
    Decide how a failure should be retried.

    Known exception types are classified directly; anything else is
    classified by keywords in its message. Unknown failures count as
    transient.
    """
    if isinstance(error, StorageError):
        return ErrorType.TRANSIENT if error.transient else ErrorType.PERMANENT
    if isinstance(error, (ParseError, MappingError, FieldError)):
        return ErrorType.PERMANENT
    if isinstance(error, (psycopg.IntegrityError, psycopg.DataError, psycopg.ProgrammingError)):
        return ErrorType.PERMANENT

    message = str(error).lower()
    for error_type, keywords in _KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return error_type

    return ErrorType.TRANSIENT


def is_retryable(error: BaseException) -> bool:
    """Permanent failures are never retried."""
    return classify_error(error) != ErrorType.PERMANENT


class RetryPolicy:
    """
    Backoff schedule.

    Attributes:
        max_attempts: Total attempts including the first
        base_delay: Delay after the first failure, in seconds
        strategy: "exponential" (base x multiplier^n) or "linear" (base x (n + 1))
        multiplier: Exponential growth factor
        max_delay: Upper bound on any single delay
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        strategy: str = "exponential",
        multiplier: float = 2.0,
        max_delay: float = 300.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if strategy not in ("exponential", "linear"):
            raise ValueError(f"Unknown retry strategy: {strategy}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.strategy = strategy
        self.multiplier = multiplier
        self.max_delay = max_delay

    def delay_for(self, attempt: int, error_type: ErrorType = ErrorType.TRANSIENT) -> float:
        """
        Delay before retrying after failed attempt ``attempt`` (0-indexed).

        Rate-limited and resource failures wait twice as long.
        """
        if self.strategy == "linear":
            delay = self.base_delay * (attempt + 1)
        else:
            delay = self.base_delay * (self.multiplier ** attempt)
        if error_type in (ErrorType.RATE_LIMITED, ErrorType.RESOURCE):
            delay *= 2
        return min(delay, self.max_delay)


class RetryExecutor:
    """
    Runs an operation under a RetryPolicy.

    Every retry is logged and, when an audit sink is configured, recorded as
    an audit event. Permanent failures and exhausted retries go to the
    dead-letter queue when one is configured.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        audit=None,
        dead_letter=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize executor.

        Args:
            policy: Backoff schedule
            audit: Audit sink (optional)
            dead_letter: Dead-letter queue exposing ``add(record)`` (optional)
            sleep: Sleep function, replaceable in tests
        """
        self.policy = policy
        self.audit = audit
        self.dead_letter = dead_letter
        self.sleep = sleep

    def execute_with_retry(
        self,
        operation: str,
        fn: Callable[[], T],
        organization_id: str | None = None,
        file_id: str | None = None,
        run_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> T:
        """
        Call ``fn`` until it succeeds, fails permanently or runs out of attempts.

        Args:
            operation: Name used in logs, metrics, audit and dead-letter records
            fn: Zero-argument callable
            organization_id: Context for audit and dead-letter records
            file_id: Context for audit and dead-letter records
            run_id: Context for audit and dead-letter records
            payload: Replay context stored with a dead-letter record

        Returns:
            Result of ``fn``

        Raises:
            RetryExhaustedError: After a permanent failure or the last attempt
        """
        attempt = 0
        while True:
            try:
                result = fn()
                if attempt:
                    increment_counter(retries_total, operation=operation, status="recovered")
                return result
            except EtlError as e:
                if isinstance(e, RetryExhaustedError):
                    raise
                error = e
            except (psycopg.Error, OSError) as e:
                error = e

            error_type = classify_error(error)
            attempt += 1

            if error_type == ErrorType.PERMANENT or attempt >= self.policy.max_attempts:
                increment_counter(retries_total, operation=operation, status="exhausted")
                logger.error(
                    f"{operation} failed after {attempt} attempt(s): {error}",
                    extra={"error_type": error_type.value, "file_id": file_id, "run_id": run_id},
                )
                self._dead_letter(operation, error, error_type, attempt, organization_id, file_id, run_id, payload)
                raise RetryExhaustedError(operation, attempt, error) from error

            delay = self.policy.delay_for(attempt - 1, error_type)
            increment_counter(retries_total, operation=operation, status="retrying")
            logger.warning(
                f"{operation} attempt {attempt} failed ({error_type.value}), retrying in {delay:.1f}s: {error}",
                extra={"file_id": file_id, "run_id": run_id},
            )
            if self.audit is not None:
                self.audit.log_event(
                    "warning",
                    "retry",
                    f"Retrying {operation} after attempt {attempt}",
                    details={
                        "operation": operation,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error_type": error_type.value,
                        "error": str(error),
                    },
                    organization_id=organization_id,
                    file_id=file_id,
                    run_id=run_id,
                )
            self.sleep(delay)

    def _dead_letter(
        self,
        operation: str,
        error: BaseException,
        error_type: ErrorType,
        attempts: int,
        organization_id: str | None,
        file_id: str | None,
        run_id: str | None,
        payload: dict[str, Any] | None,
    ) -> None:
        if self.dead_letter is None or organization_id is None:
            return
        self.dead_letter.add(
            DeadLetterRecord(
                organization_id=organization_id,
                file_id=file_id,
                run_id=run_id,
                operation=operation,
                error_type=error_type.value,
                error_message=str(error),
                payload=payload or {},
                retry_count=attempts,
            )
        )
        increment_counter(dead_letter_total, error_type=error_type.value)
