"""
Unit tests for error classification and retry with backoff
"""

import psycopg
import pytest

from src.core.errors import MappingError, ParseError, RetryExhaustedError, StorageError
from src.lifecycle import ErrorType, RetryExecutor, RetryPolicy, classify_error, is_retryable


class FakeDeadLetterQueue:
    def __init__(self):
        self.records = []

    def add(self, record):
        self.records.append(record)
        return len(self.records)


class Flaky:
    """Fails a fixed number of times before succeeding"""

    def __init__(self, failures, error_factory=lambda: StorageError("connection reset by peer")):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return "done"


@pytest.mark.unit
class TestClassifyError:
    """Tests for classify_error"""

    @pytest.mark.parametrize("error,expected", [
        (StorageError("lost connection"), ErrorType.TRANSIENT),
        (StorageError("bad column", transient=False), ErrorType.PERMANENT),
        (ParseError("Malformed CSV structure"), ErrorType.PERMANENT),
        (MappingError(["kg_real"]), ErrorType.PERMANENT),
        (psycopg.IntegrityError("duplicate key"), ErrorType.PERMANENT),
        (psycopg.OperationalError("connection refused"), ErrorType.TRANSIENT),
        (Exception("429 Too Many Requests"), ErrorType.RATE_LIMITED),
        (Exception("pool exhausted"), ErrorType.RESOURCE),
        (Exception("invalid input syntax"), ErrorType.PERMANENT),
        (Exception("something odd happened"), ErrorType.TRANSIENT),
    ])
    def test_classification(self, error, expected):
        assert classify_error(error) == expected

    def test_is_retryable(self):
        assert is_retryable(StorageError("timeout"))
        assert not is_retryable(ParseError("File is empty"))


@pytest.mark.unit
class TestRetryPolicy:
    """Tests for RetryPolicy delays"""

    def test_exponential(self):
        policy = RetryPolicy(base_delay=5.0, multiplier=2.0)
        assert [policy.delay_for(n) for n in range(3)] == [5.0, 10.0, 20.0]

    def test_linear(self):
        policy = RetryPolicy(base_delay=1.0, strategy="linear")
        assert [policy.delay_for(n) for n in range(3)] == [1.0, 2.0, 3.0]

    def test_rate_limited_waits_longer(self):
        policy = RetryPolicy(base_delay=5.0)
        assert policy.delay_for(0, ErrorType.RATE_LIMITED) == 10.0

    def test_max_delay_caps(self):
        assert RetryPolicy(base_delay=100.0, max_delay=150.0).delay_for(3) == 150.0

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError, match="Unknown retry strategy"):
            RetryPolicy(strategy="fibonacci")


@pytest.mark.unit
class TestRetryExecutor:
    """Tests for RetryExecutor"""

    def setup_method(self):
        self.sleeps = []
        self.dead_letter = FakeDeadLetterQueue()

    def executor(self, max_attempts=3, audit=None):
        return RetryExecutor(
            RetryPolicy(max_attempts=max_attempts, base_delay=5.0),
            audit=audit,
            dead_letter=self.dead_letter,
            sleep=self.sleeps.append,
        )

    def test_success_first_time(self):
        assert self.executor().execute_with_retry("write_chunk", lambda: 42) == 42
        assert self.sleeps == []

    def test_transient_failures_recover(self, recording_audit):
        fn = Flaky(failures=2)

        result = self.executor(audit=recording_audit).execute_with_retry(
            "write_chunk", fn, organization_id="org-1", file_id="f-1"
        )

        assert result == "done"
        assert fn.calls == 3
        assert self.sleeps == [5.0, 10.0]
        assert recording_audit.actions() == ["retry", "retry"]
        assert recording_audit.events[1].details["attempt"] == 2
        assert self.dead_letter.records == []

    def test_exhausted_attempts_dead_letter(self):
        fn = Flaky(failures=10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            self.executor(max_attempts=3).execute_with_retry(
                "write_chunk", fn, organization_id="org-1", file_id="f-1", payload={"chunk": 2}
            )

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, StorageError)
        assert fn.calls == 3
        assert len(self.sleeps) == 2

        record = self.dead_letter.records[0]
        assert record.operation == "write_chunk"
        assert record.error_type == "transient"
        assert record.retry_count == 3
        assert record.payload == {"chunk": 2}

    def test_permanent_failure_is_not_retried(self):
        fn = Flaky(failures=1, error_factory=lambda: ParseError("Malformed CSV structure"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            self.executor().execute_with_retry("parse", fn, organization_id="org-1")

        assert exc_info.value.attempts == 1
        assert self.sleeps == []
        assert self.dead_letter.records[0].error_type == "permanent"

    def test_no_dead_letter_without_organization(self):
        with pytest.raises(RetryExhaustedError):
            self.executor(max_attempts=1).execute_with_retry("write_chunk", Flaky(failures=1))
        assert self.dead_letter.records == []

    def test_unexpected_exceptions_propagate(self):
        def broken():
            raise KeyError("programming error")

        with pytest.raises(KeyError):
            self.executor().execute_with_retry("write_chunk", broken)
        assert self.sleeps == []
