"""
Unit tests for the file lifecycle state machine
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.core.errors import InvalidTransitionError
from src.core.models import FileState
from src.core.settings import EngineSettings
from src.lifecycle import (
    PROCESSING_STATES,
    VALID_TRANSITIONS,
    FileStateMachine,
    calculate_next_retry_time,
    can_retry,
    get_valid_next_states,
    is_terminal,
    is_valid_transition,
    validate_transition,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

HAPPY_PATH = [
    FileState.UPLOADED,
    FileState.PARSING,
    FileState.PARSED,
    FileState.VALIDATING,
    FileState.VALIDATED,
    FileState.LOADING,
    FileState.LOADED,
]


@pytest.mark.unit
class TestTransitions:
    """Tests for the transition table"""

    def test_happy_path_is_valid(self):
        for from_state, to_state in zip(HAPPY_PATH, HAPPY_PATH[1:]):
            assert is_valid_transition(from_state, to_state)

    def test_skipping_states_is_invalid(self):
        assert not is_valid_transition(FileState.UPLOADED, FileState.LOADED)
        assert not is_valid_transition(FileState.PARSING, FileState.VALIDATING)

    def test_failed_and_cancelled_go_back_to_parsing(self):
        assert is_valid_transition(FileState.FAILED, FileState.PARSING)
        assert is_valid_transition(FileState.CANCELLED, FileState.PARSING)
        assert not is_valid_transition(FileState.FAILED, FileState.LOADED)

    def test_cancel_only_between_steps(self):
        cancellable = {s for s in FileState if is_valid_transition(s, FileState.CANCELLED)}
        assert cancellable == {FileState.UPLOADED, FileState.PARSED, FileState.VALIDATED}

    def test_string_states_accepted(self):
        assert is_valid_transition("failed", "parsing")

    def test_loaded_has_no_next_states(self):
        assert get_valid_next_states(FileState.LOADED) == []

    def test_next_states_in_lifecycle_order(self):
        assert get_valid_next_states(FileState.UPLOADED) == [
            FileState.PARSING, FileState.FAILED, FileState.CANCELLED,
        ]

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(FileState.LOADED, FileState.PARSING)

        assert exc_info.value.current_state == "loaded"
        assert exc_info.value.attempted_state == "parsing"

    def test_every_state_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(FileState)
        assert PROCESSING_STATES == {FileState.PARSING, FileState.VALIDATING, FileState.LOADING}

    @given(st.sampled_from(list(FileState)))
    def test_property_active_states_can_fail(self, state):
        """Property test: every state except loaded, failed and cancelled can fail"""
        expected = state not in (FileState.LOADED, FileState.FAILED, FileState.CANCELLED)
        assert is_valid_transition(state, FileState.FAILED) == expected


@pytest.mark.unit
class TestTerminalStates:
    def test_loaded_is_terminal(self):
        assert is_terminal(FileState.LOADED)

    def test_failed_is_terminal_only_when_exhausted(self):
        assert not is_terminal(FileState.FAILED)
        assert is_terminal(FileState.FAILED, retries_exhausted=True)

    def test_cancelled_is_not_terminal(self):
        assert not is_terminal(FileState.CANCELLED)


@pytest.mark.unit
class TestRetrySchedule:
    """Tests for backoff and retry budget"""

    def test_first_retry_delay(self):
        due = calculate_next_retry_time(0, now=NOW)
        assert NOW + timedelta(seconds=4.5) <= due <= NOW + timedelta(seconds=5.5)

    def test_delay_grows_exponentially(self):
        due = calculate_next_retry_time(2, jitter_ratio=0.0, now=NOW)
        assert due == NOW + timedelta(seconds=20)

    def test_jitter_is_reproducible_with_seeded_rng(self):
        first = calculate_next_retry_time(1, now=NOW, rng=random.Random(7))
        second = calculate_next_retry_time(1, now=NOW, rng=random.Random(7))
        assert first == second

    def test_default_now_is_timezone_aware(self):
        assert calculate_next_retry_time(0).tzinfo is not None

    def test_retry_budget(self):
        assert can_retry(0)
        assert can_retry(2)
        assert not can_retry(3)
        assert not can_retry(0, auto_retry=False)

    @given(st.integers(min_value=0, max_value=8))
    def test_property_delay_within_jitter(self, retry_count):
        """Property test: the due time stays within +/-10% of the nominal delay"""
        nominal = 5.0 * 2 ** retry_count
        due = calculate_next_retry_time(retry_count, now=NOW)
        delay = (due - NOW).total_seconds()
        assert nominal * 0.9 - 1e-6 <= delay <= nominal * 1.1 + 1e-6


@pytest.mark.unit
class TestFileStateMachine:
    def test_from_settings(self):
        settings = EngineSettings(max_retries=5, retry_base_delay_seconds=1.0, retry_jitter_ratio=0.0)
        machine = FileStateMachine.from_settings(settings)

        assert machine.can_retry(4)
        assert not machine.can_retry(5)
        assert machine.next_retry_time(3, now=NOW) == NOW + timedelta(seconds=8)

    def test_auto_retry_disabled(self):
        assert not FileStateMachine(auto_retry=False).can_retry(0)

    def test_validate(self):
        machine = FileStateMachine()
        machine.validate(FileState.UPLOADED, FileState.PARSING)
        with pytest.raises(InvalidTransitionError):
            machine.validate(FileState.UPLOADED, FileState.VALIDATED)
