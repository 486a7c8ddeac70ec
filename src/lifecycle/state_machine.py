"""
File lifecycle state machine.

uploaded -> parsing -> parsed -> validating -> validated -> loading -> loaded

Any non-terminal state may fail; uploaded, parsed and validated may be
cancelled; failed and cancelled may go back to parsing for a retry or a
reprocess. ``loaded`` is terminal, and so is ``failed`` once the retry
budget is spent (tracked on the file record, not as a separate state).
"""

import random
from datetime import datetime, timedelta, timezone

from src.core.errors import InvalidTransitionError
from src.core.models import FileState

VALID_TRANSITIONS: dict[FileState, frozenset[FileState]] = {
    FileState.UPLOADED: frozenset({FileState.PARSING, FileState.CANCELLED, FileState.FAILED}),
    FileState.PARSING: frozenset({FileState.PARSED, FileState.FAILED}),
    FileState.PARSED: frozenset({FileState.VALIDATING, FileState.CANCELLED, FileState.FAILED}),
    FileState.VALIDATING: frozenset({FileState.VALIDATED, FileState.FAILED}),
    FileState.VALIDATED: frozenset({FileState.LOADING, FileState.CANCELLED, FileState.FAILED}),
    FileState.LOADING: frozenset({FileState.LOADED, FileState.FAILED}),
    FileState.LOADED: frozenset(),
    FileState.FAILED: frozenset({FileState.PARSING}),
    FileState.CANCELLED: frozenset({FileState.PARSING}),
}

# States a worker holds while actively processing; stuck ones are released as stale
PROCESSING_STATES = frozenset({FileState.PARSING, FileState.VALIDATING, FileState.LOADING})

DEFAULT_BASE_DELAY_SECONDS = 5.0
DEFAULT_MULTIPLIER = 2.0
DEFAULT_JITTER_RATIO = 0.1
DEFAULT_MAX_RETRIES = 3


def is_valid_transition(from_state: FileState, to_state: FileState) -> bool:
    """Whether the transition table allows ``from_state -> to_state``."""
    return FileState(to_state) in VALID_TRANSITIONS[FileState(from_state)]


def get_valid_next_states(state: FileState) -> list[FileState]:
    """Allowed next states, in lifecycle order."""
    allowed = VALID_TRANSITIONS[FileState(state)]
    return [s for s in FileState if s in allowed]


def is_terminal(state: FileState, retries_exhausted: bool = False) -> bool:
    """
    Whether no further transition can happen automatically.

    Args:
        state: Current state
        retries_exhausted: True when the file spent its retry budget
    """
    state = FileState(state)
    if state == FileState.LOADED:
        return True
    return state == FileState.FAILED and retries_exhausted


def validate_transition(from_state: FileState, to_state: FileState) -> None:
    """
    Reject transitions missing from the table.

    Raises:
        InvalidTransitionError: With current and attempted state
    """
    if not is_valid_transition(from_state, to_state):
        raise InvalidTransitionError(FileState(from_state).value, FileState(to_state).value)


def retry_delay_seconds(
    retry_count: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    multiplier: float = DEFAULT_MULTIPLIER,
) -> float:
    """Backoff before attempt ``retry_count`` (0-indexed), without jitter."""
    return base_delay * (multiplier ** max(retry_count, 0))


def calculate_next_retry_time(
    retry_count: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    multiplier: float = DEFAULT_MULTIPLIER,
    jitter_ratio: float = DEFAULT_JITTER_RATIO,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> datetime:
    """
    When the next automatic retry becomes due.

    Waits ``base_delay x multiplier^retry_count`` seconds, spread by
    +/- ``jitter_ratio`` so files failed together do not retry together.

    Args:
        retry_count: Retries already made (0-indexed attempt number)
        base_delay: Delay of the first retry in seconds
        multiplier: Growth factor per attempt
        jitter_ratio: Relative jitter amplitude
        now: Reference time (defaults to current UTC time)
        rng: Random source (defaults to the module's global generator)

    Returns:
        Timezone-aware due time
    """
    now = now or datetime.now(timezone.utc)
    delay = retry_delay_seconds(retry_count, base_delay, multiplier)
    jitter = (rng or random).uniform(-jitter_ratio, jitter_ratio) * delay
    return now + timedelta(seconds=delay + jitter)


def can_retry(retry_count: int, max_retries: int = DEFAULT_MAX_RETRIES, auto_retry: bool = True) -> bool:
    """Whether another automatic retry is allowed after ``retry_count`` failures."""
    return auto_retry and retry_count < max_retries


class FileStateMachine:
    """
    Transition rules bound to the engine's retry policy.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        multiplier: float = DEFAULT_MULTIPLIER,
        jitter_ratio: float = DEFAULT_JITTER_RATIO,
        auto_retry: bool = True,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.jitter_ratio = jitter_ratio
        self.auto_retry = auto_retry

    @classmethod
    def from_settings(cls, settings) -> "FileStateMachine":
        """Build from EngineSettings."""
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            jitter_ratio=settings.retry_jitter_ratio,
            auto_retry=settings.auto_retry,
        )

    def validate(self, from_state: FileState, to_state: FileState) -> None:
        validate_transition(from_state, to_state)

    def can_retry(self, retry_count: int) -> bool:
        return can_retry(retry_count, self.max_retries, self.auto_retry)

    def next_retry_time(self, retry_count: int, now: datetime | None = None) -> datetime:
        return calculate_next_retry_time(
            retry_count, self.base_delay, self.multiplier, self.jitter_ratio, now=now
        )
