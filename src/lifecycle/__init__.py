"""
File lifecycle: state machine, retry policy, and the duplicate-upload gate.
"""

from .checksum import ChecksumDecision, ChecksumService, compute_checksum
from .retry import ErrorType, RetryExecutor, RetryPolicy, classify_error, is_retryable
from .state_machine import (
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

__all__ = [
    "VALID_TRANSITIONS",
    "PROCESSING_STATES",
    "FileStateMachine",
    "is_valid_transition",
    "get_valid_next_states",
    "is_terminal",
    "validate_transition",
    "calculate_next_retry_time",
    "can_retry",
    "ErrorType",
    "RetryPolicy",
    "RetryExecutor",
    "classify_error",
    "is_retryable",
    "ChecksumService",
    "ChecksumDecision",
    "compute_checksum",
]
