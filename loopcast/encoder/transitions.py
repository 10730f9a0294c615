"""
Supervisor states and the pure decisions that move between them.

Nothing here touches processes or the filesystem, so the retry and loop
policy can be tested directly with scripted exit codes.
"""

import enum
import re
from typing import Dict, FrozenSet, Optional


class SupervisorState(enum.Enum):
    """Supervisor state enumeration."""
    IDLE = 1
    PLAYLIST_READY = 2
    STREAMING = 3
    SUCCEEDED = 4
    FAILED = 5
    RETRYING = 6
    LOOP_RESTART = 7
    TERMINATED = 8


class ExitClassification(enum.Enum):
    """How an encoder exit is treated."""
    SUCCESS = "success"
    TRANSIENT = "transient"
    NON_RETRYABLE = "non-retryable"


ALLOWED_TRANSITIONS: Dict[SupervisorState, FrozenSet[SupervisorState]] = {
    SupervisorState.IDLE: frozenset({SupervisorState.PLAYLIST_READY, SupervisorState.TERMINATED}),
    SupervisorState.PLAYLIST_READY: frozenset({SupervisorState.STREAMING, SupervisorState.TERMINATED}),
    SupervisorState.STREAMING: frozenset({
        SupervisorState.SUCCEEDED, SupervisorState.FAILED, SupervisorState.TERMINATED,
    }),
    SupervisorState.SUCCEEDED: frozenset({SupervisorState.LOOP_RESTART, SupervisorState.TERMINATED}),
    SupervisorState.FAILED: frozenset({
        SupervisorState.RETRYING, SupervisorState.LOOP_RESTART, SupervisorState.TERMINATED,
    }),
    SupervisorState.RETRYING: frozenset({SupervisorState.STREAMING, SupervisorState.TERMINATED}),
    SupervisorState.LOOP_RESTART: frozenset({SupervisorState.PLAYLIST_READY, SupervisorState.TERMINATED}),
    SupervisorState.TERMINATED: frozenset(),
}

# ffmpeg exit statuses seen on RTMP/network failures
NETWORK_EXIT_CODES = frozenset({1, 255})

NETWORK_ERROR_PATTERN = re.compile(
    r"(Connection (refused|reset|timed out)|Network is unreachable|I/O error|RTMP.*error)"
)


def can_transition(current: SupervisorState, new: SupervisorState) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def classify_exit(exit_code: int, log_text: Optional[str] = None) -> ExitClassification:
    """
    Classify an encoder exit status.

    A network exit code is transient unless encoder output is available and
    shows no network error, in which case it is non-retryable.

    Args:
        exit_code: Encoder process exit status
        log_text: Encoder output captured during the run, if any
    """
    if exit_code == 0:
        return ExitClassification.SUCCESS
    if exit_code not in NETWORK_EXIT_CODES:
        return ExitClassification.NON_RETRYABLE
    if log_text and log_text.strip():
        if NETWORK_ERROR_PATTERN.search(log_text):
            return ExitClassification.TRANSIENT
        return ExitClassification.NON_RETRYABLE
    return ExitClassification.TRANSIENT


def state_after_exit(classification: ExitClassification) -> SupervisorState:
    if classification is ExitClassification.SUCCESS:
        return SupervisorState.SUCCEEDED
    return SupervisorState.FAILED


def state_after_failure(
    classification: ExitClassification, attempts: int, max_attempts: int, loop_enabled: bool
) -> SupervisorState:
    """
    Decide between retrying and handing over to loop control.

    Args:
        classification: Classification of the failed run
        attempts: Encoder runs made so far in this iteration (including the
            one that just failed)
        max_attempts: Configured attempt budget per iteration
        loop_enabled: Loop control input once retries are off the table
    """
    if classification is ExitClassification.TRANSIENT and attempts < max_attempts:
        return SupervisorState.RETRYING
    return state_after_iteration(loop_enabled)


def state_after_iteration(loop_enabled: bool) -> SupervisorState:
    """Loop control: restart the playlist or finish."""
    return SupervisorState.LOOP_RESTART if loop_enabled else SupervisorState.TERMINATED
