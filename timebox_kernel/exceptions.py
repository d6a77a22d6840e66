"""
Typed Exception Hierarchy for the timebox packages.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the scheduler need to tell a misconfigured job (never worth
resuming) from a corrupt checkpoint (needs operator reset) from an exhausted
retry (the action itself keeps failing).  Matching on message text for our
OWN errors would be fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, log-safe)
  3. Exceptions carry structured DATA (not just a message string)

Third-party failures are the exception to the rule: their text is all we
get, which is why ``timebox_batch.domain.errors`` classifies by pattern.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TimeboxError (base)
    |
    +-- JobError
    |   +-- JobTypeNotRegisteredError
    |   +-- JobNotFoundError
    |   +-- JobAlreadyRunningError
    |
    +-- IterationError
    |   +-- InvalidIterationSpecError
    |   +-- CheckpointMismatchError
    |
    +-- StoreError
    |   +-- StateDecodeError
    |
    +-- RetryError
        +-- RetryExhaustedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                      | When Raised
-----------|---------------------------|----------------------------------------
Job        | JOB_TYPE_NOT_REGISTERED   | execute() with a type nobody registered
           | JOB_NOT_FOUND             | resume() of a name with no persisted type
           | JOB_ALREADY_RUNNING       | caller asked to raise instead of "busy"
-----------|---------------------------|----------------------------------------
Iteration  | INVALID_ITERATION_SPEC    | spec without levels or action
           | CHECKPOINT_MISMATCH       | restored cursor outside a level's range
-----------|---------------------------|----------------------------------------
Store      | STATE_DECODE_ERROR        | persisted value is not valid JSON state
-----------|---------------------------|----------------------------------------
Retry      | RETRY_EXHAUSTED           | run_with_retry() gave up
"""

from __future__ import annotations

from typing import Sequence


class TimeboxError(Exception):
    """
    Base exception for all timebox errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "TIMEBOX_ERROR"


# =============================================================================
# Job lifecycle
# =============================================================================


class JobError(TimeboxError):
    """Base exception for job lifecycle errors."""

    code: str = "JOB_ERROR"


class JobTypeNotRegisteredError(JobError):
    """No stepper builder is registered for the requested job type."""

    code: str = "JOB_TYPE_NOT_REGISTERED"

    def __init__(self, job_type: str, available: Sequence[str] = ()):
        self.job_type = job_type
        self.available = list(available)
        super().__init__(
            f"No job type registered as '{job_type}'. "
            f"Available: {sorted(self.available)}"
        )


class JobNotFoundError(JobError):
    """A job name has no persisted state to resume from."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"No persisted job type for job '{job_name}'")


class JobAlreadyRunningError(JobError):
    """Another invocation holds the Running state for this job name."""

    code: str = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"Job '{job_name}' is already running")


# =============================================================================
# Iteration
# =============================================================================


class IterationError(TimeboxError):
    """Base exception for combinatorial iteration errors."""

    code: str = "ITERATION_ERROR"


class InvalidIterationSpecError(IterationError):
    """The iteration spec is missing levels or an action."""

    code: str = "INVALID_ITERATION_SPEC"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid iteration spec: {reason}")


class CheckpointMismatchError(IterationError):
    """A restored cursor no longer fits the recomputed candidate list."""

    code: str = "CHECKPOINT_MISMATCH"

    def __init__(self, level_name: str, cursor: int | None, size: int):
        self.level_name = level_name
        self.cursor = cursor
        self.size = size
        if cursor is None:
            message = f"Checkpoint has no cursor for level '{level_name}'"
        else:
            message = (
                f"Checkpoint cursor {cursor} for level '{level_name}' is out of "
                f"range for {size} candidate(s)"
            )
        super().__init__(message)


# =============================================================================
# Persisted store
# =============================================================================


class StoreError(TimeboxError):
    """Base exception for persisted state errors."""

    code: str = "STORE_ERROR"


class StateDecodeError(StoreError):
    """A persisted value could not be decoded."""

    code: str = "STATE_DECODE_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Cannot decode persisted state at '{key}': {reason}")


# =============================================================================
# Retry
# =============================================================================


class RetryError(TimeboxError):
    """Base exception for retry engine errors."""

    code: str = "RETRY_ERROR"


class RetryExhaustedError(RetryError):
    """An operation kept failing after its allowed attempts."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(
        self,
        operation: str,
        attempts: int,
        kind: str,
        message: str,
        suggestions: Sequence[str] = (),
    ):
        self.operation = operation
        self.attempts = attempts
        self.kind = kind
        self.suggestions = list(suggestions)
        super().__init__(
            f"{operation} failed after {attempts} attempt(s) [{kind}]: {message}"
        )
