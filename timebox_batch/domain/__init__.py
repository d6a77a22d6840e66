"""
timebox_batch.domain -- Pure types, key layout and error tables.

ZERO I/O.  All value types are frozen dataclasses.
"""

from timebox_batch.domain.errors import (
    ErrorClassification,
    ErrorKind,
    RetryAction,
    RetryMode,
    RetryStrategy,
    Severity,
    classify_error,
    compute_backoff_ms,
)
from timebox_batch.domain.types import (
    AdvanceResult,
    Checkpoint,
    CombinationOutcome,
    IterationProgress,
    IterationResult,
    JobLifecycleState,
    JobRunResult,
    JobStatus,
    ProgressSnapshot,
    RunOutcome,
    TriggerRecord,
)

__all__ = [
    "AdvanceResult",
    "Checkpoint",
    "CombinationOutcome",
    "ErrorClassification",
    "ErrorKind",
    "IterationProgress",
    "IterationResult",
    "JobLifecycleState",
    "JobRunResult",
    "JobStatus",
    "ProgressSnapshot",
    "RetryAction",
    "RetryMode",
    "RetryStrategy",
    "RunOutcome",
    "Severity",
    "TriggerRecord",
    "classify_error",
    "compute_backoff_ms",
]
