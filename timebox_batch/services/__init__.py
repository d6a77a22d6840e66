"""
timebox_batch.services -- scheduler, retry engine and trigger schedulers.
"""

from timebox_batch.services.retry_engine import RetryEngine, RetryOutcome
from timebox_batch.services.scheduler import ResumableJobScheduler, sanitize_params
from timebox_batch.services.triggers import (
    InMemoryTriggerScheduler,
    PollingTriggerScheduler,
    TriggerScheduler,
)

__all__ = [
    "InMemoryTriggerScheduler",
    "PollingTriggerScheduler",
    "ResumableJobScheduler",
    "RetryEngine",
    "RetryOutcome",
    "TriggerScheduler",
    "sanitize_params",
]
