"""
Configuration schema (``timebox_config.schema``).

Frozen dataclasses describing runtime configuration.  Parsed from YAML by
``timebox_config.loader``; defaults reproduce the production host limits
(25 minute invocation budget, 60 second resumption delay, 5 minute backoff
ceiling).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


# Host ceilings; configuration may lower these but never raise them.
MAX_BACKOFF_SECONDS: float = 5 * 60
MAX_JITTER_RATIO: float = 0.1

DEFAULT_COLLABORATOR_KEYS: tuple[str, ...] = (
    "store",
    "session",
    "db",
    "logger",
    "cache",
    "clock",
)


@dataclass(frozen=True)
class SchedulerConfig:
    """Time-boxing and resumption settings for ``ResumableJobScheduler``."""

    budget_seconds: float = 25 * 60
    resume_delay_seconds: float = 60
    resume_entry_point: str = "resume_job"
    collaborator_keys: tuple[str, ...] = DEFAULT_COLLABORATOR_KEYS

    @property
    def budget(self) -> timedelta:
        return timedelta(seconds=self.budget_seconds)

    @property
    def resume_delay(self) -> timedelta:
        return timedelta(seconds=self.resume_delay_seconds)

    @property
    def resume_delay_ms(self) -> int:
        return int(self.resume_delay_seconds * 1000)


@dataclass(frozen=True)
class RetryOverrideDef:
    """Replacement numbers for one error kind's retry strategy."""

    max_attempts: int | None = None
    initial_delay_ms: int | None = None
    backoff_multiplier: float | None = None


@dataclass(frozen=True)
class RetryConfig:
    """Settings for ``RetryEngine``.

    ``overrides`` is keyed by error-kind value (e.g. ``"quota"``).
    """

    max_attempts_cap: int = 5
    max_backoff_seconds: float = MAX_BACKOFF_SECONDS
    jitter_ratio: float = MAX_JITTER_RATIO
    overrides: dict[str, RetryOverrideDef] = field(default_factory=dict)

    @property
    def max_backoff_ms(self) -> int:
        return int(self.max_backoff_seconds * 1000)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class RuntimeConfig:
    """Root configuration object returned by ``get_runtime_config()``."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
