"""
Configuration Loader (``timebox_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into the frozen dataclasses of
``timebox_config.schema``.  Runtime callers go through
``timebox_config.get_runtime_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types or out-of-range numbers  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from timebox_config.schema import (
    DEFAULT_COLLABORATOR_KEYS,
    MAX_BACKOFF_SECONDS,
    MAX_JITTER_RATIO,
    LoggingConfig,
    RetryConfig,
    RetryOverrideDef,
    RuntimeConfig,
    SchedulerConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def _positive(value: Any, name: str, allow_zero: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be positive, got {value!r}")
    return value


def _at_most(value: float, limit: float, name: str) -> float:
    if value > limit:
        raise ValueError(f"{name} must be at most {limit}, got {value!r}")
    return value


def parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    """Parse the ``scheduler:`` section."""
    keys = data.get("collaborator_keys", DEFAULT_COLLABORATOR_KEYS)
    if isinstance(keys, str) or not all(isinstance(k, str) for k in keys):
        raise ValueError("scheduler.collaborator_keys must be a list of strings")

    return SchedulerConfig(
        budget_seconds=_positive(
            data.get("budget_seconds", SchedulerConfig.budget_seconds),
            "scheduler.budget_seconds",
        ),
        resume_delay_seconds=_positive(
            data.get("resume_delay_seconds", SchedulerConfig.resume_delay_seconds),
            "scheduler.resume_delay_seconds",
            allow_zero=True,
        ),
        resume_entry_point=str(
            data.get("resume_entry_point", SchedulerConfig.resume_entry_point)
        ),
        collaborator_keys=tuple(keys),
    )


def parse_retry_override(kind: str, data: dict[str, Any]) -> RetryOverrideDef:
    """Parse one entry of ``retry.overrides``."""
    if not isinstance(data, dict):
        raise ValueError(f"retry.overrides.{kind} must be a mapping")
    max_attempts = data.get("max_attempts")
    if max_attempts is not None and (
        not isinstance(max_attempts, int) or max_attempts < 1
    ):
        raise ValueError(
            f"retry.overrides.{kind}.max_attempts must be an integer >= 1"
        )
    initial = data.get("initial_delay_ms")
    multiplier = data.get("backoff_multiplier")
    return RetryOverrideDef(
        max_attempts=max_attempts,
        initial_delay_ms=(
            int(_positive(initial, f"retry.overrides.{kind}.initial_delay_ms", True))
            if initial is not None
            else None
        ),
        backoff_multiplier=(
            float(_positive(multiplier, f"retry.overrides.{kind}.backoff_multiplier", True))
            if multiplier is not None
            else None
        ),
    )


def parse_retry(data: dict[str, Any]) -> RetryConfig:
    """Parse the ``retry:`` section."""
    cap = data.get("max_attempts_cap", RetryConfig.max_attempts_cap)
    if not isinstance(cap, int) or cap < 1:
        raise ValueError("retry.max_attempts_cap must be an integer >= 1")

    jitter = _at_most(
        _positive(
            data.get("jitter_ratio", RetryConfig.jitter_ratio),
            "retry.jitter_ratio",
            allow_zero=True,
        ),
        MAX_JITTER_RATIO,
        "retry.jitter_ratio",
    )
    max_backoff = _at_most(
        _positive(
            data.get("max_backoff_seconds", RetryConfig.max_backoff_seconds),
            "retry.max_backoff_seconds",
        ),
        MAX_BACKOFF_SECONDS,
        "retry.max_backoff_seconds",
    )

    overrides_raw = data.get("overrides") or {}
    if not isinstance(overrides_raw, dict):
        raise ValueError("retry.overrides must be a mapping of kind -> settings")

    return RetryConfig(
        max_attempts_cap=cap,
        max_backoff_seconds=max_backoff,
        jitter_ratio=jitter,
        overrides={
            str(kind).lower(): parse_retry_override(str(kind), value)
            for kind, value in overrides_raw.items()
        },
    )


def parse_runtime_config(data: dict[str, Any]) -> RuntimeConfig:
    """Parse a full configuration document."""
    logging_data = data.get("logging") or {}
    return RuntimeConfig(
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        retry=parse_retry(data.get("retry") or {}),
        logging=LoggingConfig(level=str(logging_data.get("level", "INFO")).upper()),
    )


def load_runtime_config(path: Path) -> RuntimeConfig:
    """Load and parse a configuration file."""
    return parse_runtime_config(load_yaml_file(path))
