"""
timebox_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_runtime_config()`` is the one way the runtime obtains scheduler,
    retry and logging settings.  Resolution order: explicit ``path``
    argument, then the ``TIMEBOX_CONFIG`` environment variable, then
    built-in defaults.

Failure modes:
    - ``FileNotFoundError`` -- explicit or environment path does not exist.
    - ``ValueError`` -- schema violations in the YAML document.
"""

from __future__ import annotations

import os
from pathlib import Path

from timebox_config.loader import load_runtime_config, parse_runtime_config
from timebox_config.schema import (
    LoggingConfig,
    RetryConfig,
    RetryOverrideDef,
    RuntimeConfig,
    SchedulerConfig,
)
from timebox_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "TIMEBOX_CONFIG"


def get_runtime_config(path: str | Path | None = None) -> RuntimeConfig:
    """Resolve the active runtime configuration."""
    source = path or os.environ.get(CONFIG_ENV_VAR)
    if not source:
        return RuntimeConfig()

    config = load_runtime_config(Path(source))
    _logger.info(
        "runtime_config_loaded",
        extra={
            "source": str(source),
            "budget_seconds": config.scheduler.budget_seconds,
            "resume_delay_seconds": config.scheduler.resume_delay_seconds,
            "retry_overrides": sorted(config.retry.overrides),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "LoggingConfig",
    "RetryConfig",
    "RetryOverrideDef",
    "RuntimeConfig",
    "SchedulerConfig",
    "get_runtime_config",
    "load_runtime_config",
    "parse_runtime_config",
]
