"""
RetryEngine -- classification-driven bounded retries with backoff.

Contract:
    ``run_with_policy(action, params, ...)`` calls ``action(params)`` until it
    succeeds, the classified error's strategy says stop, or the attempt
    bound is reached.  It NEVER raises for the action's errors: it returns a
    ``RetryOutcome`` carrying the classification, attempt count and
    remediation suggestions, and the caller decides what a failure means.

Architecture: timebox_batch/services.  Pure tables live in
    timebox_batch.domain.errors; this module adds I/O (sleeping, logging)
    and the per-session statistics.

Invariants enforced:
    - Attempts never exceed ``min(strategy.max_attempts, max_attempts_cap)``.
    - Backoff never exceeds ``max_backoff_ms`` (5 minutes by default).
    - STRICT mode never auto-retries.
    - Counters change only on a "recovered" or "failure" event; they are
      reset only by ``reset_statistics()``.

Failure modes:
    - ``ValueError`` at construction for a retry override naming an unknown
      error kind.
    - ``RetryExhaustedError`` from ``run_with_retry()`` / ``wrap()`` only.
"""

from __future__ import annotations

import inspect
import os
import random
import time
from collections import Counter
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Mapping

from timebox_config.schema import RetryConfig
from timebox_kernel.domain.clock import Clock, SystemClock
from timebox_kernel.exceptions import RetryExhaustedError
from timebox_kernel.logging_config import get_logger

from timebox_batch.domain.errors import (
    ErrorClassification,
    ErrorKind,
    RetryAction,
    RetryMode,
    RetryStrategy,
    classify_error,
    compute_backoff_ms,
    strategy_for,
    suggestions_for,
)

logger = get_logger("batch.retry")

# Remediation hook names looked up in ``context``.  A hook is called as
# ``hook(error, params, attempt)`` and returns replacement params, or None to
# retry with the params unchanged.
HOOK_CREATE_MISSING_RESOURCE = "create_missing_resource"
HOOK_CONVERT_FORMAT = "convert_format"
HOOK_USE_DEFAULT_VALUES = "use_default_values"
HOOK_SPLIT_OPERATION = "split_operation"

_BACKOFF_ACTIONS = frozenset({
    RetryAction.RETRY_BACKOFF,
    RetryAction.RETRY_BACKOFF_LONG,
    RetryAction.RETRY_IMMEDIATE,
})

# action -> (hook name, modes allowed to run it)
_HOOK_ACTIONS: dict[RetryAction, tuple[str, frozenset[RetryMode]]] = {
    RetryAction.CREATE_MISSING_RESOURCE: (
        HOOK_CREATE_MISSING_RESOURCE, frozenset({RetryMode.RECOVERY}),
    ),
    RetryAction.SPLIT_OPERATION: (
        HOOK_SPLIT_OPERATION, frozenset({RetryMode.RECOVERY}),
    ),
    RetryAction.CONVERT_FORMAT: (
        HOOK_CONVERT_FORMAT, frozenset({RetryMode.LENIENT, RetryMode.RECOVERY}),
    ),
    RetryAction.USE_DEFAULT: (
        HOOK_USE_DEFAULT_VALUES, frozenset({RetryMode.LENIENT, RetryMode.RECOVERY}),
    ),
}

EVENT_RECOVERED = "recovered"
EVENT_FAILURE = "failure"


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class RetryOutcome:
    """Structured result of ``run_with_policy()``."""

    succeeded: bool
    operation_name: str
    attempts: int
    value: Any = None
    error: ErrorClassification | None = None
    error_message: str | None = None
    error_type: str | None = None
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ErrorAnalysis:
    """What ``analyze()`` reports about a single error."""

    classification: ErrorClassification
    strategy: RetryStrategy
    suggestions: tuple[str, ...]
    error_type: str

    @property
    def severity_rank(self) -> int:
        return self.classification.severity.rank


@dataclass(frozen=True)
class RetryEvent:
    timestamp: str
    event: str  # "recovered" | "failure"
    operation_name: str
    step: str | None
    call_site: str
    kind: str
    severity: str
    attempts: int
    message: str


@dataclass
class RetryStatistics:
    """Per-session counters.  Mutable; owned by one RetryEngine."""

    total: int = 0
    recovered: int = 0
    unrecovered: int = 0
    by_kind: Counter = field(default_factory=Counter)
    by_call_site: Counter = field(default_factory=Counter)
    by_step: Counter = field(default_factory=Counter)
    events: list[RetryEvent] = field(default_factory=list)

    @property
    def recovery_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.recovered * 100.0 / self.total, 2)


# =============================================================================
# Engine
# =============================================================================


class RetryEngine:
    """Runs actions under the classification-driven retry policy.

    Contract:
        - Collaborators (clock, sleeper, random source) are injected so
          tests never sleep.
        - Statistics accumulate across calls until ``reset_statistics()``.

    Non-goals:
        - Does NOT know about the scheduler's budget; a long backoff simply
          consumes budget and the job suspends sooner.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        clock: Clock | None = None,
        sleeper: Callable[[float], None] | None = None,
        random_source: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or RetryConfig()
        self._clock = clock or SystemClock()
        self._sleep = sleeper or time.sleep
        self._random = random_source or random.random
        self._strategies = self._resolve_strategies(self._config)
        self._stats = RetryStatistics()

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def classify(self, error: BaseException | str) -> ErrorClassification:
        return classify_error(error)

    def strategy(self, kind: ErrorKind) -> RetryStrategy:
        return self._strategies[kind]

    def analyze(self, error: BaseException | str) -> ErrorAnalysis:
        """Classification, effective strategy and suggestions for ``error``."""
        classification = self.classify(error)
        return ErrorAnalysis(
            classification=classification,
            strategy=self.strategy(classification.kind),
            suggestions=suggestions_for(classification.kind),
            error_type="str" if isinstance(error, str) else type(error).__name__,
        )

    def backoff_ms(self, attempt: int, strategy: RetryStrategy) -> float:
        return compute_backoff_ms(
            attempt,
            strategy.initial_delay_ms,
            strategy.backoff_multiplier,
            jitter_fraction=self._random(),
            jitter_ratio=self._config.jitter_ratio,
            cap_ms=self._config.max_backoff_ms,
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run_with_policy(
        self,
        action: Callable[[Any], Any],
        params: Any = None,
        *,
        operation_name: str | None = None,
        step: str | None = None,
        mode: RetryMode = RetryMode.LENIENT,
        context: Mapping[str, Callable[..., Any]] | None = None,
    ) -> RetryOutcome:
        """Call ``action(params)`` under the retry policy."""
        call_site = _caller_site()
        operation = operation_name or getattr(action, "__name__", "operation")
        hooks = context or {}
        attempt = 0
        last_failure: ErrorClassification | None = None
        last_message = ""

        while True:
            attempt += 1
            try:
                value = action(params)
            except Exception as exc:
                classification = self.classify(exc)
                last_failure = classification
                last_message = str(exc)
                strategy = self.strategy(classification.kind)
                limit = min(strategy.max_attempts, self._config.max_attempts_cap)

                logger.warning(
                    "retry_attempt_failed",
                    extra={
                        "operation": operation,
                        "step": step,
                        "attempt": attempt,
                        "max_attempts": limit,
                        "kind": classification.kind.value,
                        "rule": classification.rule,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )

                proceed = False
                if attempt < limit:
                    proceed, params = self._decide(
                        strategy, classification, mode, hooks, exc, params, attempt,
                    )
                if not proceed:
                    return self._failure(
                        exc, classification, operation, step, call_site, attempt,
                    )

                delay_ms = (
                    self.backoff_ms(attempt, strategy)
                    if strategy.action in _BACKOFF_ACTIONS else 0.0
                )
                if delay_ms > 0:
                    self._sleep(delay_ms / 1000.0)
                continue

            if attempt > 1 and last_failure is not None:
                self._record(
                    EVENT_RECOVERED, operation, step, call_site,
                    last_failure.kind.value, last_failure.severity.value,
                    attempt, last_message,
                )
                logger.info(
                    "retry_recovered",
                    extra={"operation": operation, "step": step, "attempts": attempt},
                )
            return RetryOutcome(
                succeeded=True,
                operation_name=operation,
                attempts=attempt,
                value=value,
            )

    def run_with_retry(
        self,
        action: Callable[[Any], Any],
        params: Any = None,
        *,
        operation_name: str | None = None,
        step: str | None = None,
        context: Mapping[str, Callable[..., Any]] | None = None,
    ) -> Any:
        """Recovery-mode retry that raises RetryExhaustedError on failure."""
        outcome = self.run_with_policy(
            action, params,
            operation_name=operation_name,
            step=step,
            mode=RetryMode.RECOVERY,
            context=context,
        )
        if outcome.succeeded:
            return outcome.value
        raise _exhausted(outcome)

    def run_with_fallback(
        self,
        action: Callable[[Any], Any],
        params: Any = None,
        default: Any = None,
        *,
        operation_name: str | None = None,
        step: str | None = None,
        context: Mapping[str, Callable[..., Any]] | None = None,
    ) -> Any:
        """Lenient-mode retry returning ``default`` on failure."""
        outcome = self.run_with_policy(
            action, params,
            operation_name=operation_name,
            step=step,
            mode=RetryMode.LENIENT,
            context=context,
        )
        return outcome.value if outcome.succeeded else default

    def wrap(
        self,
        action: Callable[[dict[str, Any], dict[str, Any]], Any],
        *,
        operation_name: str | None = None,
        mode: RetryMode = RetryMode.LENIENT,
        context: Mapping[str, Callable[..., Any]] | None = None,
    ) -> Callable[[dict[str, Any], dict[str, Any]], Any]:
        """Wrap a per-combination action so each call runs under the policy.

        The wrapped action raises RetryExhaustedError when the policy gives
        up, which the stepper records against that combination.
        """
        operation = operation_name or getattr(action, "__name__", "combination")

        def wrapped(combination: dict[str, Any], params: dict[str, Any]) -> Any:
            outcome = self.run_with_policy(
                lambda p: action(combination, p),
                params,
                operation_name=operation,
                step=_step_label(combination),
                mode=mode,
                context=context,
            )
            if outcome.succeeded:
                return outcome.value
            raise _exhausted(outcome)

        wrapped.__name__ = operation
        return wrapped

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    @property
    def statistics(self) -> RetryStatistics:
        return self._stats

    def summary(self) -> dict[str, Any]:
        stats = self._stats
        return {
            "total": stats.total,
            "recovered": stats.recovered,
            "unrecovered": stats.unrecovered,
            "recovery_rate": stats.recovery_rate,
            "by_kind": dict(stats.by_kind),
            "by_call_site": dict(stats.by_call_site),
            "by_step": dict(stats.by_step),
            "events": [asdict(e) for e in stats.events],
        }

    def reset_statistics(self) -> None:
        self._stats = RetryStatistics()
        logger.info("retry_statistics_reset")

    def render_report(self, include_details: bool = True) -> str:
        """Human-readable analysis of the session's retry events."""
        stats = self._stats
        lines = [
            "ERROR ANALYSIS REPORT",
            "=" * 40,
            f"Total events: {stats.total}",
            f"Recovered: {stats.recovered}",
            f"Unrecovered: {stats.unrecovered}",
            f"Recovery rate: {stats.recovery_rate:.2f}%",
        ]
        if stats.total == 0:
            lines.append("")
            lines.append("No errors recorded.")
            return "\n".join(lines)

        for title, counter in (
            ("By kind", stats.by_kind),
            ("By call site", stats.by_call_site),
            ("By step", stats.by_step),
        ):
            lines.append("")
            lines.append(f"{title}:")
            for name, count in counter.most_common():
                lines.append(f"  {name}: {count}")

        lines.append("")
        lines.append("Suggestions:")
        for kind_value, _count in stats.by_kind.most_common():
            kind = ErrorKind(kind_value)
            lines.append(f"  [{kind_value}]")
            for suggestion in suggestions_for(kind):
                lines.append(f"    - {suggestion}")

        if include_details:
            lines.append("")
            lines.append("Events:")
            for event in stats.events:
                lines.append(
                    f"  {event.timestamp} {event.event.upper()} "
                    f"{event.operation_name} [{event.kind}/{event.severity}] "
                    f"attempts={event.attempts} at {event.call_site}: {event.message}"
                )
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _decide(
        self,
        strategy: RetryStrategy,
        classification: ErrorClassification,
        mode: RetryMode,
        hooks: Mapping[str, Callable[..., Any]],
        exc: Exception,
        params: Any,
        attempt: int,
    ) -> tuple[bool, Any]:
        """Return (continue?, params for the next attempt)."""

        if mode == RetryMode.STRICT:
            return False, params

        if strategy.action in _BACKOFF_ACTIONS:
            return classification.retryable, params

        if strategy.action == RetryAction.ESCALATE:
            logger.error(
                "retry_escalated",
                extra={
                    "kind": classification.kind.value,
                    "severity": classification.severity.value,
                    "error": str(exc),
                },
            )
            return False, params

        if strategy.action == RetryAction.LOG_ONLY:
            logger.error(
                "retry_not_attempted",
                extra={"kind": classification.kind.value, "error": str(exc)},
            )
            return False, params

        hook_name, allowed_modes = _HOOK_ACTIONS[strategy.action]
        hook = hooks.get(hook_name)
        if mode not in allowed_modes or hook is None:
            return False, params

        try:
            replacement = hook(exc, params, attempt)
        except Exception:
            logger.exception("retry_hook_failed", extra={"hook": hook_name})
            return False, params

        logger.info("retry_hook_applied", extra={"hook": hook_name, "attempt": attempt})
        return True, params if replacement is None else replacement

    def _failure(
        self,
        exc: Exception,
        classification: ErrorClassification,
        operation: str,
        step: str | None,
        call_site: str,
        attempts: int,
    ) -> RetryOutcome:
        suggestions = suggestions_for(classification.kind)
        self._record(
            EVENT_FAILURE, operation, step, call_site,
            classification.kind.value, classification.severity.value,
            attempts, str(exc),
        )
        logger.error(
            "retry_exhausted",
            extra={
                "operation": operation,
                "step": step,
                "attempts": attempts,
                "kind": classification.kind.value,
                "severity": classification.severity.value,
                "retryable": classification.retryable,
                "error": str(exc),
            },
        )
        return RetryOutcome(
            succeeded=False,
            operation_name=operation,
            attempts=attempts,
            error=classification,
            error_message=str(exc),
            error_type=type(exc).__name__,
            suggestions=suggestions,
        )

    def _record(
        self,
        event: str,
        operation: str,
        step: str | None,
        call_site: str,
        kind: str,
        severity: str,
        attempts: int,
        message: str,
    ) -> None:
        stats = self._stats
        stats.total += 1
        if event == EVENT_RECOVERED:
            stats.recovered += 1
        else:
            stats.unrecovered += 1
        stats.by_kind[kind] += 1
        stats.by_call_site[call_site] += 1
        stats.by_step[step or "unspecified"] += 1
        stats.events.append(RetryEvent(
            timestamp=self._clock.now().isoformat(),
            event=event,
            operation_name=operation,
            step=step,
            call_site=call_site,
            kind=kind,
            severity=severity,
            attempts=attempts,
            message=message,
        ))

    @staticmethod
    def _resolve_strategies(config: RetryConfig) -> dict[ErrorKind, RetryStrategy]:
        strategies = {kind: strategy_for(kind) for kind in ErrorKind}
        for kind_value, override in config.overrides.items():
            try:
                kind = ErrorKind(kind_value)
            except ValueError:
                raise ValueError(
                    f"Unknown error kind in retry overrides: '{kind_value}'"
                ) from None
            changes = {
                name: value
                for name, value in (
                    ("max_attempts", override.max_attempts),
                    ("initial_delay_ms", override.initial_delay_ms),
                    ("backoff_multiplier", override.backoff_multiplier),
                )
                if value is not None
            }
            strategies[kind] = replace(strategies[kind], **changes)
        return strategies


def _exhausted(outcome: RetryOutcome) -> RetryExhaustedError:
    kind = outcome.error.kind.value if outcome.error else ErrorKind.UNKNOWN.value
    return RetryExhaustedError(
        operation=outcome.operation_name,
        attempts=outcome.attempts,
        kind=kind,
        message=outcome.error_message or "",
        suggestions=outcome.suggestions,
    )


def _step_label(combination: Mapping[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in combination.items())


def _caller_site() -> str:
    """``function (file:line)`` of the first frame outside this module."""
    frame = inspect.currentframe()
    try:
        while frame is not None and frame.f_code.co_filename == __file__:
            frame = frame.f_back
        if frame is None:
            return "unknown"
        code = frame.f_code
        return f"{code.co_name} ({os.path.basename(code.co_filename)}:{frame.f_lineno})"
    finally:
        del frame
