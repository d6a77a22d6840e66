"""
Tests for timebox_batch.services.retry_engine -- RetryEngine.

Covers the per-kind strategies, the three retry modes, remediation hooks,
the attempt and backoff bounds, session statistics and the report.

Sleeping and jitter are injected, so no test waits on real time.
"""

import pytest

from timebox_config.schema import RetryConfig, RetryOverrideDef
from timebox_kernel.exceptions import RetryExhaustedError

from timebox_batch.domain.errors import ErrorKind, RetryAction, RetryMode, Severity
from timebox_batch.services.retry_engine import (
    HOOK_CONVERT_FORMAT,
    HOOK_CREATE_MISSING_RESOURCE,
    HOOK_SPLIT_OPERATION,
    HOOK_USE_DEFAULT_VALUES,
    RetryEngine,
)


class FlakyAction:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, *errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = []

    def __call__(self, params):
        self.calls.append(params)
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def always(error):
    def action(params):
        raise error
    return action


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(clock, sleeps):
    return RetryEngine(clock=clock, sleeper=sleeps.append, random_source=lambda: 0.0)


# =============================================================================
# Success paths
# =============================================================================


class TestSuccess:

    def test_first_attempt_success(self, engine, sleeps):
        outcome = engine.run_with_policy(FlakyAction(), {"x": 1})

        assert outcome.succeeded
        assert outcome.attempts == 1
        assert outcome.value == "ok"
        assert sleeps == []
        assert engine.statistics.total == 0

    def test_quota_recovers_after_long_backoff(self, engine, sleeps):
        action = FlakyAction(
            RuntimeError("Quota exceeded for project"),
            RuntimeError("Quota exceeded for project"),
        )

        outcome = engine.run_with_policy(action, operation_name="fetch")

        assert outcome.succeeded
        assert outcome.attempts == 3
        assert sleeps == [60.0, 120.0]

        stats = engine.statistics
        assert stats.total == 1
        assert stats.recovered == 1
        assert stats.unrecovered == 0
        assert stats.by_kind == {"quota": 1}
        assert stats.events[0].event == "recovered"
        assert stats.events[0].operation_name == "fetch"

    def test_network_error_retries_with_fixed_delay(self, engine, sleeps):
        action = FlakyAction(ConnectionResetError("connection reset by peer"))

        outcome = engine.run_with_policy(action)

        assert outcome.succeeded
        assert outcome.attempts == 2
        assert sleeps == [2.0]

    def test_jitter_scales_delay(self, clock, sleeps):
        engine = RetryEngine(clock=clock, sleeper=sleeps.append, random_source=lambda: 0.5)

        engine.run_with_policy(FlakyAction(RuntimeError("something odd")))

        # unknown kind: 2000 ms * (1 + 0.1 * 0.5)
        assert sleeps == [pytest.approx(2.1)]


# =============================================================================
# Bounds
# =============================================================================


class TestBounds:

    def test_quota_gives_up_after_three_attempts(self, engine, sleeps):
        outcome = engine.run_with_policy(always(RuntimeError("Quota exceeded")))

        assert not outcome.succeeded
        assert outcome.attempts == 3
        assert outcome.error.kind == ErrorKind.QUOTA
        assert outcome.error_type == "RuntimeError"
        assert outcome.suggestions
        assert sleeps == [60.0, 120.0]

    def test_backoff_capped_at_ceiling(self, clock, sleeps):
        config = RetryConfig(
            overrides={
                "unavailable": RetryOverrideDef(
                    initial_delay_ms=200_000, backoff_multiplier=2.0,
                ),
            },
        )
        engine = RetryEngine(config, clock, sleeps.append, lambda: 0.0)

        outcome = engine.run_with_policy(always(RuntimeError("Service Unavailable")))

        assert outcome.attempts == 5
        assert sleeps == [200.0, 300.0, 300.0, 300.0]

    def test_attempt_cap_overrides_strategy(self, clock, sleeps):
        engine = RetryEngine(
            RetryConfig(max_attempts_cap=2), clock, sleeps.append, lambda: 0.0,
        )

        outcome = engine.run_with_policy(always(RuntimeError("Service Unavailable")))

        assert outcome.attempts == 2
        assert len(sleeps) == 1

    def test_override_replaces_strategy_numbers(self, clock):
        engine = RetryEngine(
            RetryConfig(overrides={"quota": RetryOverrideDef(max_attempts=1)}),
            clock=clock,
        )
        strategy = engine.strategy(ErrorKind.QUOTA)
        assert strategy.max_attempts == 1
        assert strategy.action == RetryAction.RETRY_BACKOFF_LONG
        assert strategy.initial_delay_ms == 60_000

    def test_unknown_override_kind_rejected(self):
        with pytest.raises(ValueError, match="bogus"):
            RetryEngine(RetryConfig(overrides={"bogus": RetryOverrideDef(max_attempts=1)}))


# =============================================================================
# Modes and non-backoff strategies
# =============================================================================


class TestModes:

    def test_strict_never_retries(self, engine, sleeps):
        action = FlakyAction(RuntimeError("Service Unavailable"))

        outcome = engine.run_with_policy(action, mode=RetryMode.STRICT)

        assert not outcome.succeeded
        assert outcome.attempts == 1
        assert sleeps == []

    def test_strict_still_records_failure(self, engine):
        engine.run_with_policy(always(RuntimeError("boom")), mode=RetryMode.STRICT)
        assert engine.statistics.unrecovered == 1

    def test_permission_escalates_without_retry(self, engine):
        outcome = engine.run_with_policy(
            always(PermissionError("Permission denied")), mode=RetryMode.RECOVERY,
        )
        assert outcome.attempts == 1
        assert outcome.error.kind == ErrorKind.PERMISSION
        assert outcome.error.severity == Severity.HIGH

    def test_invalid_argument_is_log_only(self, engine):
        outcome = engine.run_with_policy(always(ValueError("invalid argument: id")))
        assert outcome.attempts == 1
        assert outcome.error.kind == ErrorKind.INVALID_ARGUMENT


class TestHooks:

    def test_create_missing_resource_in_recovery(self, engine):
        created = []

        def create(error, params, attempt):
            created.append((type(error).__name__, attempt))
            return {**params, "created": True}

        action = FlakyAction(FileNotFoundError("no such file: report.csv"))

        outcome = engine.run_with_policy(
            action, {"path": "report.csv"},
            mode=RetryMode.RECOVERY,
            context={HOOK_CREATE_MISSING_RESOURCE: create},
        )

        assert outcome.succeeded
        assert outcome.attempts == 2
        assert created == [("FileNotFoundError", 1)]
        assert action.calls[-1] == {"path": "report.csv", "created": True}

    def test_create_missing_resource_not_run_in_lenient(self, engine):
        create_calls = []
        outcome = engine.run_with_policy(
            always(FileNotFoundError("missing")),
            mode=RetryMode.LENIENT,
            context={HOOK_CREATE_MISSING_RESOURCE: lambda *a: create_calls.append(a)},
        )
        assert not outcome.succeeded
        assert outcome.attempts == 1
        assert create_calls == []

    def test_convert_format_runs_in_lenient(self, engine):
        action = FlakyAction(ValueError("malformed row"))
        outcome = engine.run_with_policy(
            action, "1,2",
            context={HOOK_CONVERT_FORMAT: lambda e, p, a: p.split(",")},
        )
        assert outcome.succeeded
        assert action.calls == ["1,2", ["1", "2"]]

    def test_hook_returning_none_keeps_params(self, engine):
        action = FlakyAction(KeyError("amount"))
        outcome = engine.run_with_policy(
            action, {"a": 1},
            context={HOOK_USE_DEFAULT_VALUES: lambda e, p, a: None},
        )
        assert outcome.succeeded
        assert action.calls == [{"a": 1}, {"a": 1}]

    def test_split_operation_in_recovery(self, engine):
        action = FlakyAction(TimeoutError("timed out"))
        outcome = engine.run_with_policy(
            action, list(range(10)),
            mode=RetryMode.RECOVERY,
            context={HOOK_SPLIT_OPERATION: lambda e, p, a: p[: len(p) // 2]},
        )
        assert outcome.succeeded
        assert action.calls[-1] == [0, 1, 2, 3, 4]

    def test_missing_hook_stops(self, engine):
        outcome = engine.run_with_policy(
            always(FileNotFoundError("missing")), mode=RetryMode.RECOVERY,
        )
        assert outcome.attempts == 1

    def test_failing_hook_stops(self, engine):
        def broken(error, params, attempt):
            raise RuntimeError("hook failed too")

        outcome = engine.run_with_policy(
            always(ValueError("malformed")),
            context={HOOK_CONVERT_FORMAT: broken},
        )
        assert not outcome.succeeded
        assert outcome.attempts == 1
        assert outcome.error_message == "malformed"

    def test_hook_bounded_by_strategy_attempts(self, engine):
        calls = []
        outcome = engine.run_with_policy(
            always(ValueError("malformed")),
            context={HOOK_CONVERT_FORMAT: lambda e, p, a: calls.append(a)},
        )
        assert outcome.attempts == 2
        assert calls == [1]


# =============================================================================
# Convenience wrappers
# =============================================================================


class TestWrappers:

    def test_run_with_retry_returns_value(self, engine):
        assert engine.run_with_retry(FlakyAction(value=42)) == 42

    def test_run_with_retry_raises_when_exhausted(self, engine):
        with pytest.raises(RetryExhaustedError) as exc_info:
            engine.run_with_retry(
                always(RuntimeError("Quota exceeded")), operation_name="sync",
            )
        err = exc_info.value
        assert err.attempts == 3
        assert err.kind == "quota"
        assert err.operation == "sync"
        assert err.suggestions

    def test_run_with_fallback_returns_default(self, engine):
        assert engine.run_with_fallback(
            always(PermissionError("forbidden")), default="fallback",
        ) == "fallback"

    def test_wrap_labels_step_by_combination(self, engine):
        def action(combination, params):
            raise PermissionError("forbidden")

        wrapped = engine.wrap(action, operation_name="export")

        with pytest.raises(RetryExhaustedError):
            wrapped({"region": "eu", "month": 3}, {})
        assert engine.statistics.by_step == {"region=eu, month=3": 1}
        assert wrapped.__name__ == "export"

    def test_wrap_passes_through_value(self, engine):
        wrapped = engine.wrap(lambda c, p: c["n"] * p["k"])
        assert wrapped({"n": 3}, {"k": 2}) == 6


# =============================================================================
# Analysis and reporting
# =============================================================================


class TestAnalysis:

    def test_analyze(self, engine):
        analysis = engine.analyze(PermissionError("Permission denied"))

        assert analysis.classification.kind == ErrorKind.PERMISSION
        assert analysis.strategy.action == RetryAction.ESCALATE
        assert analysis.error_type == "PermissionError"
        assert analysis.severity_rank == 3
        assert analysis.suggestions

    def test_analyze_plain_text(self, engine):
        analysis = engine.analyze("Service Unavailable")
        assert analysis.classification.kind == ErrorKind.UNAVAILABLE
        assert analysis.error_type == "str"

    def test_call_site_points_at_caller(self, engine):
        engine.run_with_policy(always(PermissionError("forbidden")))

        (site,) = engine.statistics.by_call_site
        assert "test_call_site_points_at_caller" in site
        assert "test_retry_engine.py" in site

    def test_counters_accumulate_and_reset(self, engine):
        engine.run_with_policy(always(PermissionError("forbidden")))
        engine.run_with_policy(FlakyAction(RuntimeError("Service Unavailable")))
        engine.run_with_policy(always(RuntimeError("Quota exceeded")))

        summary = engine.summary()
        assert summary["total"] == 3
        assert summary["recovered"] == 1
        assert summary["unrecovered"] == 2
        assert summary["recovery_rate"] == 33.33
        assert summary["by_kind"] == {"permission": 1, "unavailable": 1, "quota": 1}
        assert len(summary["events"]) == 3

        engine.reset_statistics()
        assert engine.statistics.total == 0
        assert engine.summary()["events"] == []

    def test_report_when_empty(self, engine):
        report = engine.render_report()
        assert "ERROR ANALYSIS REPORT" in report
        assert "No errors recorded." in report

    def test_report_sections(self, engine):
        engine.run_with_policy(
            always(PermissionError("forbidden")), operation_name="share", step="s1",
        )

        report = engine.render_report()
        assert "Total events: 1" in report
        assert "By kind:" in report
        assert "permission: 1" in report
        assert "s1: 1" in report
        assert "Check sharing permissions on the target file or folder" in report
        assert "FAILURE share [permission/high]" in report

    def test_report_without_details(self, engine):
        engine.run_with_policy(always(PermissionError("forbidden")))
        assert "Events:" not in engine.render_report(include_details=False)
