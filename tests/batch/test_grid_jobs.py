"""
Tests for timebox_batch.jobs.grid -- parameter-grid jobs.
"""

import pytest

from timebox_kernel.exceptions import InvalidIterationSpecError, RetryExhaustedError

from timebox_batch.domain.errors import RetryMode
from timebox_batch.jobs import GRID_PARAM, grid_job
from timebox_batch.services.retry_engine import RetryEngine


@pytest.fixture
def engine(clock):
    return RetryEngine(clock=clock, sleeper=lambda seconds: None, random_source=lambda: 0.0)


class TestGridJob:

    def test_iterates_grid_from_params(self, scheduler, registry):
        registry.register(grid_job(
            "sweep", ["region", "month"],
            action=lambda c, p: f"{c['region']}/{c['month']}",
        ))

        result = scheduler.execute(
            "sweep-1", "sweep", {GRID_PARAM: {"region": ["eu", "us"], "month": [1, 2]}},
        )

        assert result.completed
        assert [o.outcome for o in result.result.outcomes] == [
            "eu/1", "eu/2", "us/1", "us/2",
        ]

    def test_missing_level_fails_job(self, scheduler, registry):
        registry.register(grid_job("sweep", ["region"], action=lambda c, p: None))

        with pytest.raises(KeyError):
            scheduler.execute("sweep-1", "sweep", {GRID_PARAM: {}})

    def test_requires_level_names(self):
        with pytest.raises(InvalidIterationSpecError):
            grid_job("sweep", [], action=lambda c, p: None)

    def test_grid_survives_suspension(self, scheduler, registry, clock):
        def action(combination, params):
            clock.advance(1)
            return combination["x"]

        registry.register(grid_job("sweep", ["x"], action=action))
        scheduler.set_budget(2)

        first = scheduler.execute("sweep-1", "sweep", {GRID_PARAM: {"x": [10, 20, 30]}})
        assert first.suspended

        result = scheduler.resume("sweep-1")
        assert result.completed
        assert [o.outcome for o in result.result.outcomes] == [10, 20, 30]


class TestGridJobWithRetries:

    def test_transient_errors_recovered(self, scheduler, registry, engine):
        failures = {"eu": 1}

        def action(combination, params):
            region = combination["region"]
            if failures.get(region):
                failures[region] -= 1
                raise RuntimeError("Service Unavailable")
            return region

        registry.register(grid_job(
            "sweep", ["region"], action=action, retry_engine=engine,
        ))

        result = scheduler.execute("sweep-1", "sweep", {GRID_PARAM: {"region": ["eu", "us"]}})

        assert result.result.failed_count == 0
        assert engine.statistics.recovered == 1
        assert engine.statistics.by_step == {"region=eu": 1}

    def test_exhausted_retry_recorded_against_combination(
        self, scheduler, registry, engine,
    ):
        def action(combination, params):
            if combination["region"] == "us":
                raise PermissionError("Permission denied")
            return combination["region"]

        errors = []
        registry.register(grid_job(
            "sweep", ["region"],
            action=action,
            on_error=lambda exc, phase, combination: errors.append((phase, combination)),
            retry_engine=engine,
            retry_mode=RetryMode.STRICT,
        ))

        result = scheduler.execute(
            "sweep-1", "sweep", {GRID_PARAM: {"region": ["eu", "us", "apac"]}},
        )

        assert result.completed
        (failed,) = [o for o in result.result.outcomes if o.failed]
        assert failed.combination == {"region": "us"}
        assert failed.error_type == RetryExhaustedError.__name__
        assert errors == [("execution", {"region": "us"})]
        assert engine.statistics.unrecovered == 1
