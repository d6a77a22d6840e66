"""
Property-based tests for the iteration stepper and backoff arithmetic.

- Odometer order matches itertools.product for any level sizes.
- Pausing anywhere and resuming from a JSON-serialized checkpoint yields
  the same outcomes as an uninterrupted run.
- Backoff never exceeds its ceiling and is never negative.
"""

import itertools
import json

import pytest

hypothesis = pytest.importorskip("hypothesis")

from hypothesis import HealthCheck, given, settings  # noqa: E402
from hypothesis import strategies as st  # noqa: E402

from timebox_kernel.domain.clock import DeterministicClock  # noqa: E402

from timebox_batch.domain.errors import MAX_BACKOFF_MS, compute_backoff_ms  # noqa: E402
from timebox_batch.domain.types import Checkpoint, IterationResult  # noqa: E402
from timebox_batch.steppers.iteration import (  # noqa: E402
    RESUME_CHECKPOINT_KEY,
    CombinatorialStepper,
    IterationSpec,
    Level,
)

SETTINGS = settings(
    max_examples=75,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

level_sizes = st.lists(st.integers(min_value=0, max_value=4), min_size=1, max_size=3)


def _spec(sizes):
    return IterationSpec(
        levels=tuple(
            Level(f"l{i}", lambda params, resume, n=size: list(range(n)))
            for i, size in enumerate(sizes)
        ),
        action=lambda combination, params: "-".join(
            str(v) for v in combination.values()
        ),
    )


def _drain(stepper, limit=None):
    """Advance until done, or ``limit`` progress steps; return the last step."""
    step = None
    count = 0
    while limit is None or count < limit:
        step = stepper.advance()
        if isinstance(step, IterationResult):
            return step
        count += 1
    return step


@SETTINGS
@given(sizes=level_sizes)
def test_odometer_order_matches_product(sizes):
    result = _drain(CombinatorialStepper(_spec(sizes), {}, clock=DeterministicClock()))

    expected = ["-".join(str(v) for v in combo)
                for combo in itertools.product(*(range(n) for n in sizes))]
    assert [o.outcome for o in result.outcomes] == expected
    assert result.total_processed == len(expected)


@SETTINGS
@given(sizes=level_sizes, data=st.data())
def test_pause_and_resume_matches_uninterrupted(sizes, data):
    spec = _spec(sizes)
    clock = DeterministicClock()
    expected = _drain(CombinatorialStepper(spec, {}, clock=clock)).outcomes

    checkpoint = None
    result = None
    while result is None:
        params = {}
        if checkpoint is not None:
            # what crosses the pause boundary is plain JSON
            params[RESUME_CHECKPOINT_KEY] = json.loads(checkpoint.to_json())
        chunk = data.draw(st.integers(min_value=1, max_value=5), label="chunk")
        step = _drain(CombinatorialStepper(spec, params, clock=clock), limit=chunk)
        if isinstance(step, IterationResult):
            result = step
        else:
            checkpoint = step.checkpoint

    assert [(o.combination, o.outcome) for o in result.outcomes] == [
        (o.combination, o.outcome) for o in expected
    ]


@SETTINGS
@given(
    attempt=st.integers(min_value=1, max_value=200),
    initial=st.integers(min_value=0, max_value=10_000_000),
    multiplier=st.floats(min_value=0, max_value=100, allow_nan=False),
    jitter=st.floats(min_value=0, max_value=1, exclude_max=True),
)
def test_backoff_within_bounds(attempt, initial, multiplier, jitter):
    delay = compute_backoff_ms(attempt, initial, multiplier, jitter_fraction=jitter)
    assert 0 <= delay <= MAX_BACKOFF_MS


@SETTINGS
@given(sizes=level_sizes)
def test_checkpoint_survives_json(sizes):
    stepper = CombinatorialStepper(_spec(sizes), {}, clock=DeterministicClock())
    step = stepper.advance()
    if isinstance(step, IterationResult):
        return
    restored = Checkpoint.from_json(step.checkpoint.to_json())
    assert restored.cursors == step.checkpoint.cursors
    assert restored.processed == step.checkpoint.processed
    assert restored.exhausted == step.checkpoint.exhausted
