"""
CombinatorialStepper -- odometer iteration over declarative levels.

Contract:
    Built from an ``IterationSpec`` (ordered levels + per-combination action)
    and the job parameters.  Each ``advance()`` runs the action for ONE
    combination, records the outcome, moves the odometer, and returns an
    ``IterationProgress`` carrying a fresh ``Checkpoint``.  The call after
    the last combination runs the optional final action and returns an
    ``IterationResult``.

Architecture: timebox_batch/steppers.  Imports from timebox_batch.domain,
    timebox_batch.steppers.base and the kernel.

Invariants enforced:
    - Odometer order: the last level varies fastest; overflow carries into
      the previous level; overflow past the first level ends iteration.
    - A resumed stepper visits exactly the remaining suffix of that order:
      checkpoint cursors name the NEXT combination to visit.
    - One failing combination never aborts the job; its error is recorded
      and iteration moves on.
    - A restored cursor outside a recomputed level, or a level with no
      restored cursor at all, raises CheckpointMismatchError (fail fast).
    - Recorded outcomes hold plain JSON values (tuples become lists), so
      outcomes read back from a checkpoint equal the ones recorded live.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from timebox_kernel.domain.clock import Clock, SystemClock
from timebox_kernel.exceptions import (
    CheckpointMismatchError,
    InvalidIterationSpecError,
)
from timebox_kernel.logging_config import get_logger

from timebox_batch.domain.types import (
    AdvanceResult,
    Checkpoint,
    CombinationOutcome,
    IterationProgress,
    IterationResult,
)
from timebox_batch.steppers.base import JobDefinition

logger = get_logger("batch.stepper")

RESUME_CHECKPOINT_KEY = "resume_checkpoint"

PHASE_INITIALIZATION = "initialization"
PHASE_EXECUTION = "execution"
PHASE_COMPLETION = "completion"


# =============================================================================
# Spec
# =============================================================================


CandidateLister = Callable[[dict[str, Any], Checkpoint | None], Sequence[Any]]
CandidateFilter = Callable[[Any, dict[str, Any], Checkpoint | None], bool]
CombinationAction = Callable[[dict[str, Any], dict[str, Any]], Any]
FinalAction = Callable[[list[CombinationOutcome], dict[str, Any]], Any]
ErrorObserver = Callable[[BaseException, str, dict[str, Any] | None], None]


@dataclass(frozen=True)
class Level:
    """One dimension of the iteration.

    ``list_candidates`` is called once when the stepper starts, with the
    params and the checkpoint being resumed from (None on a fresh run).
    ``filter`` is applied before the level is sized.
    """

    name: str
    list_candidates: CandidateLister
    filter: CandidateFilter | None = None


@dataclass(frozen=True)
class IterationSpec:
    """Declarative description of a nested loop over independent collections."""

    levels: tuple[Level, ...]
    action: CombinationAction
    on_final: FinalAction | None = None
    on_error: ErrorObserver | None = None
    pause_between: float = 0.0  # seconds slept after each combination

    def validate(self) -> None:
        """Raise InvalidIterationSpecError unless this IterationSpec is usable."""
        if not self.levels:
            raise InvalidIterationSpecError("at least one level is required")
        if self.action is None or not callable(self.action):
            raise InvalidIterationSpecError("a callable action is required")
        names = [level.name for level in self.levels]
        if len(set(names)) != len(names):
            raise InvalidIterationSpecError(f"duplicate level names in {names}")
        for level in self.levels:
            if not callable(level.list_candidates):
                raise InvalidIterationSpecError(
                    f"level '{level.name}' has no candidate lister"
                )
        if self.pause_between < 0:
            raise InvalidIterationSpecError("pause_between must be >= 0")


# =============================================================================
# Stepper
# =============================================================================


class CombinatorialStepper:
    """Pausable odometer over the cartesian product of the IterationSpec levels.

    Contract:
        - Candidate lists are computed lazily on the first ``advance()``, so
          a listing failure surfaces from the scheduler's advance loop.
        - ``advance()`` after the IterationResult raises RuntimeError.
    """

    def __init__(
        self,
        spec: IterationSpec,
        params: dict[str, Any],
        clock: Clock | None = None,
        sleeper: Callable[[float], None] | None = None,
    ) -> None:
        spec.validate()
        self._spec = spec
        self._params = params
        self._clock = clock or SystemClock()
        self._sleep = sleeper or time.sleep
        self._resume = _coerce_checkpoint(params.get(RESUME_CHECKPOINT_KEY))

        self._initialized = False
        self._finished = False
        self._elements: list[list[Any]] = []
        self._cursors: list[int] = []
        self._outcomes: list[CombinationOutcome] = []
        self._total = 0
        self._position = 0
        self._exhausted = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def total(self) -> int:
        return self._total

    @property
    def level_names(self) -> tuple[str, ...]:
        return tuple(level.name for level in self._spec.levels)

    def advance(self) -> AdvanceResult:
        if self._finished:
            raise RuntimeError("advance() called after iteration finished")
        if not self._initialized:
            self._initialize()

        if self._exhausted:
            return self._finish()

        combination = self._current_combination()
        last_error: str | None = None
        timestamp = self._clock.now().isoformat()

        try:
            value = self._spec.action(dict(combination), self._params)
            outcome = CombinationOutcome(
                timestamp=timestamp,
                combination=_plain(combination),
                outcome=_plain(value),
            )
        except Exception as exc:
            last_error = str(exc)
            logger.warning(
                "combination_failed",
                extra={
                    "combination": combination,
                    "position": self._position,
                    "error_type": type(exc).__name__,
                    "error": last_error,
                },
            )
            outcome = CombinationOutcome(
                timestamp=timestamp,
                combination=_plain(combination),
                error=last_error,
                error_type=type(exc).__name__,
            )
            self._notify(exc, PHASE_EXECUTION, combination)

        self._outcomes.append(outcome)
        self._position += 1
        self._increment()

        if self._spec.pause_between > 0:
            self._sleep(self._spec.pause_between)

        return IterationProgress(
            checkpoint=self._checkpoint(),
            current_combination=combination,
            processed=self._position,
            total=self._total,
            last_error=last_error,
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _initialize(self) -> None:
        resume = self._resume
        try:
            for level in self._spec.levels:
                candidates = list(level.list_candidates(self._params, resume))
                if level.filter is not None:
                    candidates = [
                        c for c in candidates
                        if level.filter(c, self._params, resume)
                    ]
                self._elements.append(candidates)

            sizes = [len(e) for e in self._elements]
            self._total = _product(sizes)

            if resume is not None:
                self._outcomes = list(resume.outcomes)

            if self._total == 0 or (resume is not None and resume.exhausted):
                self._cursors = [0] * len(sizes)
                self._exhausted = True
                self._position = self._total
            else:
                self._cursors = self._restore_cursors(resume, sizes)
                self._position = len(self._outcomes)
        except Exception as exc:
            logger.error(
                "iteration_initialization_failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            self._notify(exc, PHASE_INITIALIZATION, None)
            raise

        self._initialized = True
        logger.info(
            "iteration_initialized",
            extra={
                "levels": {
                    level.name: len(elements)
                    for level, elements in zip(self._spec.levels, self._elements)
                },
                "total": self._total,
                "position": self._position,
                "resumed": resume is not None,
            },
        )

    def _restore_cursors(
        self, resume: Checkpoint | None, sizes: list[int],
    ) -> list[int]:
        if resume is None:
            return [0] * len(sizes)
        cursors = []
        for level, size in zip(self._spec.levels, sizes):
            if level.name not in resume.cursors:
                raise CheckpointMismatchError(level.name, None, size)
            cursor = int(resume.cursors[level.name])
            if cursor < 0 or cursor >= size:
                raise CheckpointMismatchError(level.name, cursor, size)
            cursors.append(cursor)
        return cursors

    def _current_combination(self) -> dict[str, Any]:
        return {
            level.name: self._elements[i][self._cursors[i]]
            for i, level in enumerate(self._spec.levels)
        }

    def _increment(self) -> None:
        level = len(self._cursors) - 1
        while level >= 0:
            self._cursors[level] += 1
            if self._cursors[level] < len(self._elements[level]):
                return
            self._cursors[level] = 0
            level -= 1
        self._exhausted = True

    def _checkpoint(self) -> Checkpoint:
        return Checkpoint(
            cursors={
                level.name: self._cursors[i]
                for i, level in enumerate(self._spec.levels)
            },
            outcomes=tuple(self._outcomes),
            percent_complete=_percent(self._position, self._total),
            exhausted=self._exhausted,
        )

    def _finish(self) -> IterationResult:
        self._finished = True
        outcomes = tuple(self._outcomes)
        summary = None
        final_error = None

        if self._spec.on_final is not None:
            try:
                summary = self._spec.on_final(list(outcomes), self._params)
            except Exception as exc:
                final_error = str(exc)
                logger.error(
                    "final_action_failed",
                    extra={"error_type": type(exc).__name__, "error": final_error},
                )
                self._notify(exc, PHASE_COMPLETION, None)

        return IterationResult(
            outcomes=outcomes,
            total_processed=len(outcomes),
            final_summary=summary,
            final_error=final_error,
        )

    def _notify(
        self, exc: BaseException, phase: str, combination: dict[str, Any] | None,
    ) -> None:
        if self._spec.on_error is None:
            return
        try:
            self._spec.on_error(exc, phase, combination)
        except Exception:
            logger.exception("on_error_observer_failed", extra={"phase": phase})


# =============================================================================
# Definition helper
# =============================================================================


def iteration_job(
    job_type: str,
    spec: IterationSpec,
    clock: Clock | None = None,
    sleeper: Callable[[float], None] | None = None,
    description: str = "",
) -> JobDefinition:
    """Build a JobDefinition whose stepper iterates ``spec``.

    ``spec`` is validated here, before any stepper exists.
    """
    spec.validate()

    def build(params: dict[str, Any]) -> CombinatorialStepper:
        return CombinatorialStepper(spec, params, clock=clock, sleeper=sleeper)

    return JobDefinition(job_type=job_type, build=build, description=description)


def _coerce_checkpoint(value: Any) -> Checkpoint | None:
    if value is None or isinstance(value, Checkpoint):
        return value
    if isinstance(value, dict):
        return Checkpoint.from_dict(value)
    raise TypeError(
        f"{RESUME_CHECKPOINT_KEY} must be a Checkpoint or dict, got {type(value).__name__}"
    )


def _product(sizes: Sequence[int]) -> int:
    total = 1
    for size in sizes:
        total *= size
    return total


def _plain(value: Any) -> Any:
    """``value`` as it reads back from a JSON checkpoint."""
    return json.loads(json.dumps(value, default=str))


def _percent(processed: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return min(100.0, round(processed * 100.0 / total, 2))
