"""
Parameter-grid jobs -- iteration levels taken straight from job params.

A grid job reads its candidate lists from ``params["grid"]``, a mapping of
level name to a list of plain values, so a caller can sweep any action over
a cartesian product without writing listing functions.  The grid is part
of the persisted params, so a resumed run recomputes the same levels.
"""

from __future__ import annotations

from typing import Any, Sequence

from timebox_kernel.exceptions import InvalidIterationSpecError

from timebox_batch.domain.errors import RetryMode
from timebox_batch.services.retry_engine import RetryEngine
from timebox_batch.steppers.base import JobDefinition
from timebox_batch.steppers.iteration import (
    CombinationAction,
    ErrorObserver,
    FinalAction,
    IterationSpec,
    Level,
    iteration_job,
)

GRID_PARAM = "grid"


def _grid_lister(level_name: str):
    def list_candidates(params: dict[str, Any], _resume) -> list[Any]:
        grid = params.get(GRID_PARAM) or {}
        if level_name not in grid:
            raise KeyError(f"grid has no level '{level_name}'")
        return list(grid[level_name])

    list_candidates.__name__ = f"list_{level_name}"
    return list_candidates


def grid_job(
    job_type: str,
    level_names: Sequence[str],
    action: CombinationAction,
    on_final: FinalAction | None = None,
    on_error: ErrorObserver | None = None,
    retry_engine: RetryEngine | None = None,
    retry_mode: RetryMode = RetryMode.LENIENT,
    pause_between: float = 0.0,
    description: str = "",
) -> JobDefinition:
    """JobDefinition iterating ``params["grid"][name]`` for each level name.

    With ``retry_engine`` set, each combination's action runs under the
    retry policy and an exhausted retry is recorded as that combination's
    error.
    """
    if not level_names:
        raise InvalidIterationSpecError("a grid job needs at least one level name")

    if retry_engine is not None:
        action = retry_engine.wrap(action, operation_name=job_type, mode=retry_mode)

    spec = IterationSpec(
        levels=tuple(Level(name, _grid_lister(name)) for name in level_names),
        action=action,
        on_final=on_final,
        on_error=on_error,
        pause_between=pause_between,
    )
    return iteration_job(job_type, spec, description=description)
