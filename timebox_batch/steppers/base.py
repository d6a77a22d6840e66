"""
Stepper protocol, JobDefinition, and JobRegistry.

Contract:
    ``Stepper`` is a pausable unit of work exposing ONE operation,
    ``advance()``, which returns either ``IterationProgress`` (more to do)
    or ``IterationResult`` (done).
    ``JobDefinition`` pairs a job type with a builder ``params -> Stepper``.
    ``JobRegistry`` stores definitions keyed by job type.

Architecture:
    timebox_batch/steppers.  Imports only from timebox_batch.domain and the
    kernel exceptions.

Registrations are process-local and never persisted: every entry point,
normal or resumption, builds its registry through the same factory
(``timebox_batch.runtime.build_job_registry``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from timebox_kernel.exceptions import JobTypeNotRegisteredError

from timebox_batch.domain.types import AdvanceResult


@runtime_checkable
class Stepper(Protocol):
    """A pausable unit of work.

    Contract:
        - Each ``advance()`` does at most one combination's worth of work.
        - Once ``advance()`` has returned an ``IterationResult`` it must not
          be called again.
    """

    def advance(self) -> AdvanceResult: ...


StepperBuilder = Callable[[dict[str, Any]], Stepper]


@dataclass(frozen=True)
class JobDefinition:
    """Immutable registration of one job type."""

    job_type: str
    build: StepperBuilder
    description: str = ""


class JobRegistry:
    """Registry mapping job-type strings to JobDefinitions.

    Contract:
        - ``register()`` is idempotent; the last registration for a type wins.
        - ``get()`` raises JobTypeNotRegisteredError for an unknown type.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, JobDefinition] = {}

    def register(self, definition: JobDefinition) -> JobRegistry:
        self._definitions[definition.job_type] = definition
        return self

    def register_type(
        self, job_type: str, build: StepperBuilder, description: str = "",
    ) -> JobRegistry:
        """Register a bare builder callable for ``job_type``."""
        if not callable(build):
            raise TypeError(f"Builder for job type '{job_type}' must be callable")
        return self.register(JobDefinition(job_type, build, description))

    def get(self, job_type: str) -> JobDefinition:
        try:
            return self._definitions[job_type]
        except KeyError:
            raise JobTypeNotRegisteredError(job_type, self.list_types()) from None

    def list_types(self) -> tuple[str, ...]:
        """Return all registered job types, sorted."""
        return tuple(sorted(self._definitions))

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._definitions
