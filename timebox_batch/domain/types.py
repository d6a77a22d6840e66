"""
timebox_batch.domain.types -- Pure frozen dataclasses for the execution core.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - A Checkpoint holds plain data only (str/int/float/bool/None, lists and
      dicts of those), so it survives a JSON round-trip unchanged.
    - Checkpoint cursors point at the NEXT combination to visit;
      ``exhausted`` marks that every combination has been visited.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


# =============================================================================
# Status enums
# =============================================================================


class JobLifecycleState(str, Enum):
    """Job-instance lifecycle tracked by the scheduler."""

    IDLE = "idle"  # No persisted state (never run, or reset)
    RUNNING = "running"  # An invocation holds the job
    RESUMABLE = "resumable"  # Budget exhausted, trigger pending
    COMPLETED = "completed"  # Iteration done, final action invoked
    FAILED = "failed"  # Uncaught error; never auto-resumed

    @property
    def is_terminal(self) -> bool:
        return self in (JobLifecycleState.COMPLETED, JobLifecycleState.FAILED)


class RunOutcome(str, Enum):
    """What a single ``execute()`` / ``resume()`` call ended with."""

    COMPLETED = "completed"
    SUSPENDED = "suspended"
    BUSY = "busy"


# =============================================================================
# Iteration DTOs
# =============================================================================


@dataclass(frozen=True)
class CombinationOutcome:
    """Outcome of the action for one combination.

    Exactly one of ``outcome`` / ``error`` is meaningful: ``error`` is set
    when the action raised.
    """

    timestamp: str  # ISO-8601, from the injected clock
    combination: dict[str, Any]
    outcome: Any = None
    error: str | None = None
    error_type: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "combination": dict(self.combination),
        }
        if self.error is not None:
            data["error"] = self.error
            data["error_type"] = self.error_type
        else:
            data["outcome"] = self.outcome
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CombinationOutcome:
        return cls(
            timestamp=data["timestamp"],
            combination=dict(data.get("combination") or {}),
            outcome=data.get("outcome"),
            error=data.get("error"),
            error_type=data.get("error_type"),
        )


@dataclass(frozen=True)
class Checkpoint:
    """Serializable snapshot of iteration progress.

    The only state that crosses a pause/resume boundary.  ``cursors`` is
    ordered like the IterationSpec levels.
    """

    cursors: dict[str, int] = field(default_factory=dict)
    outcomes: tuple[CombinationOutcome, ...] = ()
    percent_complete: float = 0.0
    exhausted: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cursors": dict(self.cursors),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "percent_complete": self.percent_complete,
            "exhausted": self.exhausted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(
            cursors={str(k): int(v) for k, v in (data.get("cursors") or {}).items()},
            outcomes=tuple(
                CombinationOutcome.from_dict(o) for o in data.get("outcomes") or ()
            ),
            percent_complete=float(data.get("percent_complete", 0.0)),
            exhausted=bool(data.get("exhausted", False)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, raw: str) -> Checkpoint:
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True)
class IterationProgress:
    """Result of an advance that processed one combination (not done yet).

    ``last_error`` is set when that combination's action raised.
    """

    checkpoint: Checkpoint
    current_combination: dict[str, Any]
    processed: int
    total: int
    last_error: str | None = None

    done = False

    @property
    def outcomes(self) -> tuple[CombinationOutcome, ...]:
        return self.checkpoint.outcomes

    @property
    def percent_complete(self) -> float:
        return self.checkpoint.percent_complete


@dataclass(frozen=True)
class IterationResult:
    """Result of the advance that found no combination left.

    ``done`` alone does not mean every combination succeeded; check
    ``failed_count``.
    """

    outcomes: tuple[CombinationOutcome, ...]
    total_processed: int
    final_summary: Any = None
    final_error: str | None = None
    percent_complete: float = 100.0

    done = True

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def succeeded_count(self) -> int:
        return self.total_processed - self.failed_count


AdvanceResult = Union[IterationProgress, IterationResult]


# =============================================================================
# Scheduler DTOs
# =============================================================================


@dataclass(frozen=True)
class TriggerRecord:
    """Link between a pending resumption trigger and its job."""

    trigger_id: str
    job_name: str


@dataclass(frozen=True)
class ProgressSnapshot:
    """Last persisted progress of a job, as shown by ``get_status()``."""

    percent_complete: float = 0.0
    processed: int = 0
    total: int = 0
    failed: int = 0
    completed: bool = False
    updated_at: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "percent_complete": self.percent_complete,
                "processed": self.processed,
                "total": self.total,
                "failed": self.failed,
                "completed": self.completed,
                "updated_at": self.updated_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> ProgressSnapshot:
        data = json.loads(raw)
        return cls(
            percent_complete=float(data.get("percent_complete", 0.0)),
            processed=int(data.get("processed", 0)),
            total=int(data.get("total", 0)),
            failed=int(data.get("failed", 0)),
            completed=bool(data.get("completed", False)),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class JobStatus:
    """Read-only projection of a job's persisted state."""

    job_name: str
    state: JobLifecycleState
    job_type: str | None = None
    percent_complete: float = 0.0
    processed: int = 0
    total: int = 0
    failed_combinations: int = 0
    pending_trigger_id: str | None = None
    updated_at: datetime | str | None = None


@dataclass(frozen=True)
class JobRunResult:
    """What ``execute()`` / ``resume()`` returned.

    ``result`` is set only for COMPLETED; ``checkpoint`` and ``trigger`` only
    for SUSPENDED.
    """

    job_name: str
    outcome: RunOutcome
    result: IterationResult | None = None
    checkpoint: Checkpoint | None = None
    trigger: TriggerRecord | None = None

    @property
    def completed(self) -> bool:
        return self.outcome == RunOutcome.COMPLETED

    @property
    def suspended(self) -> bool:
        return self.outcome == RunOutcome.SUSPENDED

    @property
    def busy(self) -> bool:
        return self.outcome == RunOutcome.BUSY
