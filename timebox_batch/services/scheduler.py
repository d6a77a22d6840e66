"""
ResumableJobScheduler -- time-boxed execution with durable checkpoints.

Contract:
    ``execute(name, job_type, params)`` drives the registered Stepper for
    ``job_type`` until it is done or the wall-clock budget runs out.  On
    budget exhaustion the last checkpoint is persisted, a one-shot trigger
    is scheduled, and the call returns SUSPENDED.  ``resume(name)`` is the
    trigger's target: it reloads the persisted type and parameters and
    continues from the checkpoint.

Architecture: timebox_batch/services.  Collaborators (store, trigger
    scheduler, registry, clock) are injected; nothing here is global.

Invariants enforced:
    - Overlap guard: the Running transition is a compare-and-set on the
      lifecycle key, so two invocations cannot both hold a job name.
    - Write-through: every checkpoint is persisted as soon as it is yielded.
    - A trigger link exists only while the job is Resumable.
    - Completed and Failed both clear the checkpoint.
    - Resumption answers budget exhaustion only; an uncaught error marks the
      job Failed and propagates, and nothing resumes a Failed job.

Failure modes:
    - JobTypeNotRegisteredError -- job type unknown to the registry.
    - JobNotFoundError -- resume() of a name with no persisted type.
    - StateDecodeError -- corrupt checkpoint or lifecycle value.
    - Anything the stepper raises (job becomes Failed, error re-raised).
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Mapping
from uuid import uuid4

from timebox_config.schema import SchedulerConfig
from timebox_kernel.domain.clock import Clock, SystemClock
from timebox_kernel.exceptions import (
    JobAlreadyRunningError,
    JobNotFoundError,
    StateDecodeError,
)
from timebox_kernel.logging_config import LogContext, get_logger
from timebox_kernel.store.base import KeyValueStore

from timebox_batch.domain import keys
from timebox_batch.domain.types import (
    Checkpoint,
    IterationProgress,
    IterationResult,
    JobLifecycleState,
    JobRunResult,
    JobStatus,
    ProgressSnapshot,
    RunOutcome,
    TriggerRecord,
)
from timebox_batch.services.triggers import TriggerScheduler
from timebox_batch.steppers.base import JobRegistry, StepperBuilder
from timebox_batch.steppers.iteration import RESUME_CHECKPOINT_KEY

logger = get_logger("batch.scheduler")

_PLAIN_SCALARS = (str, int, float, bool, type(None))


class ResumableJobScheduler:
    """Lifecycle orchestration for named, resumable jobs.

    Contract:
        - ``register_type()`` must be called (directly or through the
          shared registry factory) in every process entry point.
        - ``execute()`` returns BUSY, without touching state, while another
          invocation holds the job.
        - ``reset_state()`` returns a job to Idle and cancels its trigger.

    Non-goals:
        - Does NOT interrupt work in flight; pausing happens only between
          ``advance()`` calls.
        - Does NOT retry failed jobs; see RetryEngine for transient faults.
    """

    def __init__(
        self,
        store: KeyValueStore,
        triggers: TriggerScheduler,
        registry: JobRegistry | None = None,
        clock: Clock | None = None,
        config: SchedulerConfig | None = None,
    ) -> None:
        self._store = store
        self._triggers = triggers
        self._registry = registry if registry is not None else JobRegistry()
        self._clock = clock or SystemClock()
        self._config = config or SchedulerConfig()
        self._budget = self._config.budget

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def budget(self) -> timedelta:
        return self._budget

    def set_budget(self, budget: float | timedelta) -> ResumableJobScheduler:
        """Replace the per-invocation wall-clock budget (seconds or timedelta)."""
        if not isinstance(budget, timedelta):
            budget = timedelta(seconds=budget)
        if budget <= timedelta(0):
            raise ValueError(f"budget must be positive, got {budget}")
        self._budget = budget
        return self

    def register_type(
        self, job_type: str, build: StepperBuilder, description: str = "",
    ) -> ResumableJobScheduler:
        self._registry.register_type(job_type, build, description)
        return self

    # -------------------------------------------------------------------------
    # Lifecycle API
    # -------------------------------------------------------------------------

    def execute(
        self,
        name: str,
        job_type: str,
        params: Mapping[str, Any] | None = None,
        force_restart: bool = False,
        raise_if_busy: bool = False,
    ) -> JobRunResult:
        """Run ``name`` until done or out of budget.

        Raises JobAlreadyRunningError instead of returning BUSY when
        ``raise_if_busy`` is set.
        """
        started = self._clock.now()

        if force_restart:
            self.reset_state(name)

        lifecycle_key = keys.lifecycle_key(name)
        current = self._store.get(lifecycle_key)
        previous = _parse_state(name, current)
        if current == JobLifecycleState.RUNNING.value or not self._store.compare_and_set(
            lifecycle_key, current, JobLifecycleState.RUNNING.value,
        ):
            logger.warning("job_busy", extra={"job_name": name, "job_type": job_type})
            if raise_if_busy:
                raise JobAlreadyRunningError(name)
            return JobRunResult(job_name=name, outcome=RunOutcome.BUSY)

        run_id = uuid4().hex[:12]
        with LogContext.bind(job_name=name, job_type=job_type, run_id=run_id):
            try:
                return self._run(
                    name, job_type, dict(params or {}), previous, force_restart, started,
                )
            except Exception as exc:
                self._mark_failed(name, exc)
                raise

    def resume(
        self, name: str, collaborators: Mapping[str, Any] | None = None,
    ) -> JobRunResult | None:
        """Continue a suspended job from its persisted checkpoint.

        ``collaborators`` are live handles re-attached to the reloaded
        parameters.  Returns None, without running, for a job already
        Completed or Failed.
        """
        job_type = self._store.get(keys.type_key(name))
        if job_type is None:
            raise JobNotFoundError(name)

        state = _parse_state(name, self._store.get(keys.lifecycle_key(name)))
        if state.is_terminal:
            logger.warning(
                "resume_skipped",
                extra={"job_name": name, "state": state.value},
            )
            return None

        raw_params = self._store.get(keys.params_key(name))
        try:
            params = json.loads(raw_params) if raw_params else {}
        except ValueError as exc:
            raise StateDecodeError(keys.params_key(name), str(exc)) from exc
        params.update(collaborators or {})

        logger.info("job_resuming", extra={"job_name": name, "job_type": job_type})
        return self.execute(name, job_type, params, force_restart=False)

    def reset_state(self, name: str) -> None:
        """Delete every persisted key for ``name`` and cancel its trigger."""
        trigger_ids = set()
        pending = self._store.get(keys.trigger_key(name))
        if pending:
            trigger_ids.add(pending)
        for key in self._store.keys(keys.TRIGGER_PREFIX):
            trigger_id = keys.trigger_id_from_key(key)
            if trigger_id and self._store.get(key) == name:
                trigger_ids.add(trigger_id)

        for trigger_id in sorted(trigger_ids):
            self._triggers.cancel(trigger_id)
            self._store.delete(keys.trigger_job_key(trigger_id))
        self._store.delete(keys.trigger_key(name))

        for key in keys.job_state_keys(name):
            self._store.delete(key)

        logger.info(
            "job_state_reset",
            extra={"job_name": name, "cancelled_triggers": sorted(trigger_ids)},
        )

    def get_status(self, name: str) -> JobStatus:
        state = _parse_state(name, self._store.get(keys.lifecycle_key(name)))
        raw_progress = self._store.get(keys.progress_key(name))
        progress = ProgressSnapshot()
        if raw_progress:
            try:
                progress = ProgressSnapshot.from_json(raw_progress)
            except (ValueError, TypeError) as exc:
                raise StateDecodeError(keys.progress_key(name), str(exc)) from exc

        return JobStatus(
            job_name=name,
            state=state,
            job_type=self._store.get(keys.type_key(name)),
            percent_complete=progress.percent_complete,
            processed=progress.processed,
            total=progress.total,
            failed_combinations=progress.failed,
            pending_trigger_id=self._store.get(keys.trigger_key(name)),
            updated_at=progress.updated_at,
        )

    # -------------------------------------------------------------------------
    # Budget loop
    # -------------------------------------------------------------------------

    def _run(
        self,
        name: str,
        job_type: str,
        params: dict[str, Any],
        previous: JobLifecycleState,
        force_restart: bool,
        started: datetime,
    ) -> JobRunResult:
        self._store.set(keys.type_key(name), job_type)
        definition = self._registry.get(job_type)

        checkpoint = None if force_restart else self._load_checkpoint(name)
        if previous == JobLifecycleState.RESUMABLE:
            self._clear_trigger(name)

        self._store.set(
            keys.params_key(name),
            json.dumps(sanitize_params(params, self._config.collaborator_keys)),
        )
        params[RESUME_CHECKPOINT_KEY] = checkpoint

        stepper = definition.build(params)
        logger.info(
            "job_started",
            extra={
                "resumed": checkpoint is not None,
                "processed": checkpoint.processed if checkpoint else 0,
                "budget_seconds": self._budget.total_seconds(),
            },
        )

        last_checkpoint = checkpoint
        while True:
            if self._clock.elapsed_since(started) >= self._budget:
                return self._suspend(name, last_checkpoint)

            step = stepper.advance()
            if isinstance(step, IterationResult):
                return self._complete(name, step)

            last_checkpoint = step.checkpoint
            self._write_checkpoint(name, step)

    def _write_checkpoint(self, name: str, step: IterationProgress) -> None:
        self._store.set(keys.checkpoint_key(name), step.checkpoint.to_json())
        self._write_progress(
            name,
            percent=step.percent_complete,
            processed=step.processed,
            total=step.total,
            failed=step.checkpoint.failed_count,
        )

    def _suspend(self, name: str, checkpoint: Checkpoint | None) -> JobRunResult:
        if checkpoint is not None:
            self._store.set(keys.checkpoint_key(name), checkpoint.to_json())
            self._write_progress(
                name,
                percent=checkpoint.percent_complete,
                processed=checkpoint.processed,
                failed=checkpoint.failed_count,
            )
        else:
            self._store.delete(keys.checkpoint_key(name))

        self._store.set(keys.lifecycle_key(name), JobLifecycleState.RESUMABLE.value)
        trigger_id = self._triggers.schedule(
            self._config.resume_entry_point, self._config.resume_delay_ms,
        )
        self._store.set(keys.trigger_key(name), trigger_id)
        self._store.set(keys.trigger_job_key(trigger_id), name)

        logger.info(
            "job_suspended",
            extra={
                "trigger_id": trigger_id,
                "percent_complete": checkpoint.percent_complete if checkpoint else 0.0,
                "resume_delay_ms": self._config.resume_delay_ms,
            },
        )
        return JobRunResult(
            job_name=name,
            outcome=RunOutcome.SUSPENDED,
            checkpoint=checkpoint,
            trigger=TriggerRecord(trigger_id=trigger_id, job_name=name),
        )

    def _complete(self, name: str, result: IterationResult) -> JobRunResult:
        self._store.delete(keys.checkpoint_key(name))
        self._clear_trigger(name)
        self._write_progress(
            name,
            percent=result.percent_complete,
            processed=result.total_processed,
            total=result.total_processed,
            failed=result.failed_count,
            completed=True,
        )
        self._store.set(keys.lifecycle_key(name), JobLifecycleState.COMPLETED.value)

        logger.info(
            "job_completed",
            extra={
                "total_processed": result.total_processed,
                "failed_combinations": result.failed_count,
                "final_error": result.final_error,
            },
        )
        return JobRunResult(job_name=name, outcome=RunOutcome.COMPLETED, result=result)

    def _mark_failed(self, name: str, exc: Exception) -> None:
        logger.error(
            "job_failed",
            extra={"error_type": type(exc).__name__, "error": str(exc)},
            exc_info=True,
        )
        try:
            self._store.delete(keys.checkpoint_key(name))
            self._clear_trigger(name)
            self._store.set(keys.lifecycle_key(name), JobLifecycleState.FAILED.value)
        except Exception:
            logger.exception("job_failure_not_persisted", extra={"job_name": name})

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _load_checkpoint(self, name: str) -> Checkpoint | None:
        key = keys.checkpoint_key(name)
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return Checkpoint.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            raise StateDecodeError(key, str(exc)) from exc

    def _clear_trigger(self, name: str) -> None:
        trigger_id = self._store.get(keys.trigger_key(name))
        if trigger_id:
            self._triggers.cancel(trigger_id)
            self._store.delete(keys.trigger_job_key(trigger_id))
        self._store.delete(keys.trigger_key(name))

    def _write_progress(
        self,
        name: str,
        percent: float,
        processed: int,
        failed: int,
        total: int | None = None,
        completed: bool = False,
    ) -> None:
        if total is None:
            previous = self._store.get(keys.progress_key(name))
            total = ProgressSnapshot.from_json(previous).total if previous else 0
        snapshot = ProgressSnapshot(
            percent_complete=percent,
            processed=processed,
            total=total,
            failed=failed,
            completed=completed,
            updated_at=self._clock.now().isoformat(),
        )
        self._store.set(keys.progress_key(name), snapshot.to_json())


# =============================================================================
# Parameter sanitization
# =============================================================================


def sanitize_params(
    params: Mapping[str, Any], collaborator_keys: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Copy of ``params`` holding only resumable plain data.

    Drops collaborator handles (by key), the restored checkpoint, and any
    value that is not JSON-shaped plain data.
    """
    clean: dict[str, Any] = {}
    for key, value in params.items():
        if key in collaborator_keys or key == RESUME_CHECKPOINT_KEY:
            continue
        if not _is_plain(value):
            logger.debug(
                "param_not_persisted",
                extra={"param": key, "value_type": type(value).__name__},
            )
            continue
        clean[key] = value
    return clean


def _is_plain(value: Any) -> bool:
    if isinstance(value, _PLAIN_SCALARS):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_plain(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _is_plain(v) for k, v in value.items())
    return False


def _parse_state(name: str, raw: str | None) -> JobLifecycleState:
    if raw is None:
        return JobLifecycleState.IDLE
    try:
        return JobLifecycleState(raw)
    except ValueError as exc:
        raise StateDecodeError(keys.lifecycle_key(name), str(exc)) from exc

