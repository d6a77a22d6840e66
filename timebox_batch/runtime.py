"""
JobRuntime -- DI container and process entry points for the execution core.

Contract:
    ``build_job_registry()`` is the single shared routine every entry point
    uses to register job types.  ``JobRuntime`` wires the store, trigger
    scheduler, registry, clock and configuration into a
    ``ResumableJobScheduler`` and a ``RetryEngine``.
    ``resume_from_trigger(trigger_id)`` is the resumption entry point: it
    receives only a trigger id, finds the job, re-attaches live
    collaborators and resumes.

Architecture: timebox_batch (top-level).  The canonical place where batch
    dependencies are composed; nothing in the kernel imports it.

Invariants enforced:
    - Every collaborator receives the same Clock.
    - A trigger with no job mapping (or a stale one) is cancelled, never
      resumed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.orm import Session

from timebox_config import RuntimeConfig, get_runtime_config
from timebox_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from timebox_kernel.domain.clock import Clock, SystemClock
from timebox_kernel.logging_config import LogContext, configure_logging, get_logger
from timebox_kernel.store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore

from timebox_batch.domain import keys
from timebox_batch.domain.types import JobRunResult, JobStatus
from timebox_batch.services.retry_engine import RetryEngine
from timebox_batch.services.scheduler import ResumableJobScheduler
from timebox_batch.services.triggers import (
    InMemoryTriggerScheduler,
    PollingTriggerScheduler,
    TriggerScheduler,
)
from timebox_batch.steppers.base import JobDefinition, JobRegistry

logger = get_logger("batch.runtime")

# name -> live collaborators to merge into the reloaded params
CollaboratorFactory = Callable[[str], Mapping[str, Any]]


def build_job_registry(definitions: Iterable[JobDefinition] = ()) -> JobRegistry:
    """Create a JobRegistry holding ``definitions`` (last one per type wins)."""
    registry = JobRegistry()
    for definition in definitions:
        registry.register(definition)
    return registry


class JobRuntime:
    """DI container for the resumable execution core.

    Contract:
        - ``from_config()`` / ``from_session_factory()`` build a fully wired
          runtime.
        - When the trigger scheduler is a ``PollingTriggerScheduler`` the
          resumption entry point is registered on it automatically.

    Non-goals:
        - Does NOT start the polling thread; the caller decides.
    """

    def __init__(
        self,
        store: KeyValueStore,
        triggers: TriggerScheduler,
        registry: JobRegistry,
        clock: Clock | None = None,
        config: RuntimeConfig | None = None,
        retry_engine: RetryEngine | None = None,
        attach_collaborators: CollaboratorFactory | None = None,
    ) -> None:
        self._config = config or RuntimeConfig()
        self._clock = clock or SystemClock()
        self._store = store
        self._triggers = triggers
        self._registry = registry
        self._attach = attach_collaborators
        self._scheduler = ResumableJobScheduler(
            store=store,
            triggers=triggers,
            registry=registry,
            clock=self._clock,
            config=self._config.scheduler,
        )
        self._retry_engine = retry_engine or RetryEngine(
            config=self._config.retry, clock=self._clock,
        )

        if isinstance(triggers, PollingTriggerScheduler):
            triggers.register_entry_point(
                self._config.scheduler.resume_entry_point, self.resume_from_trigger,
            )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        definitions: Iterable[JobDefinition] = (),
        config: RuntimeConfig | None = None,
        config_path: str | Path | None = None,
        store: KeyValueStore | None = None,
        triggers: TriggerScheduler | None = None,
        clock: Clock | None = None,
        attach_collaborators: CollaboratorFactory | None = None,
    ) -> JobRuntime:
        """Create a runtime from configuration.

        Args:
            definitions: Job types to register.
            config: Explicit configuration; otherwise resolved through
                ``get_runtime_config(config_path)``.
            store: Persisted store.  Defaults to an in-memory store.
            triggers: Timer collaborator.  Defaults to an in-memory one.
            clock: Optional clock for deterministic testing.
            attach_collaborators: Called with the job name on resumption;
                returns live handles merged into the reloaded params.
        """
        effective_config = config or get_runtime_config(config_path)
        effective_clock = clock or SystemClock()
        configure_logging(level=effective_config.logging.level)

        return cls(
            store=store if store is not None else InMemoryKeyValueStore(),
            triggers=triggers if triggers is not None else InMemoryTriggerScheduler(
                clock=effective_clock,
            ),
            registry=build_job_registry(definitions),
            clock=effective_clock,
            config=effective_config,
            attach_collaborators=attach_collaborators,
        )

    @classmethod
    def from_session_factory(
        cls,
        session_factory: Callable[[], Session],
        definitions: Iterable[JobDefinition] = (),
        **kwargs: Any,
    ) -> JobRuntime:
        """Like ``from_config()`` with a SQL-backed store."""
        return cls.from_config(
            definitions, store=SqlKeyValueStore(session_factory), **kwargs,
        )

    @classmethod
    def from_database_url(
        cls,
        database_url: str,
        definitions: Iterable[JobDefinition] = (),
        **kwargs: Any,
    ) -> JobRuntime:
        """Initialize the process-wide engine, create the state table, and
        build a runtime on it."""
        init_engine_from_url(database_url)
        create_tables()
        return cls.from_session_factory(get_session_factory(), definitions, **kwargs)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def execute(
        self,
        name: str,
        job_type: str,
        params: Mapping[str, Any] | None = None,
        force_restart: bool = False,
    ) -> JobRunResult:
        return self._scheduler.execute(name, job_type, params, force_restart)

    def resume_from_trigger(self, trigger_id: str) -> JobRunResult | None:
        """Resumption entry point invoked with a firing trigger's id."""
        with LogContext.bind(trigger_id=trigger_id):
            name = self._store.get(keys.trigger_job_key(trigger_id))
            if name is None or self._store.get(keys.trigger_key(name)) != trigger_id:
                logger.warning(
                    "orphan_trigger_cancelled",
                    extra={"mapped_job": name},
                )
                self._triggers.cancel(trigger_id)
                self._store.delete(keys.trigger_job_key(trigger_id))
                return None

            logger.info("trigger_fired", extra={"job_name": name})
            collaborators = self._attach(name) if self._attach is not None else None
            return self._scheduler.resume(name, collaborators)

    def get_status(self, name: str) -> JobStatus:
        return self._scheduler.get_status(name)

    def reset_state(self, name: str) -> None:
        self._scheduler.reset_state(name)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def scheduler(self) -> ResumableJobScheduler:
        return self._scheduler

    @property
    def retry_engine(self) -> RetryEngine:
        return self._retry_engine

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def triggers(self) -> TriggerScheduler:
        return self._triggers

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> RuntimeConfig:
        return self._config
