"""
Trigger schedulers -- one-shot delayed callbacks used to resume jobs.

Contract:
    ``schedule(entry_point, delay_ms) -> trigger_id`` registers a callback
    that fires once after the delay; ``cancel(trigger_id)`` removes it.
    When a trigger fires, the entry point receives ONLY the trigger id.

Architecture: timebox_batch/services.  Pure collaborators of the scheduler;
    they never touch the job state store.

Implementations:
    - ``InMemoryTriggerScheduler``: records pending triggers; tests and
      callers fire them explicitly.
    - ``PollingTriggerScheduler``: background thread firing due triggers
      into registered entry-point callbacks.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol, runtime_checkable
from uuid import uuid4

from timebox_kernel.domain.clock import Clock, SystemClock
from timebox_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.triggers")

EntryPoint = Callable[[str], object]


@runtime_checkable
class TriggerScheduler(Protocol):
    """External timer collaborator."""

    def schedule(self, entry_point: str, delay_ms: int) -> str: ...

    def cancel(self, trigger_id: str) -> None: ...


@dataclass(frozen=True)
class PendingTrigger:
    trigger_id: str
    entry_point: str
    due_at: datetime


class InMemoryTriggerScheduler:
    """Trigger scheduler that only records pending triggers.

    ``due(now)`` lists triggers whose delay has elapsed; ``pop(trigger_id)``
    consumes one the way a real timer service does on firing.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._pending: dict[str, PendingTrigger] = {}
        self._lock = threading.Lock()

    def schedule(self, entry_point: str, delay_ms: int) -> str:
        trigger_id = f"trg-{uuid4().hex}"
        due_at = self._clock.now() + timedelta(milliseconds=delay_ms)
        with self._lock:
            self._pending[trigger_id] = PendingTrigger(trigger_id, entry_point, due_at)
        logger.info(
            "trigger_scheduled",
            extra={
                "trigger_id": trigger_id,
                "entry_point": entry_point,
                "due_at": due_at.isoformat(),
            },
        )
        return trigger_id

    def cancel(self, trigger_id: str) -> None:
        with self._lock:
            removed = self._pending.pop(trigger_id, None)
        if removed is not None:
            logger.info("trigger_cancelled", extra={"trigger_id": trigger_id})

    def pending(self) -> list[PendingTrigger]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda t: t.due_at)

    def due(self, now: datetime | None = None) -> list[PendingTrigger]:
        now = now or self._clock.now()
        return [t for t in self.pending() if t.due_at <= now]

    def pop(self, trigger_id: str) -> PendingTrigger | None:
        with self._lock:
            return self._pending.pop(trigger_id, None)

    def __contains__(self, trigger_id: str) -> bool:
        with self._lock:
            return trigger_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


class PollingTriggerScheduler(InMemoryTriggerScheduler):
    """In-process polling timer that fires due triggers.

    Contract:
        - ``tick()`` fires every due trigger once and returns the count.
        - ``start()`` / ``stop()`` for background thread operation.
        - The stop signal is checked between triggers.

    Non-goals:
        - NOT durable: pending triggers are lost with the process.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        tick_interval_seconds: float = 1.0,
    ) -> None:
        super().__init__(clock)
        self._entry_points: dict[str, EntryPoint] = {}
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def register_entry_point(self, name: str, callback: EntryPoint) -> None:
        self._entry_points[name] = callback

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Fire due triggers (public for testing)."""
        fired = 0
        for trigger in self.due():
            if self._stop_event.is_set():
                break
            if self.pop(trigger.trigger_id) is None:
                continue  # cancelled concurrently
            callback = self._entry_points.get(trigger.entry_point)
            if callback is None:
                logger.error(
                    "trigger_entry_point_missing",
                    extra={
                        "trigger_id": trigger.trigger_id,
                        "entry_point": trigger.entry_point,
                    },
                )
                continue
            with LogContext.bind(trigger_id=trigger.trigger_id):
                logger.info(
                    "trigger_fired",
                    extra={"entry_point": trigger.entry_point},
                )
                try:
                    callback(trigger.trigger_id)
                except Exception:
                    logger.exception(
                        "trigger_callback_failed",
                        extra={"entry_point": trigger.entry_point},
                    )
            fired += 1
        return fired

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="timebox-triggers",
            daemon=True,
        )
        self._thread.start()
        logger.info("trigger_poller_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("trigger_poller_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("trigger_poller_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
