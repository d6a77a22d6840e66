"""
Pytest fixtures for the timebox test suite.

Provides:
- Deterministic clock, in-memory store and trigger scheduler
- A SQLite-backed session factory for the SQL store
- A scheduler wired with an empty registry
- Logging isolation between tests
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timebox_config.schema import SchedulerConfig
from timebox_kernel.db.base import Base
from timebox_kernel.domain.clock import DeterministicClock
from timebox_kernel.logging_config import LogContext, reset_logging
from timebox_kernel.store import InMemoryKeyValueStore
import timebox_kernel.store.models  # noqa: F401 -- registers job_state_entries

from timebox_batch.services.scheduler import ResumableJobScheduler
from timebox_batch.services.triggers import InMemoryTriggerScheduler
from timebox_batch.steppers.base import JobRegistry


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state and context between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def triggers(clock) -> InMemoryTriggerScheduler:
    return InMemoryTriggerScheduler(clock=clock)


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(budget_seconds=60, resume_delay_seconds=60)


@pytest.fixture
def scheduler(store, triggers, registry, clock, scheduler_config) -> ResumableJobScheduler:
    return ResumableJobScheduler(
        store=store,
        triggers=triggers,
        registry=registry,
        clock=clock,
        config=scheduler_config,
    )


@pytest.fixture
def sqlite_engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(bind=sqlite_engine, expire_on_commit=False)
