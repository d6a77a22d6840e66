"""
Engine and session management for the SQL-backed job state store.

Contract:
    ``init_engine_from_url(url)`` builds the process-wide engine and session
    factory; ``create_tables()`` creates ``job_state_entries``;
    ``session_scope()`` wraps one unit of work in a transaction.
    ``SqlKeyValueStore`` only needs ``get_session_factory()``.

Architecture: timebox_kernel/db.  Imports db.base and, lazily, the store
    model; nothing above the kernel.

Invariants enforced:
    - In-memory SQLite always gets a StaticPool, otherwise each session
      would open its own empty database.
    - Server databases run READ COMMITTED; the store's compare-and-set is a
      single conditional UPDATE and needs nothing stronger.

Failure modes:
    - RuntimeError from the getters before ``init_engine_from_url()``.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from timebox_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"


def _engine_options(url: str, pool_size: int, pool_recycle: int) -> dict[str, Any]:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return {
            "pool_size": pool_size,
            "max_overflow": pool_size,
            "pool_pre_ping": True,
            "pool_recycle": pool_recycle,
            "isolation_level": "READ COMMITTED",
        }
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    pool_recycle: int = 1800,
) -> Engine:
    """Create (or replace) the process-wide engine for ``database_url``.

    ``pool_size`` and ``pool_recycle`` apply to server databases only.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(
        database_url, echo=echo, **_engine_options(database_url, pool_size, pool_recycle),
    )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on error, always close."""
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the job state table (and any other registered model)."""
    from timebox_kernel.db.base import Base
    import timebox_kernel.store.models  # noqa: F401 -- registers job_state_entries

    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
