"""
SqlKeyValueStore -- KeyValueStore backed by the ``job_state_entries`` table.

Contract:
    Every call runs in its own short transaction obtained from the injected
    session factory and commits before returning, so state written by one
    invocation is visible to the next even if the process dies mid-run.

Invariants enforced:
    - ``compare_and_set`` is a single conditional UPDATE (or a primary-key
      guarded INSERT when the key must be absent).  The database's row-level
      atomicity makes it safe against concurrent invocations.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from timebox_kernel.logging_config import get_logger
from timebox_kernel.store.models import JobStateEntryModel

logger = get_logger("store.sql")


class SqlKeyValueStore:
    """SQLAlchemy implementation of the KeyValueStore protocol.

    Non-goals:
        - Does NOT batch writes -- each write is durable on return.
        - Does NOT create the table -- call ``create_tables()`` or
          ``Base.metadata.create_all()`` first.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        session = self._session_factory()
        try:
            model = session.get(JobStateEntryModel, key)
            return model.value if model is not None else None
        finally:
            session.close()

    def set(self, key: str, value: str) -> None:
        session = self._session_factory()
        try:
            model = session.get(JobStateEntryModel, key)
            if model is None:
                session.add(JobStateEntryModel(key=key, value=value))
            else:
                model.value = value
            session.commit()
        except IntegrityError:
            # Lost an insert race; last writer wins.
            session.rollback()
            session.execute(
                update(JobStateEntryModel)
                .where(JobStateEntryModel.key == key)
                .values(value=value)
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, key: str) -> None:
        session = self._session_factory()
        try:
            session.execute(
                delete(JobStateEntryModel).where(JobStateEntryModel.key == key)
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def compare_and_set(self, key: str, expected: str | None, new: str) -> bool:
        session = self._session_factory()
        try:
            if expected is None:
                session.add(JobStateEntryModel(key=key, value=new))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.debug("cas_insert_conflict", extra={"key": key})
                    return False
                return True

            result = session.execute(
                update(JobStateEntryModel)
                .where(
                    JobStateEntryModel.key == key,
                    JobStateEntryModel.value == expected,
                )
                .values(value=new)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount == 1
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def keys(self, prefix: str = "") -> list[str]:
        session = self._session_factory()
        try:
            stmt = select(JobStateEntryModel.key).order_by(JobStateEntryModel.key)
            if prefix:
                stmt = stmt.where(
                    JobStateEntryModel.key.startswith(prefix, autoescape=True)
                )
            return list(session.execute(stmt).scalars().all())
        finally:
            session.close()
