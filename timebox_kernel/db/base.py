"""
Declarative base for the timebox ORM models.

The only table today is the job state store (``job_state_entries``); the
base exists so the engine module can create every registered table in one
call and so column types stay portable between SQLite and PostgreSQL.
"""

from datetime import datetime
from typing import ClassVar

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    # Aware datetimes and bounded strings unless a column says otherwise.
    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        str: String(255),
    }


class TimestampedBase(Base):
    """Adds server-side ``created_at`` / ``updated_at`` columns.

    ``updated_at`` moves on every UPDATE, which makes stale job state easy
    to spot directly in the table.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(),
    )
