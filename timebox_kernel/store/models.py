"""
ORM model for the SQL-backed job state store.

Contract:
    One row per key.  ``value`` holds the serialized string exactly as the
    caller wrote it; the store never interprets it.

Architecture: timebox_kernel/store. Imports from timebox_kernel.db.base only.
"""

from __future__ import annotations

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from timebox_kernel.db.base import TimestampedBase


class JobStateEntryModel(TimestampedBase):
    """Persistent key-value entry (job lifecycle, checkpoint, trigger links)."""

    __tablename__ = "job_state_entries"

    __table_args__ = (
        Index("ix_job_state_entries_updated_at", "updated_at"),
    )

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"JobStateEntryModel(key={self.key!r})"
