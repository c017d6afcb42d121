"""
Distributed lock model.

Coordinates the retention and SLA sweeps across replicas so a sweep never
runs twice for the same tick.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, utcnow


class DistributedLock(Base):
    """
    Lock row for one named background job.

    A holder acquires by bumping ``version`` where the row is unlocked or
    expired; ``expires_at`` bounds how long a crashed holder can block the
    next run.
    """

    __tablename__ = "distributed_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lock_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Monitoring
    last_run_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_run_result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (Index("ix_distributed_locks_name_locked", "lock_name", "is_locked"),)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expires_at:
            return False
        return (now or utcnow()) > self.expires_at

    def __repr__(self) -> str:
        return f"<DistributedLock(name={self.lock_name}, locked={self.is_locked}, by={self.locked_by})>"
