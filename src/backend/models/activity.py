"""
Activity event model.

Discrete actions reported by the discovery and messaging services. The
behavior detector only ever reads them through bounded time windows.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, enum_type, utcnow


class ActivityKind(str, Enum):
    SWIPE = "swipe"
    MESSAGE_SENT = "message_sent"
    REPORT_RECEIVED = "report_received"


class ActivityEvent(Base):
    """
    One observed action.

    ``account_id`` is the account whose behavior is measured: the swiper, the
    sender, or the reported account. ``counterpart_id`` is the swipe target,
    the recipient, or the reporter.
    """

    __tablename__ = "activity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    kind: Mapped[ActivityKind] = mapped_column(enum_type(ActivityKind), nullable=False)
    counterpart_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_activity_events_account_kind_time", "account_id", "kind", "created_at"),)
