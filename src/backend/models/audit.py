"""
Admin audit log model.

Immutable record of every privileged action (and every denied attempt at
one). The repository only exposes insert and read; there is no update or
delete path anywhere in the codebase.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, enum_type, utcnow


class AdminAction(str, Enum):
    REVIEW_APPROVE = "review_approve"
    REVIEW_REJECT = "review_reject"
    REVIEW_REQUEST_REVERIFICATION = "review_request_reverification"
    CAPABILITY_DENIED = "capability_denied"


class AdminAuditLogEntry(Base):
    __tablename__ = "admin_audit_log"

    # Monotonic id doubles as the pagination cursor
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action: Mapped[AdminAction] = mapped_column(enum_type(AdminAction, length=40), nullable=False)
    target_account_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_admin_audit_log_actor_time", "actor_id", "created_at"),
        Index("ix_admin_audit_log_target_time", "target_account_id", "created_at"),
        Index("ix_admin_audit_log_action_time", "action", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AdminAuditLogEntry(id={self.id}, actor={self.actor_id}, action={self.action})>"
