"""
Behavior flag model.

Flags are raised by the behavior detector, the device/account correlator,
the attempt limiter and the trust score settlement. They are never updated or
deleted; an admin approval only moves the account's ``flags_reviewed_at``
marker so older flags stop carrying score penalties while staying queryable.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, enum_type, utcnow


class FlagType(str, Enum):
    RAPID_SWIPING = "rapid_swiping"
    MASS_MESSAGING = "mass_messaging"
    RAPID_ACCOUNT_CREATION = "rapid_account_creation"
    MULTI_REPORTER = "multi_reporter"
    SUSPICIOUS_PROFILE = "suspicious_profile"
    MULTI_ACCOUNT = "multi_account"


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Static severity table - one severity per flag type
FLAG_SEVERITY: dict[FlagType, FlagSeverity] = {
    FlagType.RAPID_SWIPING: FlagSeverity.MEDIUM,
    FlagType.MASS_MESSAGING: FlagSeverity.HIGH,
    FlagType.RAPID_ACCOUNT_CREATION: FlagSeverity.MEDIUM,
    FlagType.MULTI_REPORTER: FlagSeverity.HIGH,
    FlagType.SUSPICIOUS_PROFILE: FlagSeverity.MEDIUM,
    FlagType.MULTI_ACCOUNT: FlagSeverity.HIGH,
}


class BehaviorFlag(Base):
    """A raised abuse signal."""

    __tablename__ = "behavior_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    flag_type: Mapped[FlagType] = mapped_column(enum_type(FlagType), nullable=False)
    severity: Mapped[FlagSeverity] = mapped_column(enum_type(FlagSeverity), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    correlated_account_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    raised_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_behavior_flags_account_time", "account_id", "raised_at"),
        Index("ix_behavior_flags_account_type", "account_id", "flag_type"),
    )

    def __repr__(self) -> str:
        return f"<BehaviorFlag(account={self.account_id}, type={self.flag_type}, severity={self.severity})>"
