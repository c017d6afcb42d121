"""
Device fingerprint and binding models.

A fingerprint is one physical device/install as reported by the mobile
collector. Each (device, account) pair is a binding row; the set of bindings
of a device is its account list. A device may bind many accounts, and the
correlator treats fast or overlapping bindings as abuse signals.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, utcnow


class DeviceFingerprint(Base):
    """A device/install seen by the fingerprint collector."""

    __tablename__ = "device_fingerprints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    install_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    os_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    app_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<DeviceFingerprint(device={self.device_id}, platform={self.platform})>"


class DeviceBinding(Base):
    """One account bound to one device."""

    __tablename__ = "device_bindings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fingerprint_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("device_fingerprints.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    install_id: Mapped[str] = mapped_column(String(255), nullable=False)
    first_bound_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("fingerprint_id", "account_id", name="uq_device_bindings_device_account"),
        Index("ix_device_bindings_account", "account_id"),
        Index("ix_device_bindings_device_time", "fingerprint_id", "last_seen_at"),
    )
