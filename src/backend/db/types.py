"""
SQLAlchemy type decorators shared by the models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, TypeDecorator
from sqlalchemy import Enum as SAEnum


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp column.

    Values are normalized to UTC before binding and always come back aware,
    even on backends (SQLite) that store timestamps without an offset. Window
    queries and SLA comparisons rely on every timestamp being comparable.

    Usage in models:
        raised_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        """Reject naive datetimes and convert aware ones to UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime bound to a UTCDateTime column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        """Attach UTC to naive values read back from the database."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def enum_type(enum_cls: type[Enum], length: int = 32) -> SAEnum:
    """
    Portable string column for a ``str`` Enum, storing member values.

    Stored as VARCHAR (no native database enum) so new members and the
    versioned state migrations never need an ALTER TYPE.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
