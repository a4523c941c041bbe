"""
ORM Declarative Base.

Every verifier table derives from Base. Datetime columns are
naive UTC so SQLite and PostgreSQL compare them alike, and
Decimal columns default to Numeric(30, 8), wide enough for
lifetime exchange volumes.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    type_annotation_map = {
        datetime: DateTime(timezone=False),
        Decimal: Numeric(30, 8),
    }


class TimestampMixin:
    """Row bookkeeping filled in by the database server clock."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
