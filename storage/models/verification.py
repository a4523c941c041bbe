"""
Verification Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for affiliate verification data: the grants handed
out after a successful verification and the append-only log
of trading volume observations used for compliance checks.

============================================================
DATA LIFECYCLE ROLE
============================================================
VerifiedGrant
- Mutability: MUTABLE (warning stamp), deleted on revocation
- Source: VerifiedGrantRepository.save_grant
- Consumers: TradingVolumeMonitor, chat integrations

VolumeSnapshot
- Mutability: IMMUTABLE (append-only)
- Source: Exchange clients, VolumeVerifier
- Consumers: VolumeSnapshotStore delta queries

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VerifiedGrant(Base, TimestampMixin):
    """
    Access grant for one UID within one influencer program.

    ============================================================
    IDENTITY RULES
    ============================================================
    user_id, telegram_id and discord_user_id are immutable once
    populated. Empty identity fields may be filled by later saves.

    verified_at and volume_warning_date are epoch milliseconds.
    ============================================================
    """

    __tablename__ = "verified_grants"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    influencer: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Influencer program scope"
    )

    uid: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Exchange account identifier"
    )

    exchange: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Exchange config key"
    )

    exchange_ref_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    telegram_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    discord_user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    guild_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Discord guild the role was granted in"
    )

    verified_at: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Start of the compliance window (epoch ms)"
    )

    volume_warning_date: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Last volume warning issued (epoch ms)"
    )

    __table_args__ = (
        UniqueConstraint("influencer", "uid", name="uq_verified_grants_influencer_uid"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerifiedGrant(id={self.id}, influencer={self.influencer}, "
            f"uid={self.uid}, exchange={self.exchange})>"
        )


class VolumeSnapshot(Base):
    """
    Cumulative trading volume observed for a UID at a point in time.

    Rows are never updated. Deltas between two snapshots give the
    volume traded in between.
    """

    __tablename__ = "volume_snapshots"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    uid: Mapped[str] = mapped_column(String(128), nullable=False)

    exchange: Mapped[str] = mapped_column(String(64), nullable=False)

    exchange_ref_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    influencer: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="Influencer scope the snapshot was recorded for"
    )

    total_volume: Mapped[Decimal] = mapped_column(
        Numeric(30, 8),
        nullable=False,
        default=Decimal("0"),
        comment="Cumulative trading volume"
    )

    deposit_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(30, 8),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=_utcnow_naive,
        comment="Observation time (naive UTC)"
    )

    __table_args__ = (
        Index("ix_volume_snapshots_uid_exchange_created", "uid", "exchange", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<VolumeSnapshot(id={self.id}, uid={self.uid}, exchange={self.exchange}, "
            f"total_volume={self.total_volume}, created_at={self.created_at})>"
        )
