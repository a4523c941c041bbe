"""
Volume Snapshot Store.

============================================================
PURPOSE
============================================================
Service facade over the append-only volume snapshot log.

Exchanges report cumulative trading volume per invitee. The
store records those observations and derives the volume
traded inside a window as the difference between two
observations.

============================================================
DELTA RULES
============================================================
volume_between(uid, exchange, start, end):
- latest = newest snapshot at or before end (default now)
- old    = newest snapshot at or before start
- 0 when either is missing or both are the same row
- otherwise max(0, latest - old)

volume_last_30_days(uid, exchange):
- 0 without snapshots
- delta against the newest snapshot at or before now - 30d
- else delta against the earliest snapshot ever
- the raw latest total when only one snapshot exists

Times are datetimes (naive = UTC) or epoch milliseconds.

============================================================
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from core.clock import ClockProtocol, SystemClock, from_epoch_ms, to_naive_utc
from storage.database import session_scope
from storage.models.verification import VolumeSnapshot
from storage.repositories.snapshots import VolumeSnapshotRepository


logger = logging.getLogger(__name__)


LAST_30_DAYS = timedelta(days=30)


def _to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return number if number.is_finite() else Decimal("0")


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else _to_decimal(value)


def _to_naive_datetime(value: Any) -> Optional[datetime]:
    """Normalise a datetime or epoch milliseconds to naive UTC, None if invalid."""
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        return to_naive_utc(from_epoch_ms(int(value)))
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _delta(latest: Optional[VolumeSnapshot], old: Optional[VolumeSnapshot]) -> float:
    if latest is None or old is None or latest.id == old.id:
        return 0.0
    return float(max(Decimal("0"), _to_decimal(latest.total_volume) - _to_decimal(old.total_volume)))


class VolumeSnapshotStore:
    """
    Snapshot store used by exchange clients, the verifier and
    the compliance monitor.

    Every call runs in its own session scope.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _now(self) -> datetime:
        return to_naive_utc(self._clock.now())

    # =========================================================
    # WRITES
    # =========================================================

    def save(
        self,
        uid: str,
        exchange: str,
        total_volume: Any,
        deposit_amount: Any = None,
        influencer: Optional[str] = None,
        exchange_ref_id: Optional[int] = None,
        created_at: Any = None,
    ) -> VolumeSnapshot:
        """Append one observation."""
        timestamp = _to_naive_datetime(created_at) if created_at is not None else None

        with session_scope(self._session_factory) as session:
            snapshot = VolumeSnapshotRepository(session).add(
                uid=str(uid),
                exchange=exchange,
                total_volume=_to_decimal(total_volume),
                deposit_amount=_optional_decimal(deposit_amount),
                influencer=influencer,
                exchange_ref_id=exchange_ref_id,
                created_at=timestamp or self._now(),
            )

        logger.debug(f"Saved snapshot uid={uid} exchange={exchange} total_volume={total_volume}")
        return snapshot

    def save_batch(self, rows: Iterable[Mapping[str, Any]]) -> List[VolumeSnapshot]:
        """
        Bulk insert observations in a single transaction.

        Each row carries uid, exchange, total_volume and optionally
        deposit_amount, influencer and exchange_ref_id.
        """
        rows = list(rows or [])
        if not rows:
            return []

        now = self._now()
        snapshots = [
            VolumeSnapshot(
                uid=str(row["uid"]),
                exchange=row["exchange"],
                total_volume=_to_decimal(row.get("total_volume")),
                deposit_amount=_optional_decimal(row.get("deposit_amount")),
                influencer=row.get("influencer"),
                exchange_ref_id=row.get("exchange_ref_id"),
                created_at=now,
            )
            for row in rows
        ]

        with session_scope(self._session_factory) as session:
            saved = VolumeSnapshotRepository(session).add_many(snapshots)

        logger.info(f"Saved {len(saved)} snapshots in batch")
        return saved

    # =========================================================
    # READS
    # =========================================================

    def latest(self, uid: str, exchange: str) -> Optional[VolumeSnapshot]:
        with session_scope(self._session_factory) as session:
            return VolumeSnapshotRepository(session).get_latest(uid, exchange)

    def volume_between(
        self,
        uid: str,
        exchange: str,
        start: Any,
        end: Any = None,
    ) -> float:
        """Volume traded between start and end (default now), clamped to zero."""
        start_at = _to_naive_datetime(start)
        end_at = _to_naive_datetime(end) if end is not None else self._now()

        if start_at is None or end_at is None:
            logger.warning(f"Invalid time window for UID {uid}: start={start!r} end={end!r}")
            return 0.0

        with session_scope(self._session_factory) as session:
            repo = VolumeSnapshotRepository(session)
            latest = repo.get_latest_at_or_before(uid, exchange, end_at)
            if latest is None:
                return 0.0
            old = repo.get_latest_at_or_before(uid, exchange, start_at)
            return _delta(latest, old)

    def volume_last_30_days(self, uid: str, exchange: str) -> float:
        now = self._now()

        with session_scope(self._session_factory) as session:
            repo = VolumeSnapshotRepository(session)
            latest = repo.get_latest(uid, exchange)
            if latest is None:
                return 0.0

            old = repo.get_latest_at_or_before(uid, exchange, now - LAST_30_DAYS)
            if old is not None:
                return _delta(latest, old)

            earliest = repo.get_earliest(uid, exchange)
            if earliest is None or earliest.id == latest.id:
                return float(max(Decimal("0"), _to_decimal(latest.total_volume)))
            return _delta(latest, earliest)

    def volume_between_batch(
        self,
        uids: Iterable[str],
        exchange: str,
        start: Any,
        end: Any = None,
    ) -> Dict[str, float]:
        """volume_between for many uids using two bulk queries."""
        uid_list = list(dict.fromkeys(uids or []))
        if not uid_list:
            return {}

        start_at = _to_naive_datetime(start)
        end_at = _to_naive_datetime(end) if end is not None else self._now()
        if start_at is None or end_at is None:
            logger.warning(f"Invalid time window for batch calculation: start={start!r} end={end!r}")
            return {}

        with session_scope(self._session_factory) as session:
            repo = VolumeSnapshotRepository(session)
            latest_by_uid = repo.get_latest_at_or_before_many(uid_list, exchange, end_at)
            old_by_uid = repo.get_latest_at_or_before_many(uid_list, exchange, start_at)

        return {
            uid: _delta(latest_by_uid.get(uid), old_by_uid.get(uid))
            for uid in uid_list
        }

    def latest_per_uid(self, exchange: Optional[str] = None) -> List[VolumeSnapshot]:
        """Newest snapshot of every (exchange, uid), optionally for one exchange."""
        with session_scope(self._session_factory) as session:
            return VolumeSnapshotRepository(session).get_latest_per_uid(exchange)
