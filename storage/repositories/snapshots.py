"""
Volume Snapshot Repository.

============================================================
PURPOSE
============================================================
Data access for the append-only volume snapshot log.

- Insert single rows or batches
- Point lookups: latest, earliest, latest at or before a time
- Bulk lookups of the latest row per uid in one query
- Latest row per (exchange, uid) for volume statistics

No update or delete methods exist: snapshots are immutable.

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, asc, desc, func, select
from sqlalchemy.orm import Session

from storage.models.verification import VolumeSnapshot
from storage.repositories.base import BaseRepository


class VolumeSnapshotRepository(BaseRepository[VolumeSnapshot]):
    """
    Repository for VolumeSnapshot rows.

    Datetimes passed in must already be naive UTC.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, VolumeSnapshot, "VolumeSnapshotRepository")

    # =========================================================
    # INSERT
    # =========================================================

    def add(
        self,
        uid: str,
        exchange: str,
        total_volume: Decimal,
        deposit_amount: Optional[Decimal] = None,
        influencer: Optional[str] = None,
        exchange_ref_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> VolumeSnapshot:
        snapshot = VolumeSnapshot(
            uid=uid,
            exchange=exchange,
            total_volume=total_volume,
            deposit_amount=deposit_amount,
            influencer=influencer,
            exchange_ref_id=exchange_ref_id,
        )
        if created_at is not None:
            snapshot.created_at = created_at
        return self._add(snapshot)

    def add_many(self, snapshots: Sequence[VolumeSnapshot]) -> List[VolumeSnapshot]:
        if not snapshots:
            return []
        return self._add_all(snapshots)

    # =========================================================
    # POINT LOOKUPS
    # =========================================================

    def get_latest(self, uid: str, exchange: str) -> Optional[VolumeSnapshot]:
        stmt = (
            select(VolumeSnapshot)
            .where(and_(VolumeSnapshot.uid == uid, VolumeSnapshot.exchange == exchange))
            .order_by(desc(VolumeSnapshot.created_at), desc(VolumeSnapshot.id))
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def get_latest_at_or_before(
        self,
        uid: str,
        exchange: str,
        at: datetime,
    ) -> Optional[VolumeSnapshot]:
        stmt = (
            select(VolumeSnapshot)
            .where(
                and_(
                    VolumeSnapshot.uid == uid,
                    VolumeSnapshot.exchange == exchange,
                    VolumeSnapshot.created_at <= at,
                )
            )
            .order_by(desc(VolumeSnapshot.created_at), desc(VolumeSnapshot.id))
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def get_earliest(self, uid: str, exchange: str) -> Optional[VolumeSnapshot]:
        stmt = (
            select(VolumeSnapshot)
            .where(and_(VolumeSnapshot.uid == uid, VolumeSnapshot.exchange == exchange))
            .order_by(asc(VolumeSnapshot.created_at), asc(VolumeSnapshot.id))
            .limit(1)
        )
        return self._execute_scalar(stmt)

    # =========================================================
    # BULK LOOKUPS
    # =========================================================

    def get_latest_at_or_before_many(
        self,
        uids: Iterable[str],
        exchange: str,
        at: datetime,
    ) -> Dict[str, VolumeSnapshot]:
        """
        Latest snapshot at or before `at` for every uid, in one query.

        Uids without a qualifying snapshot are absent from the result.
        """
        uid_list = list(dict.fromkeys(uids))
        if not uid_list:
            return {}

        ranked = (
            select(
                VolumeSnapshot.id.label("snapshot_id"),
                func.row_number()
                .over(
                    partition_by=VolumeSnapshot.uid,
                    order_by=(desc(VolumeSnapshot.created_at), desc(VolumeSnapshot.id)),
                )
                .label("rank"),
            )
            .where(
                and_(
                    VolumeSnapshot.uid.in_(uid_list),
                    VolumeSnapshot.exchange == exchange,
                    VolumeSnapshot.created_at <= at,
                )
            )
            .subquery()
        )

        stmt = (
            select(VolumeSnapshot)
            .join(ranked, VolumeSnapshot.id == ranked.c.snapshot_id)
            .where(ranked.c.rank == 1)
        )

        return {snapshot.uid: snapshot for snapshot in self._execute_query(stmt)}

    def get_latest_per_uid(self, exchange: Optional[str] = None) -> List[VolumeSnapshot]:
        """
        Newest snapshot of every (exchange, uid) pair, in one query.

        Restricted to one exchange when `exchange` is given. Rows
        come back ordered by exchange then uid.
        """
        ranked = select(
            VolumeSnapshot.id.label("snapshot_id"),
            func.row_number()
            .over(
                partition_by=(VolumeSnapshot.exchange, VolumeSnapshot.uid),
                order_by=(desc(VolumeSnapshot.created_at), desc(VolumeSnapshot.id)),
            )
            .label("rank"),
        )
        if exchange is not None:
            ranked = ranked.where(VolumeSnapshot.exchange == exchange)
        ranked = ranked.subquery()

        stmt = (
            select(VolumeSnapshot)
            .join(ranked, VolumeSnapshot.id == ranked.c.snapshot_id)
            .where(ranked.c.rank == 1)
            .order_by(asc(VolumeSnapshot.exchange), asc(VolumeSnapshot.uid))
        )

        return self._execute_query(stmt)
