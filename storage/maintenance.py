"""
Storage - Startup Maintenance.

============================================================
RESPONSIBILITY
============================================================
Repairs verified grant rows before the schema is synchronised
so the unique (influencer, uid) constraint can hold.

- Purges rows missing influencer or uid
- Merges duplicate (influencer, uid) groups into one keeper
- Never blocks startup: failures are logged

============================================================
KEEPER SELECTION
============================================================
Each row is scored by identity richness:
telegram_id +4, discord_user_id +4, user_id +2,
exchange_ref_id / guild_id / verified_at +1 each,
then updated_at (seconds) and id as tie breakers.
The keeper inherits empty merge fields from the discarded
rows and the latest verified_at.

============================================================
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Tuple

from sqlalchemy import and_, delete, func, inspect, or_, select, update
from sqlalchemy.engine import Connection, Engine

from storage.models.verification import VerifiedGrant


logger = logging.getLogger(__name__)


MERGE_FIELDS = (
    "exchange",
    "exchange_ref_id",
    "user_id",
    "telegram_id",
    "discord_user_id",
    "guild_id",
    "volume_warning_date",
)

_SCORE_WEIGHTS = (
    ("telegram_id", 4),
    ("discord_user_id", 4),
    ("user_id", 2),
    ("exchange_ref_id", 1),
    ("guild_id", 1),
    ("verified_at", 1),
)


@dataclass
class MaintenanceReport:
    """Outcome of a duplicate cleanup pass."""

    removed: int = 0
    """Rows deleted (orphaned keys plus merged duplicates)."""

    updated: int = 0
    """Keeper rows rewritten with merged values."""


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _timestamp_seconds(value: Any) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    try:
        return float(value) / 1000 if value else 0.0
    except (TypeError, ValueError):
        return 0.0


def score_record(record: Mapping[str, Any]) -> float:
    score = 0.0
    for field, weight in _SCORE_WEIGHTS:
        if _has_value(record.get(field)):
            score += weight
    score += _timestamp_seconds(record.get("updated_at"))
    score += float(record.get("id") or 0)
    return score


def merge_records(records: List[Mapping[str, Any]]) -> Tuple[Dict[str, Any], Dict[str, Any], List[Mapping[str, Any]]]:
    """
    Pick the keeper of a duplicate group and fold the others into it.

    Returns:
        (merged keeper, keeper as loaded, discarded rows)
    """
    ranked = sorted(records, key=score_record, reverse=True)
    original = dict(ranked[0])
    keeper = dict(original)
    duplicates = ranked[1:]

    for record in duplicates:
        for field in MERGE_FIELDS:
            if not _has_value(keeper.get(field)) and _has_value(record.get(field)):
                keeper[field] = record[field]

        candidate = record.get("verified_at")
        if _has_value(candidate):
            current = keeper.get("verified_at")
            if not _has_value(current) or int(candidate) > int(current):
                keeper["verified_at"] = candidate

    return keeper, original, duplicates


def remove_duplicate_grants(connection: Connection) -> MaintenanceReport:
    """
    Remove orphaned and duplicate grant rows inside the given connection.

    The caller owns the transaction.
    """
    report = MaintenanceReport()
    table = VerifiedGrant.__table__

    if not inspect(connection).has_table(table.name):
        logger.debug("Verified grants table not found; skipping duplicate cleanup")
        return report

    orphaned_ids = [
        row.id
        for row in connection.execute(
            select(table.c.id).where(or_(table.c.influencer.is_(None), table.c.uid.is_(None)))
        )
    ]
    if orphaned_ids:
        connection.execute(delete(table).where(table.c.id.in_(orphaned_ids)))
        report.removed += len(orphaned_ids)
        logger.warning(
            f"Removed {len(orphaned_ids)} verified grant rows missing influencer or uid: {orphaned_ids[:10]}"
        )

    groups = connection.execute(
        select(table.c.influencer, table.c.uid)
        .group_by(table.c.influencer, table.c.uid)
        .having(func.count() > 1)
    ).all()

    if not groups:
        logger.debug("No duplicate verified grant records detected")

    for influencer, uid in groups:
        records = [
            dict(row)
            for row in connection.execute(
                select(table).where(and_(table.c.influencer == influencer, table.c.uid == uid))
            ).mappings()
        ]
        if len(records) <= 1:
            continue

        keeper, original, duplicates = merge_records(records)

        updates = {
            field: keeper[field]
            for field in (*MERGE_FIELDS, "verified_at")
            if keeper.get(field) != original.get(field)
        }
        if updates:
            connection.execute(update(table).where(table.c.id == keeper["id"]).values(**updates))
            report.updated += 1

        duplicate_ids = [record["id"] for record in duplicates]
        if duplicate_ids:
            connection.execute(delete(table).where(table.c.id.in_(duplicate_ids)))
            report.removed += len(duplicate_ids)
            logger.warning(
                f"Removed duplicate verified grants for {influencer}/{uid}: "
                f"kept {keeper['id']}, removed {duplicate_ids}"
            )

    logger.info(
        f"Duplicate verified grant cleanup completed: removed={report.removed} updated={report.updated}"
    )
    return report


def run_startup_maintenance(engine: Engine) -> MaintenanceReport:
    """Run the cleanup in its own transaction. Never raises."""
    try:
        with engine.begin() as connection:
            return remove_duplicate_grants(connection)
    except Exception as e:
        logger.error(f"Startup maintenance failed, continuing startup: {e}", exc_info=True)
        return MaintenanceReport()
