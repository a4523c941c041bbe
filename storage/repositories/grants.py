"""
Verified Grant Repository.

============================================================
PURPOSE
============================================================
Data access for verified grants (one per influencer and uid).

============================================================
IDENTITY RULES
============================================================
- user_id, telegram_id and discord_user_id are never overwritten
- A save carrying a different non-empty identity raises
  VerifiedGrantConflictError
- Empty identity fields are filled by later saves
- Other metadata takes the new value when one is given

============================================================
"""

from typing import List, Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import ClockProtocol, SystemClock
from storage.models.verification import VerifiedGrant
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import VerifiedGrantConflictError


IDENTITY_FIELDS = ("user_id", "discord_user_id", "telegram_id")


def _as_text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class VerifiedGrantRepository(BaseRepository[VerifiedGrant]):
    """Repository for VerifiedGrant rows."""

    def __init__(self, session: Session, clock: Optional[ClockProtocol] = None) -> None:
        super().__init__(session, VerifiedGrant, "VerifiedGrantRepository")
        self._clock = clock or SystemClock()

    # =========================================================
    # QUERIES
    # =========================================================

    def list_grants(self) -> List[VerifiedGrant]:
        stmt = select(VerifiedGrant).order_by(VerifiedGrant.id)
        return self._execute_query(stmt)

    def get_grant(self, influencer: str, uid: str) -> Optional[VerifiedGrant]:
        stmt = select(VerifiedGrant).where(
            and_(VerifiedGrant.influencer == influencer, VerifiedGrant.uid == uid)
        )
        return self._execute_scalar(stmt)

    def find_by_identity(
        self,
        influencer: str,
        telegram_id: Optional[str] = None,
        discord_user_id: Optional[str] = None,
    ) -> Optional[VerifiedGrant]:
        """
        Find a grant of the influencer owned by the given chat identity.

        Returns None when neither identity is given.
        """
        conditions = [VerifiedGrant.influencer == influencer]
        if telegram_id:
            conditions.append(VerifiedGrant.telegram_id == str(telegram_id))
        if discord_user_id:
            conditions.append(VerifiedGrant.discord_user_id == str(discord_user_id))

        if len(conditions) == 1:
            return None

        stmt = select(VerifiedGrant).where(and_(*conditions)).order_by(VerifiedGrant.id)
        return self._execute_scalar(stmt)

    def is_user_verified(
        self,
        influencer: str,
        telegram_id: Optional[str] = None,
        discord_user_id: Optional[str] = None,
    ) -> bool:
        return self.find_by_identity(influencer, telegram_id, discord_user_id) is not None

    # =========================================================
    # MUTATIONS
    # =========================================================

    def save_grant(
        self,
        influencer: str,
        uid: str,
        exchange: Optional[str] = None,
        exchange_ref_id: Optional[int] = None,
        user_id: Optional[str] = None,
        telegram_id: Optional[str] = None,
        discord_user_id: Optional[str] = None,
        guild_id: Optional[str] = None,
        volume_warning_date: Optional[int] = None,
        verified_at: Optional[int] = None,
    ) -> VerifiedGrant:
        """
        Create the grant or merge metadata into the existing one.

        Raises:
            VerifiedGrantConflictError: A populated identity field differs
        """
        data = {
            "exchange": exchange,
            "exchange_ref_id": exchange_ref_id,
            "user_id": _as_text(user_id),
            "telegram_id": _as_text(telegram_id),
            "discord_user_id": _as_text(discord_user_id),
            "guild_id": _as_text(guild_id),
            "volume_warning_date": volume_warning_date,
        }

        existing = self.get_grant(influencer, uid)
        if existing is not None:
            return self._merge(existing, data)

        grant = VerifiedGrant(
            influencer=influencer,
            uid=uid,
            verified_at=verified_at or self._clock.now_ms(),
            **data,
        )

        try:
            with self._session.begin_nested():
                self._session.add(grant)
        except SQLAlchemyIntegrityError as e:
            # Another writer created the row between the lookup and the insert.
            existing = self.get_grant(influencer, uid)
            if existing is None:
                self._handle_db_error(e, "save_grant", {"field": "influencer,uid", "value": f"{influencer},{uid}"})
            self._raise_on_conflict(existing, data)
            self._logger.info(
                f"Verified UID {uid} for {influencer} already exists, "
                f"returning persisted record after unique constraint violation"
            )
            return existing
        except SQLAlchemyError as e:
            self._handle_db_error(e, "save_grant", {"influencer": influencer, "uid": uid})
            raise

        self._logger.info(f"Created new verified UID {uid} for {influencer}")
        return grant

    def set_warning_date(self, grant: VerifiedGrant, value: Optional[int]) -> VerifiedGrant:
        try:
            grant.volume_warning_date = value
            self._session.flush()
            return grant
        except SQLAlchemyError as e:
            self._handle_db_error(e, "set_warning_date", {"uid": grant.uid})
            raise

    def remove_grant(self, influencer: str, uid: str) -> int:
        """Delete the grant, returning the number of rows removed."""
        try:
            result = self._session.execute(
                delete(VerifiedGrant).where(
                    and_(VerifiedGrant.influencer == influencer, VerifiedGrant.uid == uid)
                )
            )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "remove_grant", {"influencer": influencer, "uid": uid})
            raise

        removed = result.rowcount or 0
        if removed:
            self._logger.info(f"Removed verified UID {uid} for influencer {influencer}")
        else:
            self._logger.warning(
                f"Attempted to remove UID {uid} for influencer {influencer}, but no record was found"
            )
        return removed

    # =========================================================
    # HELPERS
    # =========================================================

    def _raise_on_conflict(self, existing: VerifiedGrant, data: dict) -> None:
        conflicts = [
            field
            for field in IDENTITY_FIELDS
            if data.get(field)
            and getattr(existing, field)
            and str(getattr(existing, field)) != data[field]
        ]
        if conflicts:
            self._logger.warning(
                f"Attempt to overwrite verified UID {existing.uid} for {existing.influencer} "
                f"blocked due to conflicting identity fields: {', '.join(conflicts)}"
            )
            raise VerifiedGrantConflictError(self._repository_name, conflicts)

    def _merge(self, existing: VerifiedGrant, data: dict) -> VerifiedGrant:
        self._raise_on_conflict(existing, data)

        for field in ("exchange", "exchange_ref_id", "guild_id", "volume_warning_date"):
            if data[field] is not None:
                setattr(existing, field, data[field])

        for field in IDENTITY_FIELDS:
            if not getattr(existing, field) and data[field]:
                setattr(existing, field, data[field])

        if not existing.verified_at:
            existing.verified_at = self._clock.now_ms()

        try:
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "save_grant", {"uid": existing.uid})
            raise

        self._logger.info(
            f"Updated verified UID {existing.uid} for {existing.influencer} "
            f"without altering identity fields"
        )
        return existing
