"""
Trading Volume Statistics.

============================================================
PURPOSE
============================================================
Per exchange summary of the trading volume the program has
recorded, set against the totals the exchanges themselves
report for every invitee.

============================================================
FIGURES
============================================================
Recorded (from the snapshot log):
- total_volume    sum of the newest snapshot of every uid
- account_count   uids with at least one snapshot
- window_volume   volume traded by those uids in the last
                  30 days (snapshot deltas)

Exchange side (clients with lists_invitees only):
- exchange_total_volume   sum of totalTradingVolume over
                          every invitee
- exchange_invitee_count  invitees returned

A client without credentials reports the exchange side as
unavailable with reason "missing_credentials"; a failed fetch
is logged and reported with reason "fetch_failed".

Exchanges are ordered by recorded total volume, largest first.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core.clock import ClockProtocol, SystemClock, to_naive_utc
from core.exceptions import CapabilityUnavailableError, ExchangeNotConfiguredError
from exchange_clients.base import ExchangeClient, to_float


logger = logging.getLogger(__name__)


STATISTICS_WINDOW = timedelta(days=30)

REASON_MISSING_CREDENTIALS = "missing_credentials"
REASON_FETCH_FAILED = "fetch_failed"


def format_volume(value: Any) -> str:
    """Thousands separated, at most two decimals, trailing zeros dropped."""
    text = f"{to_float(value):,.2f}"
    text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ExchangeVolumeStats:
    """Figures for one exchange."""

    exchange: str
    exchange_db_id: Optional[int] = None
    name: Optional[str] = None

    total_volume: float = 0.0
    account_count: int = 0
    last_snapshot_at: Optional[datetime] = None
    window_volume: float = 0.0

    exchange_total_available: bool = False
    exchange_total_volume: float = 0.0
    exchange_invitee_count: Optional[int] = None
    exchange_totals_fetched_at: Optional[datetime] = None
    unavailable_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        available = self.exchange_total_available
        return {
            "exchange": self.exchange,
            "exchange_db_id": self.exchange_db_id,
            "name": self.name,
            "total_volume": self.total_volume,
            "total_volume_formatted": format_volume(self.total_volume),
            "account_count": self.account_count,
            "last_snapshot_at": _iso(self.last_snapshot_at),
            "window_volume": self.window_volume,
            "window_volume_formatted": format_volume(self.window_volume),
            "exchange_total_available": available,
            "exchange_total_volume": self.exchange_total_volume if available else 0.0,
            "exchange_total_volume_formatted": format_volume(self.exchange_total_volume) if available else None,
            "exchange_invitee_count": self.exchange_invitee_count if available else None,
            "exchange_totals_fetched_at": _iso(self.exchange_totals_fetched_at),
            "unavailable_reason": self.unavailable_reason,
        }


@dataclass
class TradingVolumeStats:
    """Statistics across exchanges with grand totals."""

    exchanges: List[ExchangeVolumeStats] = field(default_factory=list)

    @property
    def grand_total_volume(self) -> float:
        return sum(entry.total_volume for entry in self.exchanges)

    @property
    def grand_total_accounts(self) -> int:
        return sum(entry.account_count for entry in self.exchanges)

    @property
    def exchange_totals_available_count(self) -> int:
        return sum(1 for entry in self.exchanges if entry.exchange_total_available)

    @property
    def grand_exchange_volume(self) -> float:
        return sum(entry.exchange_total_volume for entry in self.exchanges if entry.exchange_total_available)

    @property
    def grand_exchange_invitees(self) -> Optional[int]:
        """None when no exchange reported its totals."""
        if not self.exchange_totals_available_count:
            return None
        return sum(
            entry.exchange_invitee_count or 0
            for entry in self.exchanges
            if entry.exchange_total_available
        )

    def to_dict(self) -> Dict[str, Any]:
        has_exchange_totals = self.exchange_totals_available_count > 0
        return {
            "exchanges": [entry.to_dict() for entry in self.exchanges],
            "grand_total_volume": self.grand_total_volume,
            "grand_total_volume_formatted": format_volume(self.grand_total_volume),
            "grand_total_accounts": self.grand_total_accounts,
            "exchange_totals_available_count": self.exchange_totals_available_count,
            "grand_exchange_volume": self.grand_exchange_volume,
            "grand_exchange_volume_formatted": (
                format_volume(self.grand_exchange_volume) if has_exchange_totals else None
            ),
            "grand_exchange_invitees": self.grand_exchange_invitees,
        }


# ============================================================
# COLLECTOR
# ============================================================

class TradingVolumeStatistics:
    """
    Builds TradingVolumeStats from the snapshot log and the
    exchange clients.

    Args:
        snapshot_store: VolumeSnapshotStore (None yields no recorded figures)
        clients: Exchange id to client mapping
        exchanges: Exchange metadata as returned by
            VolumeVerifier.get_exchanges()
        clock: Clock for the window start and fetch stamps
    """

    def __init__(
        self,
        snapshot_store: Any,
        clients: Mapping[str, ExchangeClient],
        exchanges: Sequence[Mapping[str, Any]] = (),
        clock: Optional[ClockProtocol] = None,
    ):
        self._snapshot_store = snapshot_store
        self._clients = clients
        self._metadata = {entry["id"]: entry for entry in exchanges}
        self._clock = clock or SystemClock()

    async def collect(self, exchange_id: Optional[str] = None) -> TradingVolumeStats:
        """
        Gather statistics for every exchange, or only `exchange_id`.

        Snapshot store errors propagate; exchange fetch errors
        only mark that exchange's totals as unavailable.
        """
        scope = exchange_id or "all"
        logger.info(f"Fetching trading volume statistics. scope={scope}")

        by_exchange: Dict[str, ExchangeVolumeStats] = {}
        self._add_recorded(by_exchange, exchange_id)

        for client_id, client in self._clients.items():
            if exchange_id and client_id != exchange_id:
                continue
            if not client.lists_invitees:
                logger.debug(f"Aggregate trading volume unavailable for {client_id} ({client.client_type}).")
                continue
            entry = self._entry(by_exchange, client_id)
            await self._add_exchange_totals(entry, client)

        exchanges = sorted(by_exchange.values(), key=lambda entry: entry.total_volume, reverse=True)
        stats = TradingVolumeStats(exchanges=exchanges)

        logger.info(
            f"Trading volume statistics ready. scope={scope} exchanges={len(exchanges)} "
            f"accounts={stats.grand_total_accounts} volume={stats.grand_total_volume}"
        )
        return stats

    def _entry(self, by_exchange: Dict[str, ExchangeVolumeStats], exchange: str) -> ExchangeVolumeStats:
        entry = by_exchange.get(exchange)
        if entry is None:
            meta = self._metadata.get(exchange, {})
            entry = ExchangeVolumeStats(
                exchange=exchange,
                exchange_db_id=meta.get("database_id"),
                name=meta.get("name"),
            )
            by_exchange[exchange] = entry
        return entry

    def _add_recorded(self, by_exchange: Dict[str, ExchangeVolumeStats], exchange_id: Optional[str]) -> None:
        if self._snapshot_store is None:
            return

        uids_by_exchange: Dict[str, List[str]] = {}
        for snapshot in self._snapshot_store.latest_per_uid(exchange_id):
            entry = self._entry(by_exchange, snapshot.exchange)
            if entry.exchange_db_id is None:
                entry.exchange_db_id = snapshot.exchange_ref_id
            entry.total_volume += float(max(Decimal("0"), snapshot.total_volume or Decimal("0")))
            entry.account_count += 1
            if entry.last_snapshot_at is None or snapshot.created_at > entry.last_snapshot_at:
                entry.last_snapshot_at = snapshot.created_at
            uids_by_exchange.setdefault(snapshot.exchange, []).append(snapshot.uid)

        window_start = self._clock.now() - STATISTICS_WINDOW
        for exchange, uids in uids_by_exchange.items():
            deltas = self._snapshot_store.volume_between_batch(uids, exchange, window_start)
            by_exchange[exchange].window_volume = sum(deltas.values())

    async def _add_exchange_totals(self, entry: ExchangeVolumeStats, client: ExchangeClient) -> None:
        if not client.has_credentials:
            logger.warning(f"Aggregate volume for {entry.exchange} unavailable due to missing credentials.")
            entry.unavailable_reason = REASON_MISSING_CREDENTIALS
            return

        try:
            invitees = await client.fetch_invitees()
        except Exception as e:
            logger.error(f"Failed to fetch aggregate trading volume for {entry.exchange}: {e}")
            entry.unavailable_reason = REASON_FETCH_FAILED
            return

        entry.exchange_total_available = True
        entry.exchange_total_volume = sum(to_float(invitee.get("totalTradingVolume")) for invitee in invitees)
        entry.exchange_invitee_count = len(invitees)
        entry.exchange_totals_fetched_at = self._clock.now()
        logger.info(
            f"Aggregate volume for {entry.exchange} fetched: invitees={entry.exchange_invitee_count} "
            f"volume={entry.exchange_total_volume}"
        )

    async def lifetime_volume(self, uid: str, exchange_id: str) -> float:
        """Lifetime trading volume of one uid as reported by the exchange."""
        client = self._clients.get(exchange_id)
        if client is None:
            raise ExchangeNotConfiguredError(exchange_id)
        if not client.lists_invitees:
            raise CapabilityUnavailableError(exchange_id, "lifetime volume lookups")
        volume = await client.total_trading_volume(uid)
        logger.info(f"Lifetime trading volume for UID {uid} on {exchange_id}: {volume}")
        return volume
