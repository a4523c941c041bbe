"""
Trading Volume Statistics Tests.

============================================================
TEST CATEGORIES
============================================================
- Recorded figures from the snapshot log
- Exchange side totals and their failure modes
- Filtering, ordering and grand totals
- Lifetime volume lookups
- Verifier wiring

============================================================
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.exceptions import CapabilityUnavailableError, ExchangeNotConfiguredError
from exchange_clients.base import ExchangeClient, VolumeResult
from exchange_clients.mock import MockExchangeClient
from verification.statistics import (
    REASON_FETCH_FAILED,
    REASON_MISSING_CREDENTIALS,
    TradingVolumeStatistics,
    TradingVolumeStats,
    format_volume,
)
from verification.verifier import VolumeVerifier


class ListingClient(ExchangeClient):
    """Client double that lists invitees."""

    client_type = "listing"
    lists_invitees = True

    def __init__(self, exchange_id, invitees=None, credentials=True):
        super().__init__(exchange_id)
        self.invitees = invitees or []
        self.credentials = credentials
        self.fetches = 0

    @property
    def has_credentials(self):
        return self.credentials

    async def get_volume(self, uid, deposit_threshold=None):
        return VolumeResult(volume=0)

    async def fetch_invitees(self):
        self.fetches += 1
        return self.invitees

    async def total_trading_volume(self, uid):
        return 4321.0


@pytest.fixture
def recorded(snapshot_store, clock):
    """blofin: a traded 600 in the window, b has one snapshot. demo: c."""
    now = clock.now()
    snapshot_store.save("a", "blofin", 1000, exchange_ref_id=3, created_at=now - timedelta(days=40))
    snapshot_store.save("a", "blofin", 1600, exchange_ref_id=3, created_at=now - timedelta(days=1))
    snapshot_store.save("b", "blofin", 400, created_at=now - timedelta(days=10))
    snapshot_store.save("c", "demo", 5000, created_at=now - timedelta(days=2))
    return snapshot_store


def _statistics(store, clock, clients=None, exchanges=()):
    return TradingVolumeStatistics(store, clients or {}, exchanges=exchanges, clock=clock)


# ============================================================
# FORMATTING
# ============================================================

@pytest.mark.parametrize(
    "value, expected",
    [
        (0, "0"),
        (1000, "1,000"),
        (1234.5, "1,234.5"),
        (1234.567, "1,234.57"),
        (Decimal("2500.10"), "2,500.1"),
        ("9876543.21", "9,876,543.21"),
        (-0.001, "0"),
        (None, "0"),
        ("n/a", "0"),
        (float("inf"), "0"),
    ],
)
def test_format_volume(value, expected):
    assert format_volume(value) == expected


# ============================================================
# RECORDED FIGURES
# ============================================================

class TestRecordedFigures:
    """Tests for figures taken from the snapshot log."""

    @pytest.mark.asyncio
    async def test_latest_snapshot_per_uid_is_summed(self, recorded, clock):
        stats = await _statistics(recorded, clock).collect()

        assert [entry.exchange for entry in stats.exchanges] == ["demo", "blofin"]
        blofin = stats.exchanges[1]
        assert blofin.total_volume == 2000
        assert blofin.account_count == 2
        assert blofin.window_volume == 600
        assert blofin.exchange_db_id == 3
        assert blofin.last_snapshot_at == (clock.now() - timedelta(days=1)).replace(tzinfo=None)
        assert stats.grand_total_volume == 7000
        assert stats.grand_total_accounts == 3

    @pytest.mark.asyncio
    async def test_to_dict_formats_values(self, recorded, clock):
        data = (await _statistics(recorded, clock).collect()).to_dict()

        blofin = data["exchanges"][1]
        assert blofin["total_volume_formatted"] == "2,000"
        assert blofin["last_snapshot_at"] == "2023-12-31T00:00:00Z"
        assert blofin["exchange_total_available"] is False
        assert blofin["exchange_total_volume_formatted"] is None
        assert data["grand_total_volume_formatted"] == "7,000"
        assert data["grand_exchange_volume_formatted"] is None
        assert data["grand_exchange_invitees"] is None

    @pytest.mark.asyncio
    async def test_without_store(self, clock):
        stats = await _statistics(None, clock).collect()

        assert stats.exchanges == []
        assert stats.to_dict()["grand_total_volume"] == 0

    @pytest.mark.asyncio
    async def test_filter_by_exchange(self, recorded, clock):
        other = ListingClient("other", invitees=[{"uid": "x", "totalTradingVolume": 1}])

        stats = await _statistics(recorded, clock, clients={"other": other}).collect("blofin")

        assert [entry.exchange for entry in stats.exchanges] == ["blofin"]
        assert other.fetches == 0

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, clock):
        store = MagicMock()
        store.latest_per_uid.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await _statistics(store, clock).collect()


# ============================================================
# EXCHANGE TOTALS
# ============================================================

class TestExchangeTotals:
    """Tests for totals reported by the exchanges."""

    @pytest.mark.asyncio
    async def test_listing_client_totals(self, recorded, clock):
        client = ListingClient("blofin", invitees=[
            {"uid": "a", "totalTradingVolume": "12000.5"},
            {"uid": "z", "totalTradingVolume": "n/a"},
        ])
        clients = {"blofin": client, "demo": MockExchangeClient("demo")}

        stats = await _statistics(recorded, clock, clients=clients).collect()

        blofin = next(entry for entry in stats.exchanges if entry.exchange == "blofin")
        demo = next(entry for entry in stats.exchanges if entry.exchange == "demo")
        assert blofin.exchange_total_available is True
        assert blofin.exchange_total_volume == 12000.5
        assert blofin.exchange_invitee_count == 2
        assert blofin.exchange_totals_fetched_at == clock.now()
        assert demo.exchange_total_available is False
        assert demo.unavailable_reason is None
        assert stats.exchange_totals_available_count == 1
        assert stats.grand_exchange_volume == 12000.5
        assert stats.grand_exchange_invitees == 2
        assert stats.to_dict()["grand_exchange_volume_formatted"] == "12,000.5"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, clock):
        client = ListingClient("blofin", credentials=False)

        stats = await _statistics(None, clock, clients={"blofin": client}).collect()

        assert client.fetches == 0
        assert stats.exchanges[0].exchange_total_available is False
        assert stats.exchanges[0].unavailable_reason == REASON_MISSING_CREDENTIALS

    @pytest.mark.asyncio
    async def test_fetch_failure_only_affects_that_exchange(self, clock):
        broken = ListingClient("broken")
        broken.fetch_invitees = AsyncMock(side_effect=RuntimeError("timeout"))
        healthy = ListingClient("healthy", invitees=[{"uid": "1", "totalTradingVolume": 5}])

        stats = await _statistics(None, clock, clients={"broken": broken, "healthy": healthy}).collect()

        by_id = {entry.exchange: entry for entry in stats.exchanges}
        assert by_id["broken"].unavailable_reason == REASON_FETCH_FAILED
        assert by_id["broken"].to_dict()["exchange_invitee_count"] is None
        assert by_id["healthy"].exchange_total_volume == 5

    @pytest.mark.asyncio
    async def test_client_only_exchange_uses_metadata(self, clock):
        client = ListingClient("bx", invitees=[])
        exchanges = [{"id": "bx", "name": "Bitunix", "database_id": 9}]

        stats = await _statistics(None, clock, clients={"bx": client}, exchanges=exchanges).collect()

        entry = stats.exchanges[0]
        assert (entry.name, entry.exchange_db_id) == ("Bitunix", 9)
        assert entry.account_count == 0
        assert entry.exchange_invitee_count == 0
        assert stats.grand_exchange_invitees == 0

    def test_empty_stats(self):
        stats = TradingVolumeStats()

        assert stats.grand_exchange_invitees is None
        assert stats.to_dict()["exchanges"] == []


# ============================================================
# LIFETIME VOLUME
# ============================================================

class TestLifetimeVolume:
    """Tests for lifetime_volume."""

    @pytest.mark.asyncio
    async def test_listing_client(self, clock):
        clients = {"blofin": ListingClient("blofin")}

        assert await _statistics(None, clock, clients=clients).lifetime_volume("a", "blofin") == 4321.0

    @pytest.mark.asyncio
    async def test_unknown_exchange(self, clock):
        with pytest.raises(ExchangeNotConfiguredError):
            await _statistics(None, clock).lifetime_volume("a", "nope")

    @pytest.mark.asyncio
    async def test_client_without_listing(self, clock):
        clients = {"demo": MockExchangeClient("demo")}

        with pytest.raises(CapabilityUnavailableError):
            await _statistics(None, clock, clients=clients).lifetime_volume("a", "demo")


# ============================================================
# VERIFIER WIRING
# ============================================================

class TestVerifierStatistics:
    """Tests for VolumeVerifier.get_trading_volume_stats and get_lifetime_volume."""

    def _verifier(self, snapshot_store, clock):
        config = {
            "verification": {
                "defaultExchange": "demo",
                "exchanges": {"demo": {"type": "mock", "name": "Demo", "id": 4, "volumes": {"trader": 1500}}},
            },
        }
        return VolumeVerifier(config, snapshot_store=snapshot_store, clock=clock)

    @pytest.mark.asyncio
    async def test_verified_uid_is_counted(self, snapshot_store, clock):
        verifier = self._verifier(snapshot_store, clock)
        await verifier.verify("trader")

        stats = await verifier.get_trading_volume_stats()

        entry = stats.exchanges[0]
        assert (entry.exchange, entry.name, entry.exchange_db_id) == ("demo", "Demo", 4)
        assert entry.total_volume == 1500
        assert entry.account_count == 1

    @pytest.mark.asyncio
    async def test_unknown_exchange(self, snapshot_store, clock):
        verifier = self._verifier(snapshot_store, clock)

        with pytest.raises(ExchangeNotConfiguredError):
            await verifier.get_trading_volume_stats("nope")

    @pytest.mark.asyncio
    async def test_lifetime_volume_on_mock_exchange(self, snapshot_store, clock):
        verifier = self._verifier(snapshot_store, clock)

        with pytest.raises(CapabilityUnavailableError):
            await verifier.get_lifetime_volume("trader")
