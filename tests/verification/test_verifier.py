"""
Volume Verifier Tests.

============================================================
TEST CATEGORIES
============================================================
- Exchange resolution and configuration errors
- Minimum volume / deposit threshold policy
- Deposit fail-closed behaviour
- Snapshot persistence rules
- Refresh and metadata

============================================================
"""

import json
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.exceptions import (
    ConfigurationError,
    ExchangeNotConfiguredError,
    InvalidUidError,
    NoExchangesConfiguredError,
)
from exchange_clients.base import DepositResult, ExchangeClient, VolumeResult
from exchange_clients.bitunix import BitunixClient
from exchange_clients.factory import ClientFactory
from verification.verifier import VolumeVerifier


def _config(**overrides):
    verification = {
        "minimumVolume": 1000,
        "defaultExchange": "demo",
        "exchanges": {
            "demo": {"type": "mock", "volumes": {"trader": 1500, "small": 200}, "kolName": "kol", "id": 4},
        },
    }
    verification.update(overrides)
    return {"verification": verification}


class StubClient(ExchangeClient):
    """Client returning a fixed VolumeResult."""

    client_type = "stub"

    def __init__(self, exchange_id, result):
        super().__init__(exchange_id)
        self.result = result
        self.calls = []

    async def get_volume(self, uid, deposit_threshold=None):
        self.calls.append((uid, deposit_threshold))
        return self.result


def _factory_with(**creators):
    """ClientFactory subclass with extra creators, leaving the global registry untouched."""
    return type("TestClientFactory", (ClientFactory,), {"_creators": {**ClientFactory._creators, **creators}})


# ============================================================
# RESOLUTION
# ============================================================

class TestExchangeResolution:
    """Tests for exchange selection and configuration errors."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("uid", ["", None, 123])
    async def test_invalid_uid(self, uid):
        verifier = VolumeVerifier(_config())

        with pytest.raises(InvalidUidError):
            await verifier.verify(uid)

    @pytest.mark.asyncio
    async def test_no_exchanges(self):
        verifier = VolumeVerifier({"verification": {"exchanges": {}}})

        with pytest.raises(NoExchangesConfiguredError):
            await verifier.verify("trader")

    @pytest.mark.asyncio
    async def test_unknown_exchange(self):
        verifier = VolumeVerifier(_config())

        with pytest.raises(ExchangeNotConfiguredError):
            await verifier.verify("trader", exchange_id="nope")

    @pytest.mark.asyncio
    async def test_default_without_client_falls_back_to_first(self):
        verifier = VolumeVerifier(_config(defaultExchange="ghost"))

        result = await verifier.verify("trader")

        assert result.exchange_id == "demo"

    @pytest.mark.asyncio
    async def test_unsupported_type_is_skipped(self):
        config = _config()
        config["verification"]["exchanges"]["weird"] = {"type": "carrier-pigeon"}

        verifier = VolumeVerifier(config)

        assert list(verifier.clients) == ["demo"]
        with pytest.raises(ExchangeNotConfiguredError):
            await verifier.verify("trader", exchange_id="weird")


# ============================================================
# POLICY
# ============================================================

class TestPolicy:
    """Tests for minimum volume and deposit threshold policy."""

    @pytest.mark.asyncio
    async def test_mock_exchange_pass_persists_snapshot(self, snapshot_store):
        verifier = VolumeVerifier(_config(), snapshot_store=snapshot_store)

        result = await verifier.verify("trader")

        assert result.passed is True
        assert result.volume == 1500
        assert result.volume_met is True
        assert result.skipped is False
        assert result.influencer == "kol"
        assert result.exchange_db_id == 4

        snapshot = snapshot_store.latest("trader", "demo")
        assert snapshot.total_volume == Decimal("1500")
        assert snapshot.influencer == "kol"
        assert snapshot.exchange_ref_id == 4
        assert snapshot.deposit_amount is None

    @pytest.mark.asyncio
    async def test_volume_below_minimum_still_passes(self):
        verifier = VolumeVerifier(_config())

        result = await verifier.verify("small")

        assert result.passed is True
        assert result.volume_met is False

    @pytest.mark.asyncio
    async def test_volume_check_disabled(self):
        verifier = VolumeVerifier(_config(volumeCheckEnabled=False))

        result = await verifier.verify("small")

        assert result.volume_met is None
        assert result.skipped is True

    @pytest.mark.asyncio
    async def test_minimum_volume_resolution(self):
        config = _config()
        config["verification"]["exchanges"]["demo"]["minimumVolume"] = 100
        verifier = VolumeVerifier(config)

        assert (await verifier.verify("small")).minimum_volume == 100
        assert (await verifier.verify("small", minimum_volume=300)).minimum_volume == 300
        assert (await verifier.verify("small", minimum_volume=float("inf"))).minimum_volume == 100
        assert (await verifier.verify("small", minimum_volume=float("nan"))).minimum_volume == 100

    @pytest.mark.asyncio
    async def test_zero_exchange_minimum_uses_global(self):
        config = _config()
        config["verification"]["exchanges"]["demo"]["minimumVolume"] = 0
        verifier = VolumeVerifier(config)

        assert (await verifier.verify("small")).minimum_volume == 1000

    @pytest.mark.asyncio
    async def test_threshold_without_deposit_support_fails_closed(self, snapshot_store):
        verifier = VolumeVerifier(_config(depositThreshold=50), snapshot_store=snapshot_store)

        result = await verifier.verify("trader")

        assert result.passed is False
        assert result.deposit.met is False
        assert result.deposit.reason == "unsupported"
        assert result.deposit.threshold == 50
        assert snapshot_store.latest("trader", "demo") is None

    @pytest.mark.asyncio
    async def test_no_threshold_no_deposit_passes(self):
        verifier = VolumeVerifier(_config())

        result = await verifier.verify("trader")

        assert result.deposit.met is True
        assert result.deposit.threshold is None

    @pytest.mark.asyncio
    async def test_threshold_resolution_order(self):
        stub = StubClient("stub", VolumeResult(volume=0, deposit=DepositResult(threshold=None, met=True)))
        factory = _factory_with(stub=lambda exchange_id, descriptor, store, clock: stub)
        config = {
            "verification": {
                "depositThreshold": 10,
                "exchanges": {"s": {"type": "stub", "depositThreshold": 20}},
            },
        }
        verifier = VolumeVerifier(config, client_factory=factory)

        await verifier.verify("u")
        await verifier.verify("u", deposit_threshold=30)
        await verifier.verify("u", deposit_threshold=0)

        assert [threshold for _, threshold in stub.calls] == [20, 30, 0]

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self):
        failing = StubClient("stub", None)
        failing.get_volume = AsyncMock(side_effect=RuntimeError("boom"))
        factory = _factory_with(stub=lambda exchange_id, descriptor, store, clock: failing)
        verifier = VolumeVerifier({"exchanges": {"s": {"type": "stub"}}}, client_factory=factory)

        with pytest.raises(RuntimeError):
            await verifier.verify("u")

    @pytest.mark.asyncio
    async def test_snapshot_failure_is_not_fatal(self):
        store = MagicMock()
        store.save.side_effect = RuntimeError("disk full")
        verifier = VolumeVerifier(_config(), snapshot_store=store)

        result = await verifier.verify("trader")

        assert result.passed is True
        store.save.assert_called_once()


# ============================================================
# SIGNED CLIENT INTEGRATION
# ============================================================

class TestSignedClient:
    """Verifier behaviour with a deposit-checking client."""

    @pytest.mark.asyncio
    async def test_no_deposit_fails_without_snapshot(self, snapshot_store, transport, clock):
        transport.queue(200, json.dumps({
            "code": "0",
            "result": {"result": True, "deposit_usdt_amount": "5"},
        }))

        def create_bitunix(exchange_id, descriptor, store, client_clock):
            return BitunixClient(
                exchange_id, api_key="k", api_secret="s", snapshot_store=store,
                transport=transport, clock=clock,
            )

        factory = _factory_with(bitunix=create_bitunix)
        config = {"verification": {"depositThreshold": 100, "exchanges": {"bx": {"type": "bitunix"}}}}
        verifier = VolumeVerifier(config, snapshot_store=snapshot_store, client_factory=factory)

        result = await verifier.verify("7001")

        assert result.passed is False
        assert result.deposit.met is False
        assert result.deposit.reason == "no deposit"
        assert snapshot_store.latest("7001", "bx") is None

    @pytest.mark.asyncio
    async def test_persisting_client_gets_no_second_snapshot(self):
        stub = StubClient("stub", VolumeResult(volume=10, deposit=DepositResult(threshold=1, met=True, amount=5)))
        stub.persists_snapshots = True
        store = MagicMock()
        factory = _factory_with(stub=lambda exchange_id, descriptor, s, clock: stub)
        verifier = VolumeVerifier({"exchanges": {"s": {"type": "stub"}}}, snapshot_store=store, client_factory=factory)

        result = await verifier.verify("u")

        assert result.passed is True
        store.save.assert_not_called()


# ============================================================
# CONFIGURATION
# ============================================================

class TestRefreshAndMetadata:
    """Tests for refresh, get_exchanges and get_exchange_config."""

    @pytest.mark.asyncio
    async def test_refresh_swaps_registry(self):
        verifier = VolumeVerifier(_config())
        before = verifier.clients

        await verifier.refresh({"verification": {"exchanges": {"other": {"type": "mock", "volumes": {"x": 1}}}}})

        assert verifier.clients is not before
        assert list(before) == ["demo"]
        assert list(verifier.clients) == ["other"]
        assert (await verifier.verify("x")).exchange_id == "other"

    @pytest.mark.asyncio
    async def test_refresh_closes_retired_clients(self):
        retired = StubClient("s", VolumeResult(volume=0))
        retired.close = AsyncMock()
        factory = _factory_with(stub=lambda exchange_id, descriptor, store, clock: retired)
        verifier = VolumeVerifier({"exchanges": {"s": {"type": "stub"}}}, client_factory=factory)

        await verifier.refresh(_config())

        retired.close.assert_awaited_once()
        assert list(verifier.clients) == ["demo"]

    @pytest.mark.asyncio
    async def test_refresh_closes_retired_http_session(self):
        config = {"exchanges": {"bf": {"type": "blofin", "apiKey": "k", "apiSecret": "s", "passphrase": "p"}}}
        verifier = VolumeVerifier(config)
        session = await verifier.clients["bf"]._transport._get_session()

        await verifier.refresh(_config())

        assert session.closed
        await verifier.close()

    @pytest.mark.asyncio
    async def test_refresh_requires_config(self):
        verifier = VolumeVerifier(_config())

        with pytest.raises(ConfigurationError):
            await verifier.refresh(None)

        assert list(verifier.clients) == ["demo"]

    def test_exchange_metadata(self):
        config = _config(depositThreshold=25)
        config["verification"]["exchanges"]["demo"].update(
            {"name": "Demo", "description": "Demo exchange", "affiliateLink": "https://ref"}
        )
        verifier = VolumeVerifier(config)

        meta = verifier.get_exchange_config("demo")

        assert meta["minimum_volume"] == 1000
        assert meta["deposit_threshold"] == 25
        assert meta["name"] == "Demo"
        assert meta["database_id"] == 4
        assert meta["affiliate_link"] == "https://ref"
        assert meta["available"] is True
        assert meta["supports_deposit_check"] is False
        assert verifier.get_exchanges() == [meta]
        assert verifier.get_exchange_config("missing") is None

    def test_threshold_without_deposit_support_warns_at_build(self, caplog):
        with caplog.at_level(logging.WARNING, logger="verification.verifier"):
            VolumeVerifier(_config(depositThreshold=10))

        assert "demo (mock) cannot check deposits" in caplog.text

    @pytest.mark.asyncio
    async def test_result_to_dict(self):
        verifier = VolumeVerifier(_config())

        data = (await verifier.verify("trader")).to_dict()

        assert data["uid"] == "trader"
        assert data["deposit"]["met"] is True
        assert data["exchange_name"] == "demo"
