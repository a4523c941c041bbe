"""
Trading Volume Monitor Tests.

============================================================
TEST CATEGORIES
============================================================
- Grant lifecycle: compliant -> warning -> revoked
- Warning deduplication and delivery rules
- Skips: missing data, store failures, disabled checks
- Overlapping runs
- Scheduling

============================================================
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from compliance.monitor import TradingVolumeMonitor
from compliance.notifiers import GrantNotifier
from core.clock import to_epoch_ms
from storage.database import session_scope
from storage.repositories.grants import VerifiedGrantRepository
from verification.config import VerificationConfig


class RecordingNotifier(GrantNotifier):
    """Notifier double recording every message."""

    def __init__(self, name="recording", delivers=True):
        self.name = name
        self.delivers = delivers
        self.messages = []
        self.revoked = []

    async def send(self, grant, message):
        self.messages.append((grant.uid, message))
        return self.delivers

    async def revoke_access(self, grant, config):
        self.revoked.append(grant.uid)
        return True


def _config(**overrides):
    data = {
        "minimumVolume": 1000,
        "defaultExchange": "blofin",
        "volumeCheckDays": 30,
        "volumeWarningDays": 2,
        "exchanges": {},
    }
    data.update(overrides)
    return VerificationConfig.from_mapping(data)


def _grant(session_factory, clock, uid="1001", **fields):
    fields.setdefault("exchange", "blofin")
    fields.setdefault("telegram_id", "42")
    with session_scope(session_factory) as session:
        return VerifiedGrantRepository(session, clock).save_grant("kol", uid, **fields)


def _load(session_factory, uid="1001"):
    with session_scope(session_factory) as session:
        return VerifiedGrantRepository(session).get_grant("kol", uid)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_monitor(session_factory, snapshot_store, clock, notifier):
    def factory(config=None, notifiers=None, store=None, scheduler=None):
        config = config or _config()
        return TradingVolumeMonitor(
            session_factory,
            store or snapshot_store,
            lambda: config,
            notifiers=[notifier] if notifiers is None else notifiers,
            scheduler=scheduler,
            clock=clock,
        )
    return factory


# ============================================================
# LIFECYCLE
# ============================================================

class TestGrantLifecycle:
    """Tests for the compliant -> warning -> revoked progression."""

    @pytest.mark.asyncio
    async def test_warn_once_then_revoke(self, make_monitor, session_factory, snapshot_store, clock, notifier):
        start = clock.now()
        _grant(session_factory, clock)
        snapshot_store.save("1001", "blofin", 1000, created_at=start)
        snapshot_store.save("1001", "blofin", 1500, created_at=start + timedelta(days=27))
        monitor = make_monitor()

        clock.set_time(start + timedelta(days=28))
        report = await monitor.run_now()

        assert report.evaluated == 1
        assert report.warnings_sent == 1
        assert len(notifier.messages) == 1
        message = notifier.messages[0][1]
        assert "Required volume: 1000" in message
        assert "Current recorded volume: 500" in message
        assert "before 2024-01-31 (2 days remaining)" in message
        assert _load(session_factory).volume_warning_date == clock.now_ms()

        clock.set_time(start + timedelta(days=29))
        report = await monitor.run_now()

        assert report.warnings_sent == 0
        assert len(notifier.messages) == 1

        clock.set_time(start + timedelta(days=31))
        report = await monitor.run_now()

        assert report.revoked == 1
        assert "has been revoked" in notifier.messages[-1][1]
        assert "(500)" in notifier.messages[-1][1]
        assert notifier.revoked == ["1001"]
        assert _load(session_factory) is None

    @pytest.mark.asyncio
    async def test_no_warning_before_window(self, make_monitor, session_factory, clock, notifier):
        start = clock.now()
        _grant(session_factory, clock)

        clock.set_time(start + timedelta(days=10))
        report = await make_monitor().run_now()

        assert report.evaluated == 1
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_compliant_grant_clears_warning(self, make_monitor, session_factory, snapshot_store, clock, notifier):
        start = clock.now()
        grant = _grant(session_factory, clock)
        with session_scope(session_factory) as session:
            repo = VerifiedGrantRepository(session)
            repo.set_warning_date(repo.get_grant("kol", grant.uid), 123)
        snapshot_store.save("1001", "blofin", 1000, created_at=start)
        snapshot_store.save("1001", "blofin", 2500, created_at=start + timedelta(days=5))

        clock.set_time(start + timedelta(days=29))
        report = await make_monitor().run_now()

        assert report.evaluated == 1
        assert report.warnings_sent == 0
        assert notifier.messages == []
        assert _load(session_factory).volume_warning_date is None

    @pytest.mark.asyncio
    async def test_failed_warning_clear_does_not_stop_run(self, make_monitor, session_factory, snapshot_store, clock):
        start = clock.now()
        for uid in ("1001", "1002"):
            grant = _grant(session_factory, clock, uid=uid)
            with session_scope(session_factory) as session:
                repo = VerifiedGrantRepository(session)
                repo.set_warning_date(repo.get_grant("kol", grant.uid), 123)
            snapshot_store.save(uid, "blofin", 1000, created_at=start)
            snapshot_store.save(uid, "blofin", 2500, created_at=start + timedelta(days=5))
        monitor = make_monitor()
        monitor._set_warning_date = MagicMock(side_effect=RuntimeError("database is locked"))

        clock.set_time(start + timedelta(days=29))
        report = await monitor.run_now()

        assert report.error is None
        assert report.evaluated == 2
        assert monitor._set_warning_date.call_count == 2

    @pytest.mark.asyncio
    async def test_volume_after_deadline_does_not_count(self, make_monitor, session_factory, snapshot_store, clock):
        start = clock.now()
        _grant(session_factory, clock)
        snapshot_store.save("1001", "blofin", 1000, created_at=start)
        snapshot_store.save("1001", "blofin", 5000, created_at=start + timedelta(days=30, hours=12))

        clock.set_time(start + timedelta(days=31))
        report = await make_monitor().run_now()

        assert report.revoked == 1

    @pytest.mark.asyncio
    async def test_undelivered_warning_is_not_stamped(self, make_monitor, session_factory, clock):
        start = clock.now()
        _grant(session_factory, clock)
        silent = RecordingNotifier(delivers=False)
        failing = RecordingNotifier(name="failing")
        failing.send = AsyncMock(side_effect=RuntimeError("offline"))

        clock.set_time(start + timedelta(days=29))
        monitor = make_monitor(notifiers=[silent, failing])
        report = await monitor.run_now()

        assert report.warnings_sent == 0
        assert len(silent.messages) == 1
        assert _load(session_factory).volume_warning_date is None

        report = await monitor.run_now()

        assert len(silent.messages) == 2

    @pytest.mark.asyncio
    async def test_warnings_disabled(self, make_monitor, session_factory, clock, notifier):
        start = clock.now()
        _grant(session_factory, clock)

        clock.set_time(start + timedelta(days=29))
        report = await make_monitor(config=_config(volumeWarningEnabled=False)).run_now()

        assert report.evaluated == 1
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_revocation_survives_notifier_failures(self, make_monitor, session_factory, clock):
        start = clock.now()
        _grant(session_factory, clock)
        broken = RecordingNotifier(name="broken")
        broken.send = AsyncMock(side_effect=RuntimeError("offline"))
        broken.revoke_access = AsyncMock(side_effect=RuntimeError("forbidden"))

        clock.set_time(start + timedelta(days=31))
        report = await make_monitor(notifiers=[broken]).run_now()

        assert report.revoked == 1
        assert _load(session_factory) is None


# ============================================================
# SKIPS
# ============================================================

class TestSkips:
    """Tests for grants and runs that are skipped."""

    @pytest.mark.asyncio
    async def test_checks_disabled(self, make_monitor, session_factory, clock, notifier):
        _grant(session_factory, clock)
        clock.advance(days=31)

        report = await make_monitor(config=_config(volumeCheckEnabled=False)).run_now()

        assert report.skipped is True
        assert report.evaluated == 0
        assert _load(session_factory) is not None

    @pytest.mark.asyncio
    async def test_missing_exchange(self, make_monitor, session_factory, clock):
        _grant(session_factory, clock, exchange=None)
        clock.advance(days=31)

        report = await make_monitor(config=_config(defaultExchange=None)).run_now()

        assert report.skipped_grants == 1
        assert report.revoked == 0

    @pytest.mark.asyncio
    async def test_default_exchange_used_when_grant_has_none(self, make_monitor, session_factory, clock):
        _grant(session_factory, clock, exchange=None)
        store = MagicMock()
        store.volume_between.return_value = 2000

        await make_monitor(store=store).run_now()

        assert store.volume_between.call_args[0][:3] == ("1001", "blofin", to_epoch_ms(clock.now()))

    @pytest.mark.asyncio
    async def test_store_failure_skips_grant(self, make_monitor, session_factory, clock):
        _grant(session_factory, clock)
        _grant(session_factory, clock, uid="2002")
        store = MagicMock()
        store.volume_between.side_effect = [RuntimeError("db down"), 5000]
        clock.advance(days=31)

        report = await make_monitor(store=store).run_now()

        assert report.skipped_grants == 1
        assert report.evaluated == 1
        assert report.revoked == 0

    @pytest.mark.asyncio
    async def test_config_failure_is_reported(self, session_factory, snapshot_store, clock):
        def broken_provider():
            raise RuntimeError("bad config")

        monitor = TradingVolumeMonitor(session_factory, snapshot_store, broken_provider, clock=clock)

        report = await monitor.run_now()

        assert report.error == "bad config"

    @pytest.mark.asyncio
    async def test_async_config_provider(self, session_factory, snapshot_store, clock):
        async def provider():
            return _config(volumeCheckEnabled=False)

        monitor = TradingVolumeMonitor(session_factory, snapshot_store, provider, clock=clock)

        assert (await monitor.run_now()).skipped is True


# ============================================================
# CONCURRENCY / SCHEDULING
# ============================================================

class BlockingNotifier(RecordingNotifier):
    """Notifier that holds the run open until released."""

    def __init__(self):
        super().__init__(name="blocking")
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, grant, message):
        self.entered.set()
        await self.release.wait()
        return True


class TestConcurrency:
    """Tests for overlapping runs and scheduling."""

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, make_monitor, session_factory, clock):
        _grant(session_factory, clock)
        clock.advance(days=29)
        blocking = BlockingNotifier()
        monitor = make_monitor(notifiers=[blocking])

        first = asyncio.create_task(monitor.run_now())
        await asyncio.wait_for(blocking.entered.wait(), timeout=1)

        second = await monitor.run_now()
        blocking.release.set()
        first_report = await first

        assert second.skipped is True
        assert first_report.skipped is False
        assert first_report.warnings_sent == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_monitor):
        job = MagicMock()
        job.stop = AsyncMock()
        scheduler = MagicMock()
        scheduler.schedule.return_value = job
        monitor = make_monitor(scheduler=scheduler)

        monitor.start()
        monitor.start()

        assert monitor.running is True
        scheduler.schedule.assert_called_once_with("0 0 * * *", monitor.run_now)
        job.start.assert_called_once()

        await monitor.stop()

        job.stop.assert_awaited_once()
        assert monitor.running is False
