"""
Trading Volume Compliance Monitor.

============================================================
PURPOSE
============================================================
Periodically re-checks every verified grant against the
trading volume requirement and walks it through

    compliant -> warning -> revoked

============================================================
PER GRANT
============================================================
deadline = verified_at + volume_check_days
volume   = snapshot delta between verified_at and
           min(now, deadline)

- volume >= minimum      compliant, warning stamp cleared
- now >= deadline        revocation message, access stripped,
                         grant deleted
- inside warning window  one warning per window, stamped only
                         when at least one notifier delivered

Grants without verified_at or without a resolvable exchange
are skipped. A snapshot store failure skips the grant.

============================================================
CONCURRENCY
============================================================
Runs never overlap: a tick arriving while a run is in
progress is skipped and reported with skipped=True.

============================================================
"""

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from sqlalchemy.orm import sessionmaker

from core.clock import ClockProtocol, SystemClock, from_epoch_ms
from storage.database import session_scope
from storage.models.verification import VerifiedGrant
from storage.repositories.grants import VerifiedGrantRepository
from verification.config import VerificationConfig

from .messages import format_revocation_message, format_warning_message
from .notifiers import GrantNotifier
from .scheduler import DEFAULT_SCHEDULE, AsyncioCronScheduler, ScheduledJob, Scheduler


logger = logging.getLogger(__name__)


DAY_MS = 24 * 60 * 60 * 1000

ConfigProvider = Callable[[], Union[VerificationConfig, Awaitable[VerificationConfig]]]


@dataclass
class ComplianceRunReport:
    """Outcome of one compliance run."""

    evaluated: int = 0
    """Grants whose window volume was computed."""

    warnings_sent: int = 0
    revoked: int = 0

    skipped: bool = False
    """True when the run did not execute (overlap or checks disabled)."""

    skipped_grants: int = 0
    """Grants left untouched for missing data or store failures."""

    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "evaluated": self.evaluated,
            "warnings_sent": self.warnings_sent,
            "revoked": self.revoked,
            "skipped": self.skipped,
            "skipped_grants": self.skipped_grants,
            "error": self.error,
        }


class TradingVolumeMonitor:
    """
    Scheduled compliance checker for verified grants.

    Collaborators are injected so tests can drive run_now()
    directly with a MockClock and fake notifiers.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        snapshot_store: Any,
        config_provider: ConfigProvider,
        notifiers: Optional[Sequence[GrantNotifier]] = None,
        scheduler: Optional[Scheduler] = None,
        schedule: str = DEFAULT_SCHEDULE,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._snapshot_store = snapshot_store
        self._config_provider = config_provider
        self._notifiers: List[GrantNotifier] = list(notifiers or [])
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or AsyncioCronScheduler(clock=self._clock)
        self._schedule = schedule
        self._job: Optional[ScheduledJob] = None
        self._run_lock = asyncio.Lock()

    # =========================================================
    # LIFECYCLE
    # =========================================================

    @property
    def running(self) -> bool:
        return self._job is not None

    def start(self) -> None:
        """Schedule the recurring compliance run."""
        if self._job is not None:
            return
        self._job = self._scheduler.schedule(self._schedule, self.run_now)
        self._job.start()
        logger.info(f"Scheduled trading volume compliance check with expression {self._schedule!r}")

    async def stop(self) -> None:
        if self._job is None:
            return
        await self._job.stop()
        self._job = None
        logger.info("Trading volume compliance schedule stopped")

    # =========================================================
    # RUN
    # =========================================================

    async def _load_config(self) -> VerificationConfig:
        config = self._config_provider()
        if inspect.isawaitable(config):
            config = await config
        return config

    async def run_now(self) -> ComplianceRunReport:
        """Execute one compliance pass unless another is in progress."""
        if self._run_lock.locked():
            logger.warning("Previous compliance check still in progress. Skipping this run.")
            return ComplianceRunReport(skipped=True)

        async with self._run_lock:
            report = ComplianceRunReport()
            try:
                await self._run(report)
            except Exception as e:
                logger.error(f"Compliance run failed: {e}", exc_info=True)
                report.error = str(e)
            return report

    async def _run(self, report: ComplianceRunReport) -> None:
        config = await self._load_config()

        if not config.volume_check_enabled:
            logger.debug("Volume checks are disabled. Skipping compliance run.")
            report.skipped = True
            return

        with session_scope(self._session_factory) as session:
            grants = VerifiedGrantRepository(session, self._clock).list_grants()

        if not grants:
            logger.debug("No verified grants found.")
            return

        for grant in grants:
            await self._evaluate(grant, config, report)

        logger.info(
            f"Compliance run completed. evaluated={report.evaluated} "
            f"warnings={report.warnings_sent} revoked={report.revoked} skipped={report.skipped_grants}"
        )

    async def _evaluate(
        self,
        grant: VerifiedGrant,
        config: VerificationConfig,
        report: ComplianceRunReport,
    ) -> None:
        minimum_volume = config.minimum_volume or 0.0
        duration_days = config.volume_check_days
        now_ms = self._clock.now_ms()

        verified_at = grant.verified_at
        if not verified_at:
            logger.warning(
                f"Verified grant {grant.uid} for {grant.influencer} is missing a valid verification timestamp."
            )
            report.skipped_grants += 1
            return

        exchange = grant.exchange or config.default_exchange
        if not exchange:
            logger.warning(f"Unable to determine exchange for UID {grant.uid} ({grant.influencer}).")
            report.skipped_grants += 1
            return

        deadline_ms = verified_at + duration_days * DAY_MS

        try:
            volume = float(
                self._snapshot_store.volume_between(
                    grant.uid, exchange, verified_at, min(now_ms, deadline_ms)
                ) or 0
            )
        except Exception as e:
            logger.error(f"Failed to calculate volume for UID {grant.uid}: {e}")
            report.skipped_grants += 1
            return

        report.evaluated += 1

        if volume >= minimum_volume:
            if grant.volume_warning_date:
                try:
                    self._set_warning_date(grant, None)
                except Exception as e:
                    logger.error(f"Failed to clear warning timestamp for UID {grant.uid}: {e}")
            return

        if now_ms >= deadline_ms:
            await self._revoke(grant, config, minimum_volume, volume, duration_days, report)
            return

        if not config.volume_warning_enabled:
            return

        warning_start_ms = max(verified_at, deadline_ms - config.volume_warning_days * DAY_MS)
        if now_ms < warning_start_ms:
            return

        if grant.volume_warning_date and grant.volume_warning_date >= warning_start_ms:
            return

        days_remaining = max(1, math.ceil((deadline_ms - now_ms) / DAY_MS))
        message = format_warning_message(
            influencer=grant.influencer,
            minimum_volume=minimum_volume,
            volume=volume,
            deadline=from_epoch_ms(deadline_ms),
            days_remaining=days_remaining,
        )

        delivered = await self._deliver(grant, message)
        if any(delivered):
            try:
                self._set_warning_date(grant, now_ms)
            except Exception as e:
                logger.error(f"Failed to persist warning timestamp for UID {grant.uid}: {e}")
                return
            report.warnings_sent += 1
            logger.info(f"Warning issued to UID {grant.uid} ({grant.influencer}).")

    async def _revoke(
        self,
        grant: VerifiedGrant,
        config: VerificationConfig,
        minimum_volume: float,
        volume: float,
        duration_days: int,
        report: ComplianceRunReport,
    ) -> None:
        message = format_revocation_message(
            influencer=grant.influencer,
            minimum_volume=minimum_volume,
            volume=volume,
            duration_days=duration_days,
        )

        await self._deliver(grant, message)

        for notifier in self._notifiers:
            try:
                await notifier.revoke_access(grant, config)
            except Exception as e:
                logger.warning(f"{notifier.name} failed to revoke access for UID {grant.uid}: {e}")

        try:
            with session_scope(self._session_factory) as session:
                removed = VerifiedGrantRepository(session, self._clock).remove_grant(grant.influencer, grant.uid)
        except Exception as e:
            logger.error(f"Failed to revoke verified grant {grant.uid}: {e}")
            return

        if removed:
            report.revoked += 1
            logger.info(f"Revoked verified access for UID {grant.uid} ({grant.influencer}).")

    async def _deliver(self, grant: VerifiedGrant, message: str) -> List[bool]:
        """Send through every notifier concurrently; failures count as not delivered."""
        results = await asyncio.gather(
            *(notifier.send(grant, message) for notifier in self._notifiers),
            return_exceptions=True,
        )

        delivered = []
        for notifier, result in zip(self._notifiers, results):
            if isinstance(result, BaseException):
                logger.warning(f"{notifier.name} failed to deliver to UID {grant.uid}: {result}")
                delivered.append(False)
            else:
                delivered.append(bool(result))
        return delivered

    def _set_warning_date(self, grant: VerifiedGrant, value: Optional[int]) -> None:
        with session_scope(self._session_factory) as session:
            repo = VerifiedGrantRepository(session, self._clock)
            current = repo.get_grant(grant.influencer, grant.uid)
            if current is not None:
                repo.set_warning_date(current, value)
        grant.volume_warning_date = value
