"""
Volume Verifier.

============================================================
PURPOSE
============================================================
Resolves the exchange for a verification request, applies
the minimum volume and deposit threshold policy, invokes the
exchange client and records a snapshot on success.

============================================================
POLICY
============================================================
- Exchange: explicit id, else configured default (when it has
  a client), else the first configured client
- Minimum volume: finite override, else the exchange's positive
  minimum, else the global minimum
- Deposit threshold: numeric override, else exchange, else
  global, else none
- Pass/fail is decided by the deposit outcome alone; the volume
  comparison is reported as volume_met for the caller

A configured threshold with no deposit outcome from the client
fails closed with reason "unsupported".

get_trading_volume_stats() and get_lifetime_volume() report
recorded and exchange side volume through TradingVolumeStatistics.

============================================================
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from core.clock import ClockProtocol, SystemClock
from core.exceptions import (
    ConfigurationError,
    ExchangeNotConfiguredError,
    InvalidUidError,
    NoExchangesConfiguredError,
)
from exchange_clients.base import DepositResult, REASON_UNSUPPORTED
from exchange_clients.factory import ClientFactory, ClientRegistry

from .config import ExchangeDescriptor, VerificationConfig
from .statistics import TradingVolumeStatistics, TradingVolumeStats


logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _is_finite(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


# ============================================================
# RESULT
# ============================================================

@dataclass
class VerificationResult:
    """Outcome of one verification request."""

    uid: str
    exchange_id: str
    volume: float
    minimum_volume: float
    passed: bool
    deposit: DepositResult
    volume_met: Optional[bool]
    skipped: bool
    timestamp: str
    source: Dict[str, Any] = field(default_factory=dict)
    exchange_name: str = ""
    exchange_db_id: Optional[int] = None
    affiliate_link: Optional[str] = None
    influencer: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "exchange_id": self.exchange_id,
            "volume": self.volume,
            "minimum_volume": self.minimum_volume,
            "passed": self.passed,
            "deposit": self.deposit.to_dict(),
            "volume_met": self.volume_met,
            "skipped": self.skipped,
            "timestamp": self.timestamp,
            "source": self.source,
            "exchange_name": self.exchange_name,
            "exchange_db_id": self.exchange_db_id,
            "affiliate_link": self.affiliate_link,
            "influencer": self.influencer,
        }


# ============================================================
# VERIFIER
# ============================================================

class VolumeVerifier:
    """
    Verifies exchange UIDs against the configured policy.

    The client registry is immutable and replaced as a whole by
    refresh(), so an in-flight verify() keeps the registry it
    started with.
    """

    def __init__(
        self,
        config: Union[VerificationConfig, Mapping[str, Any]],
        snapshot_store: Any = None,
        clock: Optional[ClockProtocol] = None,
        client_factory: Type[ClientFactory] = ClientFactory,
    ):
        self._snapshot_store = snapshot_store
        self._clock = clock or SystemClock()
        self._client_factory = client_factory
        self._config = VerificationConfig()
        self._clients = ClientRegistry()
        self._rebuild(config)

    # --------------------------------------------------------
    # CONFIGURATION
    # --------------------------------------------------------

    @property
    def config(self) -> VerificationConfig:
        return self._config

    @property
    def clients(self) -> ClientRegistry:
        return self._clients

    def _rebuild(self, config: Union[VerificationConfig, Mapping[str, Any]]) -> ClientRegistry:
        """Swap in a new config and registry; returns the retired registry."""
        if not isinstance(config, VerificationConfig):
            config = VerificationConfig.from_mapping(config)

        clients = self._client_factory.create_all(
            config.exchanges,
            snapshot_store=self._snapshot_store,
            clock=self._clock,
        )

        for exchange_id, client in clients.items():
            descriptor = config.get_exchange(exchange_id)
            threshold = descriptor.deposit_threshold if descriptor else None
            if _is_number(threshold) or _is_number(config.deposit_threshold):
                if not client.supports_deposit_check:
                    logger.warning(
                        f"Exchange {exchange_id} ({client.client_type}) cannot check deposits; "
                        f"verifications with a deposit threshold will fail as unsupported."
                    )

        retired = self._clients
        self._config = config
        self._clients = clients
        logger.info(f"Verifier configured with exchanges: {list(clients)}")
        return retired

    async def refresh(self, config: Union[VerificationConfig, Mapping[str, Any], None]) -> None:
        """
        Rebuild all clients from a new configuration and swap them in.

        The retired clients are closed once the swap is done. A
        verify() already running keeps its own client reference.
        """
        if config is None:
            raise ConfigurationError("A configuration with a verification section is required.")
        retired = self._rebuild(config)
        await retired.close_all()
        logger.info("Volume verifier configuration reloaded.")

    def _resolve_default_exchange(self) -> Optional[str]:
        default = self._config.default_exchange
        if default and default in self._clients:
            return default
        return self._clients.first_id()

    def _minimum_volume_for(self, descriptor: Optional[ExchangeDescriptor]) -> float:
        if descriptor and descriptor.minimum_volume:
            return descriptor.minimum_volume
        return self._config.minimum_volume

    def _deposit_threshold_for(self, descriptor: Optional[ExchangeDescriptor]) -> Optional[float]:
        if descriptor and _is_number(descriptor.deposit_threshold):
            return descriptor.deposit_threshold
        return self._config.deposit_threshold

    def _describe(self, exchange_id: str, descriptor: ExchangeDescriptor) -> Dict[str, Any]:
        client = self._clients.get(exchange_id)
        return {
            "id": exchange_id,
            "type": descriptor.type,
            "available": client is not None,
            "supports_deposit_check": bool(client and client.supports_deposit_check),
            "minimum_volume": self._minimum_volume_for(descriptor),
            "deposit_threshold": self._deposit_threshold_for(descriptor),
            "description": descriptor.description or "",
            "name": descriptor.name,
            "database_id": descriptor.database_id,
            "affiliate_link": descriptor.affiliate_link,
            "kol_name": descriptor.kol_name,
        }

    def get_exchanges(self) -> List[Dict[str, Any]]:
        """Resolved metadata of every configured exchange."""
        return [
            self._describe(exchange_id, descriptor)
            for exchange_id, descriptor in self._config.exchanges.items()
        ]

    def get_exchange_config(self, exchange_id: str) -> Optional[Dict[str, Any]]:
        descriptor = self._config.get_exchange(exchange_id)
        if descriptor is None:
            return None
        return self._describe(exchange_id, descriptor)

    # --------------------------------------------------------
    # VERIFICATION
    # --------------------------------------------------------

    async def verify(
        self,
        uid: str,
        exchange_id: Optional[str] = None,
        minimum_volume: Optional[float] = None,
        deposit_threshold: Optional[float] = None,
    ) -> VerificationResult:
        """
        Verify a UID.

        Args:
            uid: Exchange account identifier
            exchange_id: Exchange to use (default resolution otherwise)
            minimum_volume: Override, ignored unless finite
            deposit_threshold: Override, ignored unless numeric

        Returns:
            VerificationResult

        Raises:
            InvalidUidError: uid is empty or not a string
            NoExchangesConfiguredError: no client to fall back to
            ExchangeNotConfiguredError: the chosen exchange has no client
        """
        if not uid or not isinstance(uid, str):
            raise InvalidUidError(uid)

        config = self._config
        clients = self._clients

        exchange_id = exchange_id or self._resolve_default_exchange()
        if not exchange_id:
            raise NoExchangesConfiguredError()

        client = clients.get(exchange_id)
        if client is None:
            raise ExchangeNotConfiguredError(exchange_id)

        descriptor = config.get_exchange(exchange_id) or ExchangeDescriptor(type=client.client_type)

        minimum = minimum_volume if _is_finite(minimum_volume) else self._minimum_volume_for(descriptor)
        threshold = deposit_threshold if _is_number(deposit_threshold) else self._deposit_threshold_for(descriptor)

        result = await client.get_volume(uid, deposit_threshold=threshold)
        volume = float(result.volume or 0)
        deposit = result.deposit

        if threshold is not None and (deposit is None or deposit.met is None):
            logger.warning(
                f"Deposit threshold configured for {exchange_id} but client {client.client_type} "
                f"did not supply deposit results."
            )
            deposit = DepositResult(threshold=threshold, met=False, reason=REASON_UNSUPPORTED)
        elif deposit is None:
            deposit = DepositResult(threshold=None, met=True)

        passed = deposit.met is not False
        check_enabled = config.volume_check_enabled
        volume_met = volume >= minimum if check_enabled else None

        response = VerificationResult(
            uid=uid,
            exchange_id=exchange_id,
            volume=volume,
            minimum_volume=minimum,
            passed=passed,
            deposit=deposit,
            volume_met=volume_met,
            skipped=not check_enabled,
            timestamp=self._clock.format_iso(),
            source=result.source or {},
            exchange_name=descriptor.name or exchange_id,
            exchange_db_id=descriptor.database_id,
            affiliate_link=descriptor.affiliate_link,
            influencer=descriptor.kol_name or descriptor.name or exchange_id,
        )

        logger.info(
            f"Deposit evaluation completed for UID {uid} on {exchange_id}: "
            f"met={passed} threshold={deposit.threshold} reason={deposit.reason} amount={deposit.amount}"
        )

        if not passed:
            logger.info(f"Verification completed for UID {uid} on {exchange_id}. Passed: False")
            return response

        if volume_met is False:
            logger.info(f"Volume target not met for UID {uid} on {exchange_id}: {volume} < {minimum}")

        if not client.persists_snapshots:
            self._save_snapshot(uid, exchange_id, volume, deposit, descriptor)

        logger.info(f"Verification completed for UID {uid} on {exchange_id}. Passed: True")
        return response

    def _save_snapshot(
        self,
        uid: str,
        exchange_id: str,
        volume: float,
        deposit: DepositResult,
        descriptor: ExchangeDescriptor,
    ) -> None:
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(
                uid,
                exchange_id,
                volume,
                deposit_amount=deposit.amount if _is_number(deposit.amount) else None,
                influencer=descriptor.kol_name,
                exchange_ref_id=descriptor.database_id,
            )
            logger.debug(f"Saved volume snapshot for UID {uid} on {exchange_id}.")
        except Exception as e:
            logger.error(f"Failed to persist volume snapshot for UID {uid} on {exchange_id}: {e}")

    # --------------------------------------------------------
    # STATISTICS
    # --------------------------------------------------------

    def _statistics(self) -> TradingVolumeStatistics:
        return TradingVolumeStatistics(
            self._snapshot_store,
            self._clients,
            exchanges=self.get_exchanges(),
            clock=self._clock,
        )

    async def get_trading_volume_stats(self, exchange_id: Optional[str] = None) -> TradingVolumeStats:
        """
        Recorded and exchange reported volume per exchange.

        Raises:
            ExchangeNotConfiguredError: exchange_id is not configured
        """
        if exchange_id and self._config.get_exchange(exchange_id) is None:
            raise ExchangeNotConfiguredError(exchange_id)
        return await self._statistics().collect(exchange_id)

    async def get_lifetime_volume(self, uid: str, exchange_id: Optional[str] = None) -> float:
        if not uid or not isinstance(uid, str):
            raise InvalidUidError(uid)
        exchange_id = exchange_id or self._resolve_default_exchange()
        if not exchange_id:
            raise NoExchangesConfiguredError()
        return await self._statistics().lifetime_volume(uid, exchange_id)

    async def close(self) -> None:
        await self._clients.close_all()
