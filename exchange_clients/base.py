"""
Exchange Clients - Client Base.

============================================================
PURPOSE
============================================================
Abstract interface for exchange clients used by the verifier.

DESIGN PRINCIPLES:
- Exchange-agnostic interface: get_volume(uid, deposit_threshold)
- Clean separation from verification policy
- Fully testable with the mock client and injected transports

============================================================
CAPABILITY FLAGS
============================================================
supports_deposit_check: the client evaluates deposit thresholds
persists_snapshots:     the client writes its own snapshots, so
                        the verifier must not write another one
lists_invitees:         the client can list every invitee with
                        its lifetime trading volume

============================================================
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


# ============================================================
# DEPOSIT REASONS
# ============================================================

REASON_NO_DEPOSIT = "no deposit"
REASON_USER_NOT_FOUND = "user_not_found"
REASON_API_ERROR = "api_error"
REASON_DEPOSIT_CHECK_FAILED = "deposit_check_failed"
REASON_UNSUPPORTED = "unsupported"


# ============================================================
# CLIENT RESULT TYPES
# ============================================================

@dataclass
class DepositResult:
    """Outcome of a deposit threshold evaluation."""

    threshold: Optional[float]
    """Threshold that was requested (None when no threshold applies)."""

    met: Optional[bool]
    """True/False when evaluated, None when undetermined."""

    amount: Optional[float] = None
    """Deposit figure the decision was based on."""

    reason: Optional[str] = None
    """Failure reason code."""

    user_data: Optional[Dict[str, Any]] = None
    """Raw invitee record returned by the exchange."""

    evaluated_threshold: Optional[float] = None
    """Threshold actually compared against."""

    error: Optional[str] = None
    """Error message when evaluation failed."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "met": self.met,
            "amount": self.amount,
            "reason": self.reason,
            "user_data": self.user_data,
            "evaluated_threshold": self.evaluated_threshold,
            "error": self.error,
        }


@dataclass
class VolumeResult:
    """Volume reported by a client for one UID."""

    volume: float
    """Trading volume used for policy decisions."""

    source: Dict[str, Any] = field(default_factory=dict)
    """Raw payload or lookup details behind the figure."""

    deposit: Optional[DepositResult] = None
    """Deposit evaluation, when the client supports it."""


@dataclass
class UidVerification:
    """Outcome of a signed client's invitee deposit lookup."""

    verified: bool
    reason: Optional[str] = None
    user_data: Optional[Dict[str, Any]] = None
    source: Optional[str] = None


# ============================================================
# CLIENT INTERFACE
# ============================================================

class ExchangeClient(ABC):
    """
    Abstract base for exchange clients.

    Subclasses declare their capability flags as class attributes
    and implement get_volume.
    """

    client_type: str = ""
    supports_deposit_check: bool = False
    persists_snapshots: bool = False
    lists_invitees: bool = False

    def __init__(self, exchange_id: str):
        self._exchange_id = exchange_id

    @property
    def exchange_id(self) -> str:
        """Configured exchange identifier."""
        return self._exchange_id

    @abstractmethod
    async def get_volume(
        self,
        uid: str,
        deposit_threshold: Optional[float] = None,
    ) -> VolumeResult:
        """
        Get the trading volume for a UID.

        Args:
            uid: Exchange account identifier
            deposit_threshold: Minimum deposit to evaluate, if any

        Returns:
            VolumeResult
        """
        pass

    @property
    def has_credentials(self) -> bool:
        """Whether the client holds every credential its API needs."""
        return True

    async def fetch_invitees(self) -> List[Dict[str, Any]]:
        """
        Every invitee with its lifetime trading volume.

        Only available when lists_invitees is set. Records carry at
        least "uid" and "totalTradingVolume".
        """
        raise NotImplementedError(f"{self.client_type} clients cannot list invitees")

    async def total_trading_volume(self, uid: str) -> float:
        """Lifetime trading volume of one invitee. Only available when lists_invitees is set."""
        raise NotImplementedError(f"{self.client_type} clients cannot report lifetime volume")

    async def close(self) -> None:
        """Release network resources. No-op by default."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(exchange_id={self._exchange_id})>"


def to_float(value: Any, default: float = 0.0) -> float:
    """Convert API numeric fields (numbers or numeric strings) to float."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default
