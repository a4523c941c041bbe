"""
Bitunix Partner Client.

============================================================
PURPOSE
============================================================
Deposit verification and 30 day volume lookup for Bitunix
partner invitees.

EXCHANGE SPECIFICS:
- SHA1 signing over parameter values in ranked key order
  followed by the API secret
- Key ranking: digit-first names, then lowercase-first names,
  then everything else; lexical order within a rank
- Business codes in the body: "0" success, "2" unknown user

============================================================
"""

import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.clock import ClockProtocol, SystemClock

from .base import (
    DepositResult,
    ExchangeClient,
    REASON_API_ERROR,
    REASON_DEPOSIT_CHECK_FAILED,
    REASON_NO_DEPOSIT,
    REASON_USER_NOT_FOUND,
    UidVerification,
    VolumeResult,
    to_float,
)
from .errors import (
    ExchangeException,
    create_invalid_response_error,
    map_bitunix_error,
    map_http_error,
)
from .logging_utils import ClientLogger
from .transport import HttpTransport


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

BITUNIX_REST_URL = "https://partners.bitunix.com/partner/api/v1/openapi"

VALIDATE_USER_PATH = "/validateUser"
TRANS_AMOUNT_LIST_PATH = "/transAmountList"

PAGE_SIZE = 1000
VOLUME_WINDOW_DAYS = 30


# ============================================================
# SIGNING
# ============================================================

def _key_rank(key: str) -> int:
    first = key[:1]
    if first.isdigit():
        return 0
    if "a" <= first <= "z":
        return 1
    return 2


def sorted_keys(params: Dict[str, Any]) -> List[str]:
    """Order parameter names the way the Bitunix signature expects."""
    return sorted((str(key) for key in params), key=lambda key: (_key_rank(key), key))


def create_signature(params: Dict[str, Any], secret: str) -> str:
    """
    Create a Bitunix request signature.

    Bitunix signature: HEX(SHA1(values in ranked key order + secret))
    """
    lookup = {str(key): value for key, value in params.items()}
    plain = "".join(str(lookup[key]) for key in sorted_keys(lookup)) + secret
    return hashlib.sha1(plain.encode()).hexdigest()


def _iso_utc(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


# ============================================================
# BITUNIX CLIENT
# ============================================================

class BitunixClient(ExchangeClient):
    """
    Bitunix partner client (signed protocol B).

    Persists its own snapshots, so the verifier does not write one.
    """

    client_type = "bitunix"
    supports_deposit_check = True
    persists_snapshots = True
    lists_invitees = True

    def __init__(
        self,
        exchange_id: str,
        api_key: str = "",
        api_secret: str = "",
        snapshot_store: Any = None,
        kol_name: Optional[str] = None,
        exchange_ref_id: Optional[int] = None,
        base_url: str = BITUNIX_REST_URL,
        transport: Optional[HttpTransport] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        super().__init__(exchange_id)
        self._api_key = api_key or ""
        self._api_secret = api_secret or ""
        self._snapshot_store = snapshot_store
        self._kol_name = kol_name
        self._exchange_ref_id = exchange_ref_id
        self._base_url = base_url.rstrip("/")
        self._transport = transport or HttpTransport(exchange_id)
        self._clock = clock or SystemClock()
        self._logger = ClientLogger(exchange_id)

        self._logger.info(
            f"Bitunix client initialised: has_key={bool(api_key)} has_secret={bool(api_secret)}"
        )

    # --------------------------------------------------------
    # REQUEST HANDLING
    # --------------------------------------------------------

    def _signed_params(self, params: Dict[str, Any]) -> Dict[str, str]:
        signed = {key: str(value) for key, value in params.items()}
        signed["timestamp"] = str(int(self._clock.timestamp()))
        return signed

    def _headers(self, params: Dict[str, str]) -> Dict[str, str]:
        return {
            "apiKey": self._api_key,
            "signature": create_signature(params, self._api_secret),
            "timestamp": params["timestamp"],
        }

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Sign and send a request, returning the decoded body."""
        signed = self._signed_params(params)
        headers = self._headers(signed)
        operation = endpoint.lstrip("/")

        if method == "POST":
            url = f"{self._base_url}{endpoint}"
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            data = urlencode(signed)
        else:
            url = f"{self._base_url}{endpoint}?{urlencode(signed)}"
            data = None

        request_id = self._logger.log_request(operation, method, endpoint, headers=headers, params=signed)
        start_time = time.time()

        response = await self._transport.request(method, url, headers=headers, data=data, operation=operation)
        latency_ms = (time.time() - start_time) * 1000

        if not response.ok:
            self._logger.log_response(
                operation, request_id, response.status, latency_ms, False, error_message=response.text,
            )
            raise ExchangeException(
                map_http_error(self.exchange_id, response.status, response.text[:200] or "HTTP error", operation)
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExchangeException(
                create_invalid_response_error(self.exchange_id, f"Malformed JSON: {e}", operation, response.status)
            ) from e

        if not isinstance(payload, dict):
            raise ExchangeException(
                create_invalid_response_error(self.exchange_id, "Unexpected payload shape", operation, response.status)
            )

        self._logger.log_response(
            operation, request_id, response.status, latency_ms, True, response_body=payload,
        )
        return payload

    # --------------------------------------------------------
    # VERIFICATION
    # --------------------------------------------------------

    async def verify_uid(self, uid: str, deposit_threshold: float) -> UidVerification:
        """Check the invitee's USDT deposit against the threshold."""
        self._logger.info(f"Verifying UID {uid} with deposit threshold {deposit_threshold}")

        try:
            payload = await self._send("POST", VALIDATE_USER_PATH, {"account": uid})
        except ExchangeException as e:
            self._logger.error(f"verify_uid error for {uid}: {e}")
            return UidVerification(verified=False, reason=REASON_API_ERROR)

        code = str(payload.get("code"))
        result = payload.get("result") or {}

        if code == "0" and isinstance(result, dict) and result.get("result"):
            deposit = to_float(result.get("deposit_usdt_amount"))
            if deposit >= deposit_threshold:
                self._logger.info(f"UID {uid} deposit {deposit} meets threshold {deposit_threshold}")
                return UidVerification(verified=True, user_data={"deposit": deposit})
            self._logger.warning(f"UID {uid} deposit {deposit} below threshold {deposit_threshold}")
            return UidVerification(verified=False, reason=REASON_NO_DEPOSIT, user_data={"deposit": deposit})

        error = map_bitunix_error(code, str(payload.get("msg") or ""), "validateUser")
        if code == "2":
            self._logger.warning(f"UID {uid} not found ({error})")
            return UidVerification(verified=False, reason=REASON_USER_NOT_FOUND)

        self._logger.error(f"API returned unexpected code {code} for UID {uid}: {error}")
        return UidVerification(verified=False, reason=REASON_API_ERROR)

    async def get_volume(
        self,
        uid: str,
        deposit_threshold: Optional[float] = None,
    ) -> VolumeResult:
        evaluated_threshold = deposit_threshold if deposit_threshold is not None else 0.0
        deposit = DepositResult(
            threshold=deposit_threshold,
            met=None,
            evaluated_threshold=evaluated_threshold,
        )
        failed_source = {"type": self.client_type, "stage": "deposit"}

        try:
            verification = await self.verify_uid(uid, evaluated_threshold)
        except Exception as e:
            self._logger.error(f"Deposit verification failed for UID {uid}: {e}", exc_info=True)
            deposit.met = False
            deposit.reason = REASON_DEPOSIT_CHECK_FAILED
            deposit.error = str(e)
            return VolumeResult(volume=0.0, source=failed_source, deposit=deposit)

        if not verification.verified:
            deposit.met = False
            deposit.reason = verification.reason or REASON_NO_DEPOSIT
            deposit.user_data = verification.user_data
            return VolumeResult(volume=0.0, source=failed_source, deposit=deposit)

        deposit.met = True
        deposit.user_data = verification.user_data
        deposit.amount = to_float((verification.user_data or {}).get("deposit"))

        try:
            volume = await self.last_30_days_volume(uid)
        except ExchangeException as e:
            self._logger.error(f"Volume lookup failed for UID {uid}: {e}")
            return VolumeResult(
                volume=0.0,
                source={"type": self.client_type, "volume_error": str(e)},
                deposit=deposit,
            )

        self._save_snapshot(uid, volume, deposit.amount)
        return VolumeResult(volume=volume, source={"type": self.client_type}, deposit=deposit)

    def _save_snapshot(self, uid: str, volume: float, deposit_amount: Optional[float]) -> None:
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(
                uid,
                self.exchange_id,
                volume,
                deposit_amount=deposit_amount,
                influencer=self._kol_name,
                exchange_ref_id=self._exchange_ref_id,
            )
        except Exception as e:
            self._logger.error(f"Snapshot error for UID {uid}: {e}")

    # --------------------------------------------------------
    # VOLUME QUERIES
    # --------------------------------------------------------

    async def _trans_amount_pages(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Collect transAmountList items until a short page is returned."""
        items: List[Dict[str, Any]] = []
        page = 1

        while True:
            payload = await self._send(
                "GET", TRANS_AMOUNT_LIST_PATH, {**query, "pageSize": PAGE_SIZE, "page": page}
            )
            code = str(payload.get("code", "0"))
            if code != "0":
                raise ExchangeException(
                    map_bitunix_error(code, str(payload.get("msg") or ""), "transAmountList")
                )

            result = payload.get("result") or {}
            page_items = result.get("items") or [] if isinstance(result, dict) else []
            items.extend(page_items)

            if len(page_items) < PAGE_SIZE:
                break
            page += 1

        return items

    async def calculate_volume(
        self,
        uid: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> float:
        """Sum transVolume for the uid between start and end."""
        end = end or self._clock.now()
        items = await self._trans_amount_pages(
            {"uid": uid, "startTime": _iso_utc(start), "endTime": _iso_utc(end)}
        )
        total = sum(to_float(item.get("transVolume")) for item in items)
        self._logger.debug(f"Calculated volume {total} for UID {uid} over {len(items)} records")
        return total

    async def last_30_days_volume(self, uid: str) -> float:
        end = self._clock.now()
        return await self.calculate_volume(uid, end - timedelta(days=VOLUME_WINDOW_DAYS), end)

    async def fetch_invitees(self) -> List[Dict[str, Any]]:
        """All invitees with their trading volume, without a uid filter."""
        items = await self._trans_amount_pages({})
        invitees = [
            {"uid": str(item["uid"]), "totalTradingVolume": to_float(item.get("transVolume"))}
            for item in items
            if item.get("uid")
        ]
        self._logger.info(f"Retrieved {len(invitees)} invitees")
        return invitees

    async def total_trading_volume(self, uid: str) -> float:
        """Lifetime volume: every transAmountList record of the uid, without a time window."""
        items = await self._trans_amount_pages({"uid": uid})
        return sum(to_float(item.get("transVolume")) for item in items)

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key and self._api_secret)

    async def close(self) -> None:
        await self._transport.close()
