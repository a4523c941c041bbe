"""
Blofin Affiliate Client.

============================================================
PURPOSE
============================================================
Deposit verification and volume lookup for Blofin affiliate
invitees.

EXCHANGE SPECIFICS:
- HMAC-SHA256 signing with passphrase and nonce
- Signature is base64 of the lowercase HEX digest
- Direct invitees first, sub-affiliate invitees as fallback
- 429 responses carry rate-limit-reset (epoch seconds)

VOLUME:
The API only reports lifetime totals. Every successful
verification stores a snapshot of the total and the reported
volume is the snapshot store's 30 day delta.

============================================================
API DOCUMENTATION
============================================================
https://docs.blofin.com/index.html#affiliate

============================================================
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional
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
    create_rate_limit_error,
    map_business_error,
    map_http_error,
)
from .logging_utils import ClientLogger
from .transport import HttpTransport


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

BLOFIN_REST_URL = "https://openapi.blofin.com"

DIRECT_INVITEES_PATH = "/api/v1/affiliate/invitees"
SUB_INVITEES_PATH = "/api/v1/affiliate/sub-invitees"

INVITEES_PAGE_LIMIT = 30
DEFAULT_MAX_RATE_LIMIT_RETRIES = 10


def create_signature(
    secret: str,
    nonce: str,
    method: str,
    timestamp: str,
    path: str,
    body: Any = None,
) -> str:
    """
    Create a Blofin request signature.

    Blofin signature: BASE64(HEX(HMAC-SHA256(path + method + timestamp + nonce + body)))

    Args:
        secret: API secret
        nonce: 32 hex character nonce
        method: HTTP method
        timestamp: Epoch milliseconds as string
        path: Request path including the query string
        body: Request body (serialized with 2 space indentation)

    Returns:
        Base64 encoded hex digest
    """
    serialized_body = json.dumps(body, indent=2) if body else ""
    prehash = f"{path}{method.upper()}{timestamp}{nonce}{serialized_body}"
    digest = hmac.new(secret.encode(), prehash.encode(), hashlib.sha256).hexdigest()
    return base64.b64encode(digest.encode()).decode()


# ============================================================
# BLOFIN CLIENT
# ============================================================

class BlofinClient(ExchangeClient):
    """
    Blofin affiliate client (signed protocol A).

    Persists its own snapshots, so the verifier does not write one.
    """

    client_type = "blofin"
    supports_deposit_check = True
    persists_snapshots = True
    lists_invitees = True

    def __init__(
        self,
        exchange_id: str,
        api_key: str = "",
        api_secret: str = "",
        passphrase: str = "",
        snapshot_store: Any = None,
        kol_name: Optional[str] = None,
        exchange_ref_id: Optional[int] = None,
        sub_affiliate_invitees: bool = False,
        base_url: str = BLOFIN_REST_URL,
        transport: Optional[HttpTransport] = None,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES,
    ):
        """
        Initialize Blofin client.

        Args:
            exchange_id: Configured exchange identifier
            api_key: Blofin API key
            api_secret: Blofin API secret
            passphrase: Blofin API passphrase
            snapshot_store: Store receiving volume snapshots
            kol_name: Influencer recorded on snapshots
            exchange_ref_id: Numeric exchange reference recorded on snapshots
            sub_affiliate_invitees: Whether the account manages sub-affiliates
            base_url: API base URL
            transport: HTTP transport (injected in tests)
            clock: Clock for timestamps and rate limit waits
            sleep: Coroutine used to wait for rate limit resets
            max_rate_limit_retries: Consecutive 429 retries before giving up
        """
        super().__init__(exchange_id)
        self._api_key = api_key or ""
        self._api_secret = api_secret or ""
        self._passphrase = passphrase or ""
        self._snapshot_store = snapshot_store
        self._kol_name = kol_name
        self._exchange_ref_id = exchange_ref_id
        self._sub_affiliate_invitees = bool(sub_affiliate_invitees)
        self._base_url = base_url.rstrip("/")
        self._transport = transport or HttpTransport(exchange_id)
        self._clock = clock or SystemClock()
        self._sleep = sleep or asyncio.sleep
        self._max_rate_limit_retries = max_rate_limit_retries
        self._logger = ClientLogger(exchange_id)

        self._logger.info(
            f"Blofin client initialised: has_key={bool(api_key)} has_secret={bool(api_secret)} "
            f"has_passphrase={bool(passphrase)} sub_affiliate_invitees={self._sub_affiliate_invitees}"
        )

    # --------------------------------------------------------
    # SIGNING
    # --------------------------------------------------------

    def _generate_nonce(self) -> str:
        return secrets.token_hex(16)

    def _build_headers(self, method: str, path: str) -> Dict[str, str]:
        timestamp = str(self._clock.now_ms())
        nonce = self._generate_nonce()
        signature = create_signature(self._api_secret, nonce, method, timestamp, path)
        return {
            "ACCESS-KEY": self._api_key,
            "ACCESS-SIGN": signature,
            "ACCESS-TIMESTAMP": timestamp,
            "ACCESS-NONCE": nonce,
            "ACCESS-PASSPHRASE": self._passphrase,
            "Content-Type": "application/json",
        }

    # --------------------------------------------------------
    # REQUEST HANDLING
    # --------------------------------------------------------

    def _ms_until_reset(self, reset_header: Optional[str]) -> int:
        reset_seconds = to_float(reset_header, default=0.0)
        return max(int(reset_seconds * 1000) - self._clock.now_ms(), 0)

    async def _wait_for_reset(self, reset_header: Optional[str]) -> int:
        """Sleep until the declared reset. Returns the wait in ms."""
        wait_ms = self._ms_until_reset(reset_header)
        if wait_ms > 0:
            await self._sleep(wait_ms / 1000)
        return wait_ms

    async def _get(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make a signed GET request.

        The request is re-signed and re-issued after each 429 until
        max_rate_limit_retries consecutive rate limits were seen.
        """
        path = f"{endpoint}?{urlencode(params)}"
        url = f"{self._base_url}{path}"
        operation = endpoint.rsplit("/", 1)[-1]
        rate_limited = 0

        while True:
            headers = self._build_headers("GET", path)
            request_id = self._logger.log_request(operation, "GET", path, headers=headers)
            start_time = time.time()

            response = await self._transport.request("GET", url, headers=headers, operation=operation)
            latency_ms = (time.time() - start_time) * 1000

            if response.status == 429:
                reset_header = response.header("rate-limit-reset")
                self._logger.log_response(
                    operation, request_id, response.status, latency_ms, False,
                    error_message=f"Rate limited, reset at {reset_header}",
                )
                if rate_limited >= self._max_rate_limit_retries:
                    raise ExchangeException(
                        create_rate_limit_error(
                            self.exchange_id,
                            retry_after_ms=self._ms_until_reset(reset_header),
                            operation=operation,
                        )
                    )
                rate_limited += 1
                wait_ms = await self._wait_for_reset(reset_header)
                self._logger.warning(
                    f"Rate limited on {operation}, waited {wait_ms}ms (attempt {rate_limited})"
                )
                continue

            if not response.ok:
                self._logger.log_response(
                    operation, request_id, response.status, latency_ms, False,
                    error_message=response.text,
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

            code = payload.get("code")
            if code is not None and str(code) != "0":
                self._logger.log_response(
                    operation, request_id, response.status, latency_ms, False,
                    error_message=str(payload.get("msg")), response_body=payload,
                )
                raise ExchangeException(
                    map_business_error(
                        self.exchange_id, code, str(payload.get("msg") or ""), operation, response.status,
                    )
                )

            self._logger.log_response(
                operation, request_id, response.status, latency_ms, True, response_body=payload,
            )
            return payload

    async def get_direct_invitees(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._get(DIRECT_INVITEES_PATH, params)

    async def get_sub_affiliate_invitees(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._get(SUB_INVITEES_PATH, params)

    async def _find_invitee(self, uid: str) -> Optional[Dict[str, Any]]:
        """Look the uid up in direct, then sub-affiliate invitees."""
        params = {"uid": uid, "limit": 1}

        payload = await self.get_direct_invitees(params)
        records = payload.get("data") or []
        source = "direct"

        if not records:
            payload = await self.get_sub_affiliate_invitees(params)
            records = payload.get("data") or []
            source = "sub-affiliate"

        if not records:
            return None

        record = dict(records[0])
        record.setdefault("_source", source)
        return record

    # --------------------------------------------------------
    # VERIFICATION
    # --------------------------------------------------------

    async def verify_uid(self, uid: str, deposit_threshold: float) -> UidVerification:
        """
        Check the invitee's deposit against the threshold.

        When totalDeposit is zero, totalDeposit + totalEquity is used.
        A passing check stores one snapshot of the lifetime volume.
        """
        self._logger.info(f"Verifying UID {uid} against deposit threshold {deposit_threshold}")

        try:
            record = await self._find_invitee(uid)
        except ExchangeException as e:
            self._logger.error(f"Verification error for UID {uid}: {e}")
            return UidVerification(verified=False, reason=REASON_API_ERROR)

        if record is None:
            self._logger.warning(f"UID {uid} not found in invitees lists")
            return UidVerification(verified=False, reason=REASON_USER_NOT_FOUND)

        source = record.pop("_source", None)
        total_deposit = to_float(record.get("totalDeposit"))
        total_equity = to_float(record.get("totalEquity"))
        figure = total_deposit or (total_deposit + total_equity)

        if figure < deposit_threshold:
            self._logger.warning(
                f"UID {uid} deposit {total_deposit} with equity {total_equity} "
                f"below threshold {deposit_threshold}"
            )
            return UidVerification(verified=False, reason=REASON_NO_DEPOSIT, user_data=record, source=source)

        self._logger.info(
            f"UID {uid} deposit {total_deposit} with equity {total_equity} "
            f"meets threshold {deposit_threshold}"
        )
        self._save_snapshot(uid, to_float(record.get("totalTradingVolume")), total_deposit)
        return UidVerification(verified=True, user_data=record, source=source)

    def _save_snapshot(self, uid: str, total_volume: float, deposit_amount: Optional[float]) -> None:
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(
                uid,
                self.exchange_id,
                total_volume,
                deposit_amount=deposit_amount,
                influencer=self._kol_name,
                exchange_ref_id=self._exchange_ref_id,
            )
        except Exception as e:
            self._logger.error(f"Snapshot error for UID {uid}: {e}")

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
        if verification.user_data and verification.user_data.get("totalDeposit") is not None:
            deposit.amount = to_float(verification.user_data.get("totalDeposit"))

        raw_total = to_float((verification.user_data or {}).get("totalTradingVolume"))
        volume = raw_total
        if self._snapshot_store is not None:
            try:
                volume = float(self._snapshot_store.volume_last_30_days(uid, self.exchange_id))
            except Exception as e:
                self._logger.error(f"30 day volume lookup failed for UID {uid}, using lifetime total: {e}")

        return VolumeResult(
            volume=volume,
            source={
                "type": self.client_type,
                "invitee_source": verification.source,
                "total_trading_volume": raw_total,
                "sub_affiliate_invitees": self._sub_affiliate_invitees,
            },
            deposit=deposit,
        )

    # --------------------------------------------------------
    # BULK AND RAW QUERIES
    # --------------------------------------------------------

    async def _paginate(self, endpoint: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        after = ""
        pages = 0

        while True:
            payload = await self._get(endpoint, {"after": after, "limit": INVITEES_PAGE_LIMIT})
            pages += 1
            page = payload.get("data") or []
            if not page:
                break
            records.extend(page)
            after = page[-1].get("uid", "")
            if not payload.get("hasMore"):
                break

        self._logger.debug(f"Fetched {len(records)} invitees from {endpoint} in {pages} pages")
        return records

    async def fetch_invitees(self, save_snapshots: bool = False) -> List[Dict[str, Any]]:
        """
        Fetch every direct and sub-affiliate invitee.

        Duplicate uids keep the record seen last.
        """
        combined = await self._paginate(DIRECT_INVITEES_PATH)
        combined += await self._paginate(SUB_INVITEES_PATH)

        by_uid: Dict[str, Dict[str, Any]] = {}
        for invitee in combined:
            invitee_uid = invitee.get("uid")
            if invitee_uid:
                by_uid[str(invitee_uid)] = invitee
        invitees = list(by_uid.values())

        if save_snapshots and self._snapshot_store is not None:
            rows = [
                {
                    "uid": str(invitee["uid"]),
                    "exchange": self.exchange_id,
                    "total_volume": to_float(invitee.get("totalTradingVolume")),
                    "deposit_amount": to_float(invitee.get("totalDeposit")),
                    "influencer": self._kol_name,
                    "exchange_ref_id": self._exchange_ref_id,
                }
                for invitee in invitees
                if invitee.get("totalTradingVolume") is not None
            ]
            if rows:
                try:
                    self._snapshot_store.save_batch(rows)
                    self._logger.info(f"Stored {len(rows)} invitee volume snapshots")
                except Exception as e:
                    self._logger.error(f"Batch snapshot error: {e}")

        self._logger.info(f"Retrieved {len(invitees)} unique invitees")
        return invitees

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key and self._api_secret and self._passphrase)

    async def total_trading_volume(self, uid: str) -> float:
        """Lifetime trading volume reported by the API (0 when not an invitee)."""
        record = await self._find_invitee(uid)
        if record is None:
            return 0.0
        return to_float(record.get("totalTradingVolume"))

    async def close(self) -> None:
        await self._transport.close()
