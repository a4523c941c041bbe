"""
Exchange Clients - Generic REST Client.

============================================================
PURPOSE
============================================================
Reads a UID's volume from a simple JSON endpoint.

REQUEST:
- GET {api_base_url}{volume_path}, "{uid}" replaced by the
  URL-quoted uid
- Authorization: Bearer <api_key> when a key is configured
- Extra headers from configuration

RESPONSE:
- JSON object with a numeric "volume" field

Failures raise ExchangeException: there is no deposit result
to carry them.

============================================================
"""

import logging
import time
from typing import Dict, Optional
from urllib.parse import quote

from .base import ExchangeClient, VolumeResult
from .errors import (
    ExchangeException,
    create_invalid_response_error,
    map_http_error,
)
from .logging_utils import ClientLogger
from .transport import HttpTransport


logger = logging.getLogger(__name__)


DEFAULT_VOLUME_PATH = "/uids/{uid}/volume"


class RestExchangeClient(ExchangeClient):
    """Client for plain authenticated JSON volume endpoints."""

    client_type = "rest"

    def __init__(
        self,
        exchange_id: str,
        api_base_url: str,
        volume_path: str = DEFAULT_VOLUME_PATH,
        api_key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[HttpTransport] = None,
    ):
        super().__init__(exchange_id)
        self._base_url = (api_base_url or "").rstrip("/")
        self._volume_path = volume_path or DEFAULT_VOLUME_PATH
        self._api_key = api_key
        self._headers = dict(headers or {})
        self._transport = transport or HttpTransport(exchange_id)
        self._logger = ClientLogger(exchange_id)

    def build_url(self, uid: str) -> str:
        path = self._volume_path.replace("{uid}", quote(str(uid), safe=""))
        return f"{self._base_url}{path}"

    def build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self._headers)
        return headers

    async def get_volume(
        self,
        uid: str,
        deposit_threshold: Optional[float] = None,
    ) -> VolumeResult:
        url = self.build_url(uid)
        headers = self.build_headers()

        request_id = self._logger.log_request("get_volume", "GET", url, headers=headers)
        start_time = time.time()

        response = await self._transport.request("GET", url, headers=headers, operation="get_volume")
        latency_ms = (time.time() - start_time) * 1000

        if not response.ok:
            self._logger.log_response(
                "get_volume", request_id, response.status, latency_ms, False,
                error_message=response.text,
            )
            raise ExchangeException(
                map_http_error(self.exchange_id, response.status, response.text[:200] or "HTTP error", "get_volume")
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExchangeException(
                create_invalid_response_error(
                    self.exchange_id, f"Malformed JSON: {e}", "get_volume", response.status
                )
            ) from e

        volume = payload.get("volume") if isinstance(payload, dict) else None
        if isinstance(volume, bool) or not isinstance(volume, (int, float)):
            self._logger.log_response(
                "get_volume", request_id, response.status, latency_ms, False,
                error_message="Response is missing a numeric volume",
                response_body=payload,
            )
            raise ExchangeException(
                create_invalid_response_error(
                    self.exchange_id, "Response is missing a numeric volume", "get_volume", response.status
                )
            )

        self._logger.log_response(
            "get_volume", request_id, response.status, latency_ms, True, response_body=payload,
        )
        return VolumeResult(volume=float(volume), source=payload)

    async def close(self) -> None:
        await self._transport.close()
