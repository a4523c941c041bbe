"""
Exchange Clients - HTTP Transport.

============================================================
PURPOSE
============================================================
Thin aiohttp wrapper shared by the REST and signed clients.

- Lazily opens one ClientSession per transport
- Returns status, lower-cased headers and body text
- Maps aiohttp failures to ExchangeException

Clients receive a transport in their constructor so tests can
substitute a fake returning canned HttpResponse objects.

============================================================
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import aiohttp

from .errors import (
    ExchangeException,
    create_network_error,
    create_timeout_error,
)


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class HttpResponse:
    """Decoded HTTP response."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decode the body. Raises ValueError on malformed JSON."""
        return json.loads(self.text) if self.text else None

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class HttpTransport:
    """aiohttp based transport."""

    def __init__(
        self,
        exchange_id: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._exchange_id = exchange_id
        self._timeout = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[Union[str, Dict[str, Any]]] = None,
        operation: Optional[str] = None,
    ) -> HttpResponse:
        """
        Perform one HTTP request.

        Args:
            method: HTTP method
            url: Absolute URL including the query string
            headers: Request headers
            data: Raw body string or form fields
            operation: Name used in error context

        Returns:
            HttpResponse

        Raises:
            ExchangeException: On network failure or timeout
        """
        session = await self._get_session()

        try:
            async with session.request(method, url, headers=headers, data=data) as resp:
                text = await resp.text()
                return HttpResponse(
                    status=resp.status,
                    headers={k.lower(): v for k, v in resp.headers.items()},
                    text=text,
                )
        except asyncio.TimeoutError:
            raise ExchangeException(
                create_timeout_error(self._exchange_id, int(self._timeout * 1000), operation)
            )
        except aiohttp.ClientError as e:
            raise ExchangeException(
                create_network_error(self._exchange_id, str(e), operation)
            ) from e
