"""
Exchange Clients - Mock Client.

============================================================
PURPOSE
============================================================
Static volume table client for demos and tests.

- Looks the UID up in a configured volumes mapping
- Missing or non-numeric entries report zero
- Never fails and never evaluates deposits

============================================================
"""

import logging
from typing import Any, Dict, Optional

from .base import ExchangeClient, VolumeResult, to_float


logger = logging.getLogger(__name__)


class MockExchangeClient(ExchangeClient):
    """Client backed by a static {uid: volume} table."""

    client_type = "mock"

    def __init__(self, exchange_id: str, volumes: Optional[Dict[str, Any]] = None):
        super().__init__(exchange_id)
        self._volumes = dict(volumes or {})

    async def get_volume(
        self,
        uid: str,
        deposit_threshold: Optional[float] = None,
    ) -> VolumeResult:
        raw = self._volumes.get(uid)
        volume = to_float(raw)
        logger.debug(f"Mock volume for {uid} on {self.exchange_id}: {volume}")
        return VolumeResult(
            volume=volume,
            source={"type": self.client_type, "uid": uid, "value": raw},
        )
