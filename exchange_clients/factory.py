"""
Exchange Client Factory.

============================================================
PURPOSE
============================================================
Factory pattern for creating exchange clients from exchange
descriptors, selected by the descriptor's type tag.

FEATURES:
- Centralized client creation
- Creator table selected by type tag
- Immutable registry of configured clients

============================================================
USAGE
============================================================
```python
client = ClientFactory.create("blofin-main", descriptor, snapshot_store=store)

registry = ClientFactory.create_all(config.exchanges, snapshot_store=store)
registry.get("blofin-main")
```

============================================================
"""

import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from core.clock import ClockProtocol

from .base import ExchangeClient
from .bitunix import BitunixClient
from .blofin import BlofinClient
from .mock import MockExchangeClient
from .rest import RestExchangeClient


logger = logging.getLogger(__name__)


ClientCreator = Callable[[str, Any, Optional[Any], Optional[ClockProtocol]], ExchangeClient]


class UnsupportedClientTypeError(ValueError):
    """Raised when a descriptor names an unknown client type."""

    def __init__(self, exchange_id: str, client_type: Any):
        super().__init__(f"Unsupported exchange type '{client_type}' for {exchange_id}")
        self.exchange_id = exchange_id
        self.client_type = client_type


# ============================================================
# BUILT-IN CREATORS
# ============================================================

def _create_mock(exchange_id, descriptor, snapshot_store, clock) -> ExchangeClient:
    return MockExchangeClient(exchange_id, volumes=descriptor.volumes)


def _create_rest(exchange_id, descriptor, snapshot_store, clock) -> ExchangeClient:
    if not descriptor.api_base_url:
        raise ValueError(f"REST exchange {exchange_id} requires api_base_url")
    return RestExchangeClient(
        exchange_id,
        api_base_url=descriptor.api_base_url,
        volume_path=descriptor.volume_path,
        api_key=descriptor.api_key,
        headers=descriptor.headers,
    )


def _create_blofin(exchange_id, descriptor, snapshot_store, clock) -> ExchangeClient:
    return BlofinClient(
        exchange_id,
        api_key=descriptor.api_key,
        api_secret=descriptor.api_secret,
        passphrase=descriptor.passphrase,
        snapshot_store=snapshot_store,
        kol_name=descriptor.kol_name,
        exchange_ref_id=descriptor.database_id,
        sub_affiliate_invitees=descriptor.sub_affiliate_invitees,
        clock=clock,
    )


def _create_bitunix(exchange_id, descriptor, snapshot_store, clock) -> ExchangeClient:
    return BitunixClient(
        exchange_id,
        api_key=descriptor.api_key,
        api_secret=descriptor.api_secret,
        snapshot_store=snapshot_store,
        kol_name=descriptor.kol_name,
        exchange_ref_id=descriptor.database_id,
        clock=clock,
    )


# ============================================================
# CLIENT FACTORY
# ============================================================

class ClientFactory:
    """
    Factory for creating exchange clients.

    Subclasses extend or replace `_creators` to add client types.
    """

    _creators: Dict[str, ClientCreator] = {
        "mock": _create_mock,
        "rest": _create_rest,
        "blofin": _create_blofin,
        "bitunix": _create_bitunix,
    }

    @classmethod
    def supports(cls, client_type: Any) -> bool:
        return isinstance(client_type, str) and client_type.lower() in cls._creators

    @classmethod
    def create(
        cls,
        exchange_id: str,
        descriptor: Any,
        snapshot_store: Any = None,
        clock: Optional[ClockProtocol] = None,
    ) -> ExchangeClient:
        """
        Create an exchange client.

        Args:
            exchange_id: Configured exchange identifier
            descriptor: Exchange descriptor (type tag, credentials, options)
            snapshot_store: Store for clients that persist snapshots
            clock: Clock for signed clients

        Returns:
            ExchangeClient instance

        Raises:
            UnsupportedClientTypeError: If the type is not registered
        """
        client_type = descriptor.type
        if not cls.supports(client_type):
            raise UnsupportedClientTypeError(exchange_id, client_type)

        creator = cls._creators[client_type.lower()]
        return creator(exchange_id, descriptor, snapshot_store, clock)

    @classmethod
    def create_all(
        cls,
        descriptors: Mapping[str, Any],
        snapshot_store: Any = None,
        clock: Optional[ClockProtocol] = None,
    ) -> "ClientRegistry":
        """
        Create clients for every descriptor.

        Unsupported types are skipped with a warning. Other creation
        failures are logged and skipped.
        """
        clients: Dict[str, ExchangeClient] = {}

        for exchange_id, descriptor in descriptors.items():
            try:
                clients[exchange_id] = cls.create(exchange_id, descriptor, snapshot_store, clock)
            except UnsupportedClientTypeError as e:
                logger.warning(f"Skipping exchange {exchange_id}: {e}")
            except (ValueError, TypeError) as e:
                logger.error(f"Failed to create client for {exchange_id}: {e}")

        return ClientRegistry(clients)


# ============================================================
# CLIENT REGISTRY
# ============================================================

class ClientRegistry(Mapping):
    """
    Immutable mapping of exchange id to client.

    A new registry is built on every configuration refresh and
    swapped in as a whole.
    """

    def __init__(self, clients: Optional[Dict[str, ExchangeClient]] = None):
        self._clients = MappingProxyType(dict(clients or {}))

    def __getitem__(self, exchange_id: str) -> ExchangeClient:
        return self._clients[exchange_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._clients)

    def __len__(self) -> int:
        return len(self._clients)

    def first_id(self) -> Optional[str]:
        return next(iter(self._clients), None)

    async def close_all(self) -> None:
        """Close every client's network resources."""
        for exchange_id, client in self._clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Failed to close client {exchange_id}: {e}")
