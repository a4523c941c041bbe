"""
Exchange Clients Package.

============================================================
PURPOSE
============================================================
Exchange client implementations used for UID verification.

AVAILABLE CLIENTS:
- MockExchangeClient: Static volume table
- RestExchangeClient: Plain authenticated JSON endpoint
- BlofinClient: Blofin affiliate API (signed protocol A)
- BitunixClient: Bitunix partner API (signed protocol B)

UTILITIES:
- ClientFactory: Creates clients from exchange descriptors
- ClientRegistry: Immutable mapping of configured clients
- HttpTransport: Shared aiohttp transport
- ClientLogger: Secure logging

ERROR HANDLING:
- ExchangeError: Unified error representation
- ErrorCategory: Standardized error categories

============================================================
"""

from .base import (
    DepositResult,
    ExchangeClient,
    UidVerification,
    VolumeResult,
)
from .bitunix import BitunixClient
from .blofin import BlofinClient
from .errors import (
    ErrorCategory,
    ExchangeError,
    ExchangeException,
)
from .factory import ClientFactory, ClientRegistry, UnsupportedClientTypeError
from .mock import MockExchangeClient
from .rest import RestExchangeClient
from .transport import HttpResponse, HttpTransport


__all__ = [
    "DepositResult",
    "ExchangeClient",
    "UidVerification",
    "VolumeResult",
    "BitunixClient",
    "BlofinClient",
    "ErrorCategory",
    "ExchangeError",
    "ExchangeException",
    "ClientFactory",
    "ClientRegistry",
    "UnsupportedClientTypeError",
    "MockExchangeClient",
    "RestExchangeClient",
    "HttpResponse",
    "HttpTransport",
]
