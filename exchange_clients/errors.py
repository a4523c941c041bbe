"""
Exchange Clients - Error Mapping.

============================================================
PURPOSE
============================================================
Every failure a client cannot turn into a verification
outcome leaves it as an ExchangeException carrying one
ExchangeError. Callers branch on the category only; the
exchange's own code and text ride along for the logs.

Whether a failure is worth retrying follows from its
category: network trouble, timeouts, server errors and rate
limits are transient, everything else is final.

============================================================
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def transient(self) -> bool:
        return self in _TRANSIENT


_TRANSIENT = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.RATE_LIMIT,
})


@dataclass(frozen=True)
class ExchangeError:
    """A classified exchange failure."""

    category: ErrorCategory
    code: str
    message: str
    exchange_id: Optional[str] = None
    operation: Optional[str] = None
    http_status: Optional[int] = None
    exchange_code: Optional[str] = None
    retry_after_ms: Optional[int] = None

    def is_retryable(self) -> bool:
        if self.http_status is not None and self.http_status >= 500:
            return True
        return self.category.transient

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["retryable"] = self.is_retryable()
        return data

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.code}: {self.message}"


class ExchangeException(Exception):
    """Raised by clients; `error` holds the classification."""

    def __init__(self, error: ExchangeError):
        self.error = error
        super().__init__(str(error))


def _build(
    exchange_id: str,
    category: ErrorCategory,
    suffix: str,
    message: str,
    operation: Optional[str],
    **extra: Any,
) -> ExchangeError:
    return ExchangeError(
        category=category,
        code=f"{exchange_id.upper()}_{suffix}",
        message=message,
        exchange_id=exchange_id,
        operation=operation,
        **extra,
    )


# =============================================================
# HTTP STATUS
# =============================================================

_STATUS_CATEGORIES = {
    401: ErrorCategory.AUTHENTICATION,
    403: ErrorCategory.AUTHENTICATION,
    404: ErrorCategory.USER_NOT_FOUND,
    429: ErrorCategory.RATE_LIMIT,
}


def map_http_error(
    exchange_id: str,
    http_status: int,
    message: str,
    operation: Optional[str] = None,
) -> ExchangeError:
    """Classify a non-2xx response. Any 5xx is an exchange-side failure."""
    if http_status >= 500:
        category = ErrorCategory.EXCHANGE_ERROR
    else:
        category = _STATUS_CATEGORIES.get(http_status, ErrorCategory.UNKNOWN)
    return _build(
        exchange_id, category, f"HTTP_{http_status}", message, operation,
        http_status=http_status,
    )


# =============================================================
# BUSINESS CODES
# =============================================================

# Bitunix answers HTTP 200 and reports failures in `code`
BITUNIX_CODE_CATEGORIES = {
    "2": ErrorCategory.USER_NOT_FOUND,
    "10001": ErrorCategory.AUTHENTICATION,
    "10002": ErrorCategory.AUTHENTICATION,
    "10005": ErrorCategory.RATE_LIMIT,
}


def map_business_error(
    exchange_id: str,
    code: Any,
    message: str,
    operation: Optional[str] = None,
    http_status: Optional[int] = None,
    categories: Optional[Dict[str, ErrorCategory]] = None,
) -> ExchangeError:
    """
    Classify a non-zero `code` in an otherwise successful response.

    Codes missing from `categories` are EXCHANGE_ERROR.
    """
    code = str(code)
    category = (categories or {}).get(code, ErrorCategory.EXCHANGE_ERROR)
    return _build(
        exchange_id, category, code, message or f"{exchange_id} API error", operation,
        http_status=http_status, exchange_code=code,
    )


def map_bitunix_error(code: Any, message: str, operation: Optional[str] = None) -> ExchangeError:
    return map_business_error("bitunix", code, message, operation, categories=BITUNIX_CODE_CATEGORIES)


# =============================================================
# TRANSPORT AND PAYLOAD FAILURES
# =============================================================


def create_network_error(exchange_id: str, message: str, operation: Optional[str] = None) -> ExchangeError:
    return _build(exchange_id, ErrorCategory.NETWORK, "NETWORK_ERROR", message, operation)


def create_timeout_error(exchange_id: str, timeout_ms: int, operation: Optional[str] = None) -> ExchangeError:
    return _build(
        exchange_id, ErrorCategory.TIMEOUT, "TIMEOUT",
        f"Request timed out after {timeout_ms}ms", operation,
    )


def create_rate_limit_error(
    exchange_id: str,
    retry_after_ms: Optional[int] = None,
    operation: Optional[str] = None,
) -> ExchangeError:
    return _build(
        exchange_id, ErrorCategory.RATE_LIMIT, "RATE_LIMIT", "Rate limit exceeded", operation,
        http_status=429, retry_after_ms=retry_after_ms,
    )


def create_invalid_response_error(
    exchange_id: str,
    message: str,
    operation: Optional[str] = None,
    http_status: Optional[int] = None,
) -> ExchangeError:
    """The body was not JSON or lacked the fields the client reads."""
    return _build(
        exchange_id, ErrorCategory.INVALID_RESPONSE, "INVALID_RESPONSE", message, operation,
        http_status=http_status,
    )
