"""
Exchange Clients - Masked Request Logging.

============================================================
PURPOSE
============================================================
Both partner APIs are signed with long-lived credentials, so
nothing a client logs may carry a key, passphrase, token or
signature in clear text. Requests are logged as one DEBUG
line with masked headers and params plus a short body digest.
Responses go to DEBUG on success and WARNING on failure.

Response previews are attached only when
EXCHANGE_VERBOSE_LOGGING is truthy.

============================================================
"""

import hashlib
import json
import logging
import os
import re
from typing import Any, Dict, Optional


SENSITIVE_HEADERS = frozenset({
    "authorization",
    "access-key",
    "access-sign",
    "access-passphrase",
    "apikey",
    "api-key",
    "signature",
    "secret",
})

SENSITIVE_PARAMS = frozenset({
    "apikey",
    "api_key",
    "secret",
    "secret_key",
    "api_secret",
    "passphrase",
    "signature",
    "sign",
    "token",
})

# Free text that looks like a raw key
SENSITIVE_PATTERNS = [
    (re.compile(r"[A-Za-z0-9]{32,}"), "***KEY***"),
]

_URL_SECRET = re.compile(
    r"((?:%s)=)[^&#]+" % "|".join(sorted(SENSITIVE_PARAMS, key=len, reverse=True)),
    re.IGNORECASE,
)

PREVIEW_LIMIT = 500


def mask_value(value: str, show_chars: int = 4) -> str:
    """Keep a short prefix for correlation; short values vanish entirely."""
    if not value or len(value) <= show_chars:
        return "***"
    return value[:show_chars] + "...***"


def _scrub_text(text: str) -> str:
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    return {
        name: mask_value(str(value)) if name.lower() in SENSITIVE_HEADERS else value
        for name, value in (headers or {}).items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Mask secret-named keys, recursing into nested dicts."""
    masked: Dict[str, Any] = {}
    for name, value in (params or {}).items():
        if name.lower() in SENSITIVE_PARAMS:
            masked[name] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[name] = mask_params(value)
        elif isinstance(value, str):
            masked[name] = _scrub_text(value)
        else:
            masked[name] = value
    return masked


def mask_url(url: str) -> str:
    if not url:
        return url
    return _URL_SECRET.sub(r"\1***", url)


def verbose_logging_enabled() -> bool:
    return os.getenv("EXCHANGE_VERBOSE_LOGGING", "").strip().lower() in ("1", "true", "yes")


def _digest(body: Any) -> Optional[str]:
    if not body:
        return None
    if isinstance(body, (dict, list)):
        body = json.dumps(body, sort_keys=True, default=str)
    return hashlib.sha256(str(body).encode()).hexdigest()[:16]


def _compact(fields: Dict[str, Any]) -> str:
    return json.dumps({k: v for k, v in fields.items() if v is not None}, default=str)


class ClientLogger:
    """
    Per-exchange logger under `exchange_client.<exchange_id>`.

    log_request returns an id ("blofin-3") that the matching
    log_response repeats, so the two lines can be paired.
    """

    def __init__(self, exchange_id: str, verbose: Optional[bool] = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(f"exchange_client.{exchange_id}")
        self._verbose = verbose_logging_enabled() if verbose is None else verbose
        self._sequence = 0

    def log_request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> str:
        self._sequence += 1
        request_id = f"{self._exchange_id}-{self._sequence}"

        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug("REQUEST: %s", _compact({
                "request_id": request_id,
                "operation": operation,
                "method": method,
                "endpoint": mask_url(endpoint),
                "headers": mask_headers(headers) or None,
                "params": mask_params(params) or None,
                "body_sha256": _digest(body),
            }))
        return request_id

    def log_response(
        self,
        operation: str,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_message: Optional[str] = None,
        response_body: Any = None,
    ) -> None:
        preview = None
        if self._verbose and response_body is not None:
            if isinstance(response_body, (dict, list)):
                response_body = json.dumps(response_body, default=str)
            preview = _scrub_text(str(response_body)[:PREVIEW_LIMIT])

        line = _compact({
            "request_id": request_id,
            "operation": operation,
            "status": status_code,
            "latency_ms": round(latency_ms, 2),
            "error": error_message[:200] if error_message else None,
            "preview": preview,
        })
        if success:
            self._logger.debug("RESPONSE: %s", line)
        else:
            self._logger.warning("RESPONSE_ERROR: %s", line)

    def info(self, message: str) -> None:
        self._logger.info("[%s] %s", self._exchange_id, message)

    def warning(self, message: str) -> None:
        self._logger.warning("[%s] %s", self._exchange_id, message)

    def error(self, message: str, exc_info: bool = False) -> None:
        self._logger.error("[%s] %s", self._exchange_id, message, exc_info=exc_info)

    def debug(self, message: str) -> None:
        self._logger.debug("[%s] %s", self._exchange_id, message)
