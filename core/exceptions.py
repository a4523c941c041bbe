"""
Core Module - Exceptions.

============================================================
HIERARCHY
============================================================
VolumeGateException
├── ConfigurationError
└── VerificationError
    ├── InvalidUidError
    ├── NoExchangesConfiguredError
    ├── ExchangeNotConfiguredError
    └── CapabilityUnavailableError

A VerificationError aborts one verify() call before any
exchange is contacted. Policy failures (low volume, missing
deposit) are results, not exceptions.

Client failures live in exchange_clients.errors, storage
failures in storage.repositories.exceptions.

============================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class VolumeGateException(Exception):
    """
    Base for application errors.

    `severity` picks the log level at the catch site, `context`
    holds the identifiers worth logging with the message.
    """

    default_severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.context = dict(context or {})
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        if cause is not None:
            self.context.setdefault("cause", f"{type(cause).__name__}: {cause}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(VolumeGateException):
    """A configuration file or environment value is unusable."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or {}
        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]
        super().__init__(message, context=context, **kwargs)


class VerificationError(VolumeGateException):
    pass


class InvalidUidError(VerificationError):
    def __init__(self, uid: Any):
        super().__init__(
            "A UID string is required for verification.",
            context={"uid": repr(uid)[:50]},
        )


class NoExchangesConfiguredError(VerificationError):
    default_severity = Severity.HIGH

    def __init__(self):
        super().__init__("No exchanges are available for verification.")


class ExchangeNotConfiguredError(VerificationError):
    def __init__(self, exchange_id: str):
        super().__init__(
            f"Exchange {exchange_id} is not configured.",
            context={"exchange_id": exchange_id},
        )
        self.exchange_id = exchange_id


class CapabilityUnavailableError(VerificationError):
    """The exchange's client cannot perform the requested lookup."""

    def __init__(self, exchange_id: str, capability: str):
        super().__init__(
            f"Exchange {exchange_id} does not support {capability}.",
            context={"exchange_id": exchange_id, "capability": capability},
        )
        self.exchange_id = exchange_id
