"""
Verification Configuration.

============================================================
PURPOSE
============================================================
Typed view of the verification section of the bot
configuration.

- ExchangeDescriptor: one configured exchange (type tag,
  credentials, policy overrides, display metadata)
- VerificationConfig: global policy plus descriptors
- load_verification_config: JSON file + environment overrides

Both camelCase and snake_case keys are accepted so the
configuration file written by the admin layer can be used
unchanged.

============================================================
ENVIRONMENT OVERRIDES
============================================================
CONFIG_PATH                      config file (default config.json)
VERIFICATION_MINIMUM_VOLUME      global minimum volume
VERIFICATION_DEPOSIT_THRESHOLD   global deposit threshold
VERIFICATION_DEFAULT_EXCHANGE    default exchange id
VOLUME_CHECK_ENABLED             "true" / "false"
VOLUME_CHECK_DAYS                compliance window in days
VOLUME_WARNING_ENABLED           "true" / "false"
VOLUME_WARNING_DAYS              warning lead time in days

============================================================
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from exchange_clients.rest import DEFAULT_VOLUME_PATH


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "config.json"

DEFAULT_MINIMUM_VOLUME = 1000.0
DEFAULT_VOLUME_CHECK_DAYS = 30
DEFAULT_VOLUME_WARNING_DAYS = 2


# File-less fallback: a single mock exchange so the verifier can start.
DEFAULT_VERIFICATION: Dict[str, Any] = {
    "volumeCheckEnabled": True,
    "minimumVolume": DEFAULT_MINIMUM_VOLUME,
    "depositThreshold": None,
    "volumeCheckDays": DEFAULT_VOLUME_CHECK_DAYS,
    "volumeWarningEnabled": True,
    "volumeWarningDays": DEFAULT_VOLUME_WARNING_DAYS,
    "defaultExchange": "demo",
    "exchanges": {
        "demo": {
            "type": "mock",
            "volumes": {"demo-user": 2500},
        },
    },
}


# ============================================================
# KEY HELPERS
# ============================================================

def _lookup(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_number(value: Any) -> Optional[float]:
    """Finite float or None. Booleans are not numbers here."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _as_int(value: Any) -> Optional[int]:
    number = _as_number(value)
    return int(number) if number is not None else None


# ============================================================
# EXCHANGE DESCRIPTOR
# ============================================================

@dataclass
class ExchangeDescriptor:
    """
    Configuration of one exchange.

    Consumed by ClientFactory (type, credentials, type options)
    and by the verifier (policy overrides, display metadata).
    """

    type: str
    """Client type tag: mock, rest, blofin, bitunix."""

    # Credentials
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    passphrase: Optional[str] = None

    # Policy overrides
    minimum_volume: Optional[float] = None
    deposit_threshold: Optional[float] = None

    # Display metadata
    name: Optional[str] = None
    description: str = ""
    database_id: Optional[int] = None
    affiliate_link: Optional[str] = None
    kol_name: Optional[str] = None

    # Mock
    volumes: Dict[str, Any] = field(default_factory=dict)

    # REST
    api_base_url: Optional[str] = None
    volume_path: str = DEFAULT_VOLUME_PATH
    headers: Dict[str, str] = field(default_factory=dict)

    # Blofin
    sub_affiliate_invitees: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExchangeDescriptor":
        database_id = _lookup(data, "id", "databaseId", "database_id")
        if isinstance(database_id, bool) or not isinstance(database_id, int):
            database_id = None

        return cls(
            type=str(_lookup(data, "type", default="")).lower(),
            api_key=_lookup(data, "apiKey", "api_key"),
            api_secret=_lookup(data, "apiSecret", "api_secret"),
            passphrase=_lookup(data, "passphrase"),
            minimum_volume=_as_number(_lookup(data, "minimumVolume", "minimum_volume")),
            deposit_threshold=_as_number(_lookup(data, "depositThreshold", "deposit_threshold")),
            name=_lookup(data, "name"),
            description=_lookup(data, "description", default="") or "",
            database_id=database_id,
            affiliate_link=_lookup(data, "affiliateLink", "affiliate_link"),
            kol_name=_lookup(data, "kolName", "kol_name"),
            volumes=dict(_lookup(data, "volumes", default={}) or {}),
            api_base_url=_lookup(data, "apiBaseUrl", "api_base_url"),
            volume_path=_lookup(data, "volumePath", "volume_path", default=DEFAULT_VOLUME_PATH),
            headers=dict(_lookup(data, "headers", default={}) or {}),
            sub_affiliate_invitees=_as_bool(
                _lookup(data, "subAffiliateInvitees", "sub_affiliate_invitees"), False
            ),
        )


# ============================================================
# VERIFICATION CONFIG
# ============================================================

@dataclass
class VerificationConfig:
    """Global verification and compliance policy."""

    exchanges: Dict[str, ExchangeDescriptor] = field(default_factory=dict)

    minimum_volume: float = 0.0
    """Global minimum volume; exchanges may override with a positive value."""

    deposit_threshold: Optional[float] = None
    """Global deposit threshold; None means no deposit requirement."""

    default_exchange: Optional[str] = None

    volume_check_enabled: bool = True
    volume_check_days: int = DEFAULT_VOLUME_CHECK_DAYS
    volume_warning_enabled: bool = True
    volume_warning_days: int = DEFAULT_VOLUME_WARNING_DAYS

    guild_roles: Dict[str, str] = field(default_factory=dict)
    """Discord guild id -> verified role id, used on revocation."""

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "VerificationConfig":
        """
        Build from a configuration mapping.

        The verification settings may sit at the top level or
        under a "verification" key; Discord guild roles are read
        from discord.guilds.
        """
        data = data or {}
        section = data.get("verification", data)
        if not isinstance(section, Mapping):
            raise ConfigurationError("verification section must be a mapping", "verification", section)

        exchanges_data = _lookup(section, "exchanges", default={}) or {}
        if not isinstance(exchanges_data, Mapping):
            raise ConfigurationError("exchanges must be a mapping", "verification.exchanges", exchanges_data)

        exchanges = {
            str(exchange_id): ExchangeDescriptor.from_mapping(descriptor or {})
            for exchange_id, descriptor in exchanges_data.items()
        }

        check_days = _as_int(_lookup(section, "volumeCheckDays", "volume_check_days"))
        warning_days = _as_int(_lookup(section, "volumeWarningDays", "volume_warning_days"))

        return cls(
            exchanges=exchanges,
            minimum_volume=_as_number(_lookup(section, "minimumVolume", "minimum_volume")) or 0.0,
            deposit_threshold=_as_number(_lookup(section, "depositThreshold", "deposit_threshold")),
            default_exchange=_lookup(section, "defaultExchange", "default_exchange"),
            volume_check_enabled=_as_bool(
                _lookup(section, "volumeCheckEnabled", "volume_check_enabled"), True
            ),
            volume_check_days=check_days if check_days and check_days > 0 else DEFAULT_VOLUME_CHECK_DAYS,
            volume_warning_enabled=_as_bool(
                _lookup(section, "volumeWarningEnabled", "volume_warning_enabled"), True
            ),
            volume_warning_days=(
                warning_days if warning_days and warning_days > 0 else DEFAULT_VOLUME_WARNING_DAYS
            ),
            guild_roles=_parse_guild_roles(data.get("discord") or {}),
        )

    def get_exchange(self, exchange_id: str) -> Optional[ExchangeDescriptor]:
        return self.exchanges.get(exchange_id)

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.minimum_volume < 0:
            errors.append("minimum_volume cannot be negative")

        if self.deposit_threshold is not None and self.deposit_threshold < 0:
            errors.append("deposit_threshold cannot be negative")

        if self.default_exchange and self.default_exchange not in self.exchanges:
            errors.append(f"default_exchange '{self.default_exchange}' is not a configured exchange")

        for exchange_id, descriptor in self.exchanges.items():
            if not descriptor.type:
                errors.append(f"exchange '{exchange_id}' is missing a type")
            if descriptor.type == "rest" and not descriptor.api_base_url:
                errors.append(f"exchange '{exchange_id}' requires api_base_url for the rest type")

        return errors


def _parse_guild_roles(discord: Mapping[str, Any]) -> Dict[str, str]:
    roles: Dict[str, str] = {}
    for guild in discord.get("guilds") or []:
        if not isinstance(guild, Mapping):
            continue
        guild_id = _lookup(guild, "id", "guildId", "guild_id")
        role_id = _lookup(guild, "verifiedRoleId", "verified_role_id")
        if guild_id and role_id:
            roles[str(guild_id)] = str(role_id)
    return roles


# ============================================================
# LOADING
# ============================================================

def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}

    env_numbers = (
        ("VERIFICATION_MINIMUM_VOLUME", "minimumVolume"),
        ("VERIFICATION_DEPOSIT_THRESHOLD", "depositThreshold"),
        ("VOLUME_CHECK_DAYS", "volumeCheckDays"),
        ("VOLUME_WARNING_DAYS", "volumeWarningDays"),
    )
    for env_name, key in env_numbers:
        raw = os.getenv(env_name)
        if raw:
            value = _as_number(raw)
            if value is None:
                raise ConfigurationError(f"{env_name} must be a finite number", env_name, raw)
            overrides[key] = value

    for env_name, key in (
        ("VOLUME_CHECK_ENABLED", "volumeCheckEnabled"),
        ("VOLUME_WARNING_ENABLED", "volumeWarningEnabled"),
    ):
        raw = os.getenv(env_name)
        if raw is not None:
            overrides[key] = raw.strip().lower() == "true"

    default_exchange = os.getenv("VERIFICATION_DEFAULT_EXCHANGE")
    if default_exchange:
        overrides["defaultExchange"] = default_exchange

    return overrides


def load_verification_config(path: Optional[str] = None) -> VerificationConfig:
    """
    Load configuration from file or return defaults.

    Args:
        path: JSON config file; CONFIG_PATH env or config.json when None

    Returns:
        VerificationConfig

    Raises:
        ConfigurationError: Unreadable file or invalid values
    """
    load_dotenv()

    config_path = Path(path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH))
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Could not read {config_path}: {e}", "CONFIG_PATH", str(config_path)) from e
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be an object", "CONFIG_PATH", str(config_path))
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.warning(f"Configuration file {config_path} not found, using defaults")
        data = {"verification": json.loads(json.dumps(DEFAULT_VERIFICATION))}

    verification = dict(data.get("verification", data))
    verification.update(_env_overrides())
    merged = {**data, "verification": verification}

    config = VerificationConfig.from_mapping(merged)
    errors = config.validate()
    if errors:
        raise ConfigurationError(f"Invalid verification configuration: {'; '.join(errors)}")
    return config
