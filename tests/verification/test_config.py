"""
Verification configuration tests.
"""

import json

import pytest

from core.exceptions import ConfigurationError
from verification.config import (
    DEFAULT_MINIMUM_VOLUME,
    ExchangeDescriptor,
    VerificationConfig,
    load_verification_config,
)


ENV_VARS = (
    "CONFIG_PATH",
    "VERIFICATION_MINIMUM_VOLUME",
    "VERIFICATION_DEPOSIT_THRESHOLD",
    "VERIFICATION_DEFAULT_EXCHANGE",
    "VOLUME_CHECK_ENABLED",
    "VOLUME_CHECK_DAYS",
    "VOLUME_WARNING_ENABLED",
    "VOLUME_WARNING_DAYS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestFromMapping:
    """Tests for VerificationConfig.from_mapping."""

    def test_camel_case_nested_under_verification(self):
        config = VerificationConfig.from_mapping({
            "verification": {
                "minimumVolume": 1000,
                "depositThreshold": 50,
                "defaultExchange": "blofin",
                "volumeCheckDays": 14,
                "volumeWarningEnabled": False,
                "exchanges": {
                    "blofin": {
                        "type": "Blofin",
                        "apiKey": "k",
                        "apiSecret": "s",
                        "passphrase": "p",
                        "kolName": "kol",
                        "id": 7,
                        "subAffiliateInvitees": True,
                        "affiliateLink": "https://example.com/ref",
                    },
                },
            },
            "discord": {"guilds": [{"id": 123, "verifiedRoleId": 456}, {"id": 9}]},
        })

        assert config.minimum_volume == 1000
        assert config.deposit_threshold == 50
        assert config.default_exchange == "blofin"
        assert config.volume_check_days == 14
        assert config.volume_warning_enabled is False
        assert config.volume_warning_days == 2
        assert config.guild_roles == {"123": "456"}

        descriptor = config.get_exchange("blofin")
        assert descriptor.type == "blofin"
        assert descriptor.api_key == "k"
        assert descriptor.database_id == 7
        assert descriptor.kol_name == "kol"
        assert descriptor.sub_affiliate_invitees is True

    def test_snake_case_top_level(self):
        config = VerificationConfig.from_mapping({
            "minimum_volume": 10,
            "volume_check_enabled": False,
            "exchanges": {
                "api": {"type": "rest", "api_base_url": "https://x", "volume_path": "/v/{uid}"},
            },
        })

        assert config.minimum_volume == 10
        assert config.volume_check_enabled is False
        assert config.exchanges["api"].api_base_url == "https://x"
        assert config.exchanges["api"].volume_path == "/v/{uid}"

    def test_defaults(self):
        config = VerificationConfig.from_mapping({})

        assert config.minimum_volume == 0
        assert config.deposit_threshold is None
        assert config.volume_check_enabled is True
        assert config.volume_check_days == 30
        assert config.volume_warning_enabled is True
        assert config.volume_warning_days == 2

    def test_non_numeric_values_are_ignored(self):
        descriptor = ExchangeDescriptor.from_mapping(
            {"type": "mock", "minimumVolume": "lots", "depositThreshold": True, "id": "7"}
        )

        assert descriptor.minimum_volume is None
        assert descriptor.deposit_threshold is None
        assert descriptor.database_id is None

    def test_validate_reports_problems(self):
        config = VerificationConfig.from_mapping({
            "defaultExchange": "missing",
            "depositThreshold": -1,
            "exchanges": {"api": {"type": "rest"}, "blank": {}},
        })

        errors = config.validate()

        assert len(errors) == 4


class TestLoadVerificationConfig:
    """Tests for load_verification_config."""

    def test_reads_file_and_applies_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "verification": {
                "minimumVolume": 500,
                "defaultExchange": "demo",
                "exchanges": {"demo": {"type": "mock"}, "other": {"type": "mock"}},
            },
        }))
        monkeypatch.setenv("VERIFICATION_MINIMUM_VOLUME", "750")
        monkeypatch.setenv("VERIFICATION_DEFAULT_EXCHANGE", "other")
        monkeypatch.setenv("VOLUME_WARNING_DAYS", "3")

        config = load_verification_config(str(path))

        assert config.minimum_volume == 750
        assert config.default_exchange == "other"
        assert config.volume_warning_days == 3

    def test_config_path_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"verification": {"minimumVolume": 42, "exchanges": {}}}))
        monkeypatch.setenv("CONFIG_PATH", str(path))

        assert load_verification_config().minimum_volume == 42

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_verification_config(str(tmp_path / "absent.json"))

        assert config.minimum_volume == DEFAULT_MINIMUM_VOLUME
        assert config.default_exchange in config.exchanges

    def test_malformed_file_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_verification_config(str(path))

    def test_invalid_env_number_raises(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VOLUME_CHECK_DAYS", "soon")

        with pytest.raises(ConfigurationError):
            load_verification_config(str(tmp_path / "absent.json"))
