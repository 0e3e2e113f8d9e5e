"""
Tests for settlement_config: YAML loading, validation and the active-config
entrypoint.
"""

from decimal import Decimal

import pytest
import yaml

from settlement_config import CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH, get_active_config
from settlement_config.loader import compute_checksum, parse_config
from settlement_kernel.exceptions import ConfigError


def write_config(tmp_path, data: dict):
    path = tmp_path / "settlement.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_packaged_defaults_load(self):
        config = get_active_config(DEFAULT_CONFIG_PATH)
        assert config.config_id == "settlement-defaults"
        assert config.referral.bda_threshold == Decimal("10000")
        assert config.referral.bda_ratio + config.referral.commission_ratio <= config.referral.divisor
        assert config.lock.ttl_seconds == 10.0
        assert config.chain.mint_event_name == "MintNFT"

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {"config_id": "from-env", "version": 3})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        config = get_active_config()
        assert config.config_id == "from-env"
        assert config.version == 3

    def test_trace_logged(self, captured_logs):
        get_active_config(DEFAULT_CONFIG_PATH)
        traces = [r for r in captured_logs() if r["message"] == "SETTLEMENT_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestParseConfig:

    def test_addresses_lowercased(self):
        config = parse_config({
            "config_id": "c",
            "chain": {"exchange_contract": "0x" + "AB" * 20},
        })
        assert config.chain.exchange_contract == "0x" + "ab" * 20

    def test_threshold_string_is_exact(self):
        config = parse_config({"config_id": "c", "referral": {"bda_threshold": "1234.5"}})
        assert config.referral.bda_threshold == Decimal("1234.5")

    def test_float_threshold_rejected(self):
        with pytest.raises(ConfigError):
            parse_config({"config_id": "c", "referral": {"bda_threshold": 1234.5}})

    def test_ratios_cannot_exceed_divisor(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_config({
                "config_id": "c",
                "referral": {"bda_ratio": 6000, "commission_ratio": 5000, "divisor": 10000},
            })
        assert "exceeds divisor" in str(exc_info.value)

    def test_every_problem_reported(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_config({
                "config_id": "c",
                "lock": {"ttl_seconds": 0, "max_attempts": 0},
                "chain": {"locking_contract": "nope"},
            })
        message = str(exc_info.value)
        assert "ttl_seconds" in message
        assert "max_attempts" in message
        assert "locking_contract" in message

    def test_fractional_ratio_rejected_not_truncated(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"config_id": "c", "referral": {"bda_ratio": 0.5}})
        assert exc_info.value.errors == ["referral.bda_ratio must be an integer, got 0.5"]

    def test_non_numeric_values_collected(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_config({
                "config_id": "c",
                "lock": {"ttl_seconds": "soon"},
                "referral": {"divisor": "ten thousand", "equity_min_referees": True},
                "chain": {"max_retries": None},
                "poller": {"interval_seconds": [5]},
            })
        assert sorted(exc_info.value.errors) == [
            "chain.max_retries is not an integer: None",
            "lock.ttl_seconds is not a number: 'soon'",
            "poller.interval_seconds is not a number: [5]",
            "referral.divisor is not an integer: 'ten thousand'",
            "referral.equity_min_referees must be an integer, got True",
        ]

    def test_numeric_strings_accepted(self):
        config = parse_config({
            "config_id": "c",
            "lock": {"max_attempts": "7", "ttl_seconds": "2.5"},
        })
        assert config.lock.max_attempts == 7
        assert config.lock.ttl_seconds == 2.5

    def test_missing_config_id(self):
        with pytest.raises(KeyError):
            parse_config({"version": 1})

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
