"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``settlement_config.schema`` dataclasses.  The single public entry point for
runtime config is ``settlement_config.get_active_config()``.

Invariants enforced
-------------------
* Money values (the BDA threshold) are parsed as ``Decimal`` from their
  string form; YAML floats are rejected.
* Integer fields reject floats and booleans instead of truncating them; a
  non-numeric value is reported rather than raising ``ValueError``.
* ``bda_ratio + commission_ratio <= divisor`` so the two commission legs can
  never pay out more than the revenue they are taken from.
* Contract addresses are lower-cased.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigError`` listing every problem found.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    ChainSettings,
    LockSettings,
    PollerSettings,
    ReferralSettings,
    SettlementConfig,
)
from settlement_kernel.exceptions import ConfigError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed configuration."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_decimal(raw: Any, field_name: str, errors: list[str]) -> Decimal:
    if isinstance(raw, float):
        errors.append(f"{field_name} must be quoted or an integer, got float {raw!r}")
        return Decimal("0")
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        errors.append(f"{field_name} is not a decimal: {raw!r}")
        return Decimal("0")


def _parse_int(raw: Any, field_name: str, errors: list[str], default: int) -> int:
    if isinstance(raw, bool) or isinstance(raw, float):
        errors.append(f"{field_name} must be an integer, got {raw!r}")
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors.append(f"{field_name} is not an integer: {raw!r}")
        return default


def _parse_float(raw: Any, field_name: str, errors: list[str], default: float) -> float:
    if isinstance(raw, bool):
        errors.append(f"{field_name} must be a number, got {raw!r}")
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        errors.append(f"{field_name} is not a number: {raw!r}")
        return default


def _int_field(data: dict[str, Any], section: str, key: str, defaults: Any, errors: list[str]) -> int:
    default = getattr(defaults, key)
    return _parse_int(data.get(key, default), f"{section}.{key}", errors, default)


def _float_field(data: dict[str, Any], section: str, key: str, defaults: Any, errors: list[str]) -> float:
    default = getattr(defaults, key)
    return _parse_float(data.get(key, default), f"{section}.{key}", errors, default)


def parse_lock(data: dict[str, Any], errors: list[str]) -> LockSettings:
    defaults = LockSettings()
    settings = LockSettings(
        ttl_seconds=_float_field(data, "lock", "ttl_seconds", defaults, errors),
        backoff_seconds=_float_field(data, "lock", "backoff_seconds", defaults, errors),
        max_attempts=_int_field(data, "lock", "max_attempts", defaults, errors),
        max_wait_seconds=_float_field(data, "lock", "max_wait_seconds", defaults, errors),
    )
    if settings.ttl_seconds <= 0:
        errors.append("lock.ttl_seconds must be positive")
    if settings.backoff_seconds < 0:
        errors.append("lock.backoff_seconds must not be negative")
    if settings.max_attempts < 1:
        errors.append("lock.max_attempts must be at least 1")
    return settings


def parse_referral(data: dict[str, Any], errors: list[str]) -> ReferralSettings:
    defaults = ReferralSettings()
    threshold = _parse_decimal(
        data.get("bda_threshold", str(defaults.bda_threshold)),
        "referral.bda_threshold",
        errors,
    )
    settings = ReferralSettings(
        bda_threshold=threshold,
        bda_ratio=_int_field(data, "referral", "bda_ratio", defaults, errors),
        commission_ratio=_int_field(data, "referral", "commission_ratio", defaults, errors),
        divisor=_int_field(data, "referral", "divisor", defaults, errors),
        equity_min_referees=_int_field(data, "referral", "equity_min_referees", defaults, errors),
    )
    if settings.divisor <= 0:
        errors.append("referral.divisor must be positive")
    if settings.bda_ratio < 0 or settings.commission_ratio < 0:
        errors.append("referral ratios must not be negative")
    if settings.bda_ratio + settings.commission_ratio > settings.divisor:
        errors.append(
            f"referral.bda_ratio + referral.commission_ratio "
            f"({settings.bda_ratio + settings.commission_ratio}) exceeds divisor "
            f"({settings.divisor})"
        )
    if settings.bda_threshold <= 0:
        errors.append("referral.bda_threshold must be positive")
    return settings


def parse_chain(data: dict[str, Any], errors: list[str]) -> ChainSettings:
    defaults = ChainSettings()
    retryable = data.get("retryable_errors")
    settings = ChainSettings(
        rpc_url=str(data.get("rpc_url", defaults.rpc_url)),
        exchange_contract=str(data.get("exchange_contract", defaults.exchange_contract)).lower(),
        locking_contract=str(data.get("locking_contract", defaults.locking_contract)).lower(),
        zero_address=str(data.get("zero_address", defaults.zero_address)).lower(),
        max_retries=_int_field(data, "chain", "max_retries", defaults, errors),
        retry_delay_seconds=_float_field(data, "chain", "retry_delay_seconds", defaults, errors),
        mint_event_name=str(data.get("mint_event_name", defaults.mint_event_name)),
        retryable_errors=tuple(retryable) if retryable else defaults.retryable_errors,
    )
    for name in ("exchange_contract", "locking_contract", "zero_address"):
        value = getattr(settings, name)
        if not (value.startswith("0x") and len(value) == 42):
            errors.append(f"chain.{name} is not a 20-byte hex address: {value!r}")
    if settings.max_retries < 1:
        errors.append("chain.max_retries must be at least 1")
    return settings


def parse_poller(data: dict[str, Any], errors: list[str]) -> PollerSettings:
    defaults = PollerSettings()
    settings = PollerSettings(
        interval_seconds=_float_field(data, "poller", "interval_seconds", defaults, errors),
        max_attempts=_int_field(data, "poller", "max_attempts", defaults, errors),
        retry_delay_seconds=_float_field(data, "poller", "retry_delay_seconds", defaults, errors),
    )
    if settings.interval_seconds <= 0:
        errors.append("poller.interval_seconds must be positive")
    return settings


def parse_config(data: dict[str, Any]) -> SettlementConfig:
    """
    Parse a raw YAML dict into ``SettlementConfig``.

    Raises:
        KeyError: if ``config_id`` is missing.
        ConfigError: listing every invalid value found.
    """
    errors: list[str] = []
    config = SettlementConfig(
        config_id=data["config_id"],
        version=_parse_int(data.get("version", 1), "version", errors, 1),
        database_url=data.get("database_url"),
        lock=parse_lock(data.get("lock") or {}, errors),
        referral=parse_referral(data.get("referral") or {}, errors),
        chain=parse_chain(data.get("chain") or {}, errors),
        poller=parse_poller(data.get("poller") or {}, errors),
    )
    if errors:
        raise ConfigError(errors)
    return config
