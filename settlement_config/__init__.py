"""
settlement_config -- single public entrypoint for settlement configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly; services receive the frozen settings
    sections they need through their constructors.

Architecture position:
    Configuration -- sits beside ``settlement_kernel`` (importing only its
    exceptions and logging) and below ``settlement_services``.

Failure modes:
    - ``FileNotFoundError`` -- the requested or default YAML file is missing.
    - ``ConfigError`` -- one or more values failed validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SETTLEMENT_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each settlement back to the configuration that governed
    its commission ratios and thresholds.
"""

from __future__ import annotations

import os
from pathlib import Path

from settlement_config.loader import compute_checksum, load_yaml_file, parse_config
from settlement_config.schema import (
    ChainSettings,
    LockSettings,
    PollerSettings,
    ReferralSettings,
    SettlementConfig,
)
from settlement_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "SETTLEMENT_CONFIG"


def get_active_config(path: Path | str | None = None) -> SettlementConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then the ``SETTLEMENT_CONFIG``
    environment variable, then the packaged ``defaults.yaml``.

    Returns:
        A frozen ``SettlementConfig``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ConfigError: If validation fails.
    """
    resolved = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    data = load_yaml_file(resolved)
    config = parse_config(data)

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": compute_checksum(data),
            "source": str(resolved),
        },
    )
    return config


__all__ = [
    "ChainSettings",
    "LockSettings",
    "PollerSettings",
    "ReferralSettings",
    "SettlementConfig",
    "get_active_config",
]
