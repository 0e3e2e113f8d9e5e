"""
SettlementConfig schema.

Frozen dataclasses parsed from YAML by the loader.  Every runtime component
receives the section it needs through its constructor; nothing reads the
YAML directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class LockSettings:
    """Lock manager tuning."""

    ttl_seconds: float = 10.0
    backoff_seconds: float = 0.5
    max_attempts: int = 120
    max_wait_seconds: float = 60.0


@dataclass(frozen=True)
class ReferralSettings:
    """BDA promotion threshold and commission ratios (parts of ``divisor``)."""

    bda_threshold: Decimal = Decimal("10000")
    bda_ratio: int = 200
    commission_ratio: int = 800
    divisor: int = 10000
    equity_min_referees: int = 3


@dataclass(frozen=True)
class ChainSettings:
    """Chain RPC endpoint, contract addresses and client retry policy."""

    rpc_url: str = "http://localhost:8545"
    exchange_contract: str = ZERO_ADDRESS
    locking_contract: str = ZERO_ADDRESS
    zero_address: str = ZERO_ADDRESS
    max_retries: int = 5
    retry_delay_seconds: float = 1.0
    mint_event_name: str = "MintNFT"
    retryable_errors: tuple[str, ...] = (
        "too many requests",
        "CONNECTION ERROR",
        "Invalid JSON RPC response",
        "CONNECTION TIMEOUT",
        "Maximum number of reconnect attempts reached",
        "connection failure",
    )


@dataclass(frozen=True)
class PollerSettings:
    """Confirmation poller cadence and retry policy."""

    interval_seconds: float = 15.0
    max_attempts: int = 20
    retry_delay_seconds: float = 30.0


@dataclass(frozen=True)
class SettlementConfig:
    """Complete runtime configuration."""

    config_id: str
    version: int
    database_url: str | None = None
    lock: LockSettings = field(default_factory=LockSettings)
    referral: ReferralSettings = field(default_factory=ReferralSettings)
    chain: ChainSettings = field(default_factory=ChainSettings)
    poller: PollerSettings = field(default_factory=PollerSettings)
