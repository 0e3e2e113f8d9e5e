"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable values that cross service boundaries: settlement results,
    commission legs, affiliate snapshots and post-commit notices.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No ORM imports.

Invariants enforced:
    - Commission fees are Decimal end to end; JSON round-trips go through
      strings, never floats.
    - AffiliateInfo.total_fee never exceeds the revenue it was computed
      from (guaranteed by decimal_math.ratio_of and config validation).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from settlement_kernel.domain.decimal_math import ZERO, to_decimal


class SettlementStatus(str, Enum):
    """Outcome of a settlement entry point."""

    SETTLED = "settled"
    ALREADY_COMPLETED = "already_completed"  # Idempotent success
    FAILED = "failed"  # Chain reported failure, transaction marked Failed
    SKIPPED = "skipped"  # Nothing to settle (e.g. transfer into the locking contract)


@dataclass(frozen=True)
class Notice:
    """A notification queued during settlement and sent after commit."""

    template_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SettlementResult:
    """Result of a settlement operation."""

    status: SettlementStatus
    transaction_id: UUID | None = None
    token_ids: tuple[str, ...] = ()
    notices: tuple[Notice, ...] = ()
    message: str | None = None

    @property
    def is_success(self) -> bool:
        """
        True unless the settlement failed.

        Idempotent replays and skipped callbacks (nothing to settle, such as
        a mint leg or a locking-contract move) count as success: the worker
        has nothing to retry.
        """
        return self.status in (
            SettlementStatus.SETTLED,
            SettlementStatus.ALREADY_COMPLETED,
            SettlementStatus.SKIPPED,
        )

    @classmethod
    def already_completed(cls, transaction_id: UUID) -> SettlementResult:
        return cls(
            status=SettlementStatus.ALREADY_COMPLETED,
            transaction_id=transaction_id,
            message="Transaction already completed",
        )

    @classmethod
    def skipped(cls, message: str) -> SettlementResult:
        return cls(status=SettlementStatus.SKIPPED, message=message)


@dataclass(frozen=True)
class CommissionLeg:
    """One commission recipient of a sale."""

    address: str
    commission_fee: Decimal
    percentage: Decimal

    def to_json(self) -> dict[str, str]:
        return {
            "address": self.address,
            "commission_fee": str(self.commission_fee),
            "percentage": str(self.percentage),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> CommissionLeg | None:
        if not data:
            return None
        return cls(
            address=data["address"],
            commission_fee=to_decimal(data["commission_fee"]),
            percentage=to_decimal(data["percentage"]),
        )


@dataclass(frozen=True)
class AffiliateInfo:
    """Commission snapshot stored on a mint transaction."""

    bda: CommissionLeg | None = None
    referrer_direct: CommissionLeg | None = None

    @property
    def total_fee(self) -> Decimal:
        total = ZERO
        for leg in (self.bda, self.referrer_direct):
            if leg is not None:
                total += leg.commission_fee
        return total

    def to_json(self) -> dict[str, Any]:
        return {
            "bda": self.bda.to_json() if self.bda else None,
            "referrer_direct": self.referrer_direct.to_json() if self.referrer_direct else None,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> AffiliateInfo:
        if not data:
            return cls()
        return cls(
            bda=CommissionLeg.from_json(data.get("bda")),
            referrer_direct=CommissionLeg.from_json(data.get("referrer_direct")),
        )


class NoticeTemplate(str, Enum):
    """Notification templates dispatched after a settlement commits."""

    BUY_SUCCESS = "buy_success"
    COMMISSION_RECEIVED = "commission_received"
    COMMISSION_RECEIVED_COMBINED = "commission_received_combined"
    BDA_PROMOTED = "bda_promoted"
    BDA_PROMOTED_BY_LEGACY_VOLUME = "bda_promoted_by_legacy_volume"
    BDA_DEMOTED = "bda_demoted"
    BDA_VOLUME_WITHOUT_TOKEN = "bda_volume_without_token"
    ADMIN_BDA_PROMOTED = "admin_bda_promoted"
    ADMIN_MINTED = "admin_minted"
    EVENT_ENDED = "event_ended"
    TRANSACTION_FAILED = "transaction_failed"
