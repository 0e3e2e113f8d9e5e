"""
OwnershipRecord -- one row per minted token id.

Invariants enforced:
    - token_id is unique (one record per minted unit).
    - Records are never hard-deleted; burn and redemption change status.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Address, TimestampedBase, UUIDString


class OwnershipStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    BURNED = "burned"
    REDEEMED = "redeemed"
    INVALID = "invalid"


# Statuses that still count as "holding" a unit for tier rules
HELD_STATUSES: frozenset[str] = frozenset({
    OwnershipStatus.LOCKED.value,
    OwnershipStatus.UNLOCKED.value,
    OwnershipStatus.REDEEMED.value,
})


class OwnershipRecord(TimestampedBase):
    """Current owner and mint provenance of one token."""

    __tablename__ = "ownership_records"

    __table_args__ = (
        Index("idx_ownership_address", "address"),
        Index("idx_ownership_inventory", "inventory_id"),
    )

    token_id: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)

    inventory_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    address: Mapped[str] = mapped_column(Address(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OwnershipStatus.UNLOCKED.value,
    )

    minted_address: Mapped[str] = mapped_column(Address(), nullable=False)

    is_minted_address_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    minted_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    minted_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    minted_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_transfer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<OwnershipRecord token={self.token_id} owner={self.address} {self.status}>"
