"""
SettlementLock -- store-backed mutex row.

Responsibility:
    One row per held lock.  The unique constraint on (lock_type, resource_id)
    is the exclusivity gate: whichever caller's INSERT commits first holds
    the lock, every other INSERT fails with IntegrityError.

Architecture position:
    Kernel > Models.  Written only by LockManager.

Invariants enforced:
    - At most one row per (lock_type, resource_id).
    - No owner identity is tracked.  A row older than ``expires_at`` is
      considered abandoned and may be purged by any caller.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base


class LockType(str, Enum):
    """Resource families serialized by the lock manager."""

    BUY_NFT = "buy_nft"
    ADMIN_MINT_NFT = "admin_mint_nft"
    TRANSFER_NFT = "transfer_nft"
    CANCEL_EVENT = "cancel_event"
    DEPOSIT = "deposit"
    ADMIN_SETTING = "admin_setting"
    REDEMPTION = "redemption"


class SettlementLock(Base):
    """Expiring mutex keyed by (lock_type, resource_id)."""

    __tablename__ = "settlement_locks"

    __table_args__ = (
        UniqueConstraint("lock_type", "resource_id", name="uq_settlement_lock_key"),
        Index("idx_settlement_lock_expiry", "lock_type", "expires_at"),
    )

    lock_type: Mapped[str] = mapped_column(String(50), nullable=False)

    resource_id: Mapped[str] = mapped_column(String(200), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SettlementLock {self.lock_type}:{self.resource_id} until {self.expires_at}>"
