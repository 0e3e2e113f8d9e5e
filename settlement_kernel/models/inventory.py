"""
InventoryItem -- an NFT collection and its supply counters.

Responsibility:
    Tracks where every unit of supply currently sits: free to allocate,
    reserved in a sale event, minted to an owner, or burnt.

Architecture position:
    Kernel > Models.  Counters are mutated by LedgerStore with single-statement
    UPDATEs so the conservation CHECK holds after every statement.

Invariants enforced:
    - total_supply = total_available + total_on_sale + total_minted + total_burnt
      (CHECK constraint ``ck_inventory_conservation``).  With nothing reserved
      in sale events this is total_supply = total_available + total_minted
      + total_burnt.
    - No counter is ever negative.
"""

from enum import Enum

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TimestampedBase


class InventoryStatus(str, Enum):
    """Marketplace visibility of an inventory item."""

    OFF_SALE = "off_sale"
    ON_SALE = "on_sale"
    SOLD_OUT = "sold_out"


class InventoryItem(TimestampedBase):
    """
    An NFT collection.

    ``is_restricted`` marks the scarce class ("black" units).  Holding a
    restricted unit gates BDA promotion and demotion rules.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint(
            "total_supply = total_available + total_on_sale + total_minted + total_burnt",
            name="ck_inventory_conservation",
        ),
        CheckConstraint(
            "total_available >= 0 AND total_on_sale >= 0 "
            "AND total_minted >= 0 AND total_burnt >= 0",
            name="ck_inventory_non_negative",
        ),
        Index("idx_inventory_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    token_standard: Mapped[str] = mapped_column(String(20), nullable=False, default="erc721")

    is_restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_supply: Mapped[int] = mapped_column(Integer, nullable=False)

    total_available: Mapped[int] = mapped_column(Integer, nullable=False)

    total_on_sale: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_minted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_burnt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    token_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InventoryStatus.OFF_SALE.value,
    )

    @property
    def status_enum(self) -> InventoryStatus:
        if isinstance(self.status, InventoryStatus):
            return self.status
        return InventoryStatus(self.status)

    @property
    def is_conserved(self) -> bool:
        return self.total_supply == (
            self.total_available + self.total_on_sale + self.total_minted + self.total_burnt
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryItem {self.name!r} supply={self.total_supply} "
            f"available={self.total_available} on_sale={self.total_on_sale} "
            f"minted={self.total_minted} burnt={self.total_burnt}>"
        )
