"""
SaleEvent and EventCategory -- sale campaigns.

Responsibility:
    A sale event offers quantities of one or more inventory items, each in
    its own category row with a unit price and a running minted count.

Architecture position:
    Kernel > Models.  Category counters are mutated only through atomic SQL
    increments issued by LedgerStore.

Invariants enforced:
    - total_minted <= quantity_for_sale per category, at all times
      (CHECK constraint ``ck_category_minted_bound``).
    - Status transitions follow EVENT_TRANSITIONS.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Address, Base, TimestampedBase, UUIDString
from settlement_kernel.exceptions import InvalidTransitionError


class EventStatus(str, Enum):
    """
    Sale event lifecycle.

    State machine:
        DRAFT → COMING_SOON | LIVE
        COMING_SOON → LIVE | CANCEL
        LIVE → END | CANCEL
        END: terminal
        CANCEL: terminal
    """

    DRAFT = "draft"
    COMING_SOON = "coming_soon"
    LIVE = "live"
    END = "end"
    CANCEL = "cancel"


EVENT_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.COMING_SOON, EventStatus.LIVE}),
    EventStatus.COMING_SOON: frozenset({EventStatus.LIVE, EventStatus.CANCEL}),
    EventStatus.LIVE: frozenset({EventStatus.END, EventStatus.CANCEL}),
    EventStatus.END: frozenset(),
    EventStatus.CANCEL: frozenset(),
}


class SaleEvent(TimestampedBase):
    """A sale campaign."""

    __tablename__ = "sale_events"

    __table_args__ = (
        Index("idx_sale_event_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EventStatus.DRAFT.value,
    )

    creator_address: Mapped[str] = mapped_column(Address(), nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Scheduled end date, kept when a sell-out ends the event early
    end_time_origin: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    total_revenue: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    admin_earnings: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    hash_cancel: Mapped[str | None] = mapped_column(String(66), nullable=True)

    categories: Mapped[list["EventCategory"]] = relationship(
        back_populates="event",
        lazy="selectin",
        order_by="EventCategory.position",
        cascade="all, delete-orphan",
    )

    @property
    def status_enum(self) -> EventStatus:
        if isinstance(self.status, EventStatus):
            return self.status
        return EventStatus(self.status)

    def category_for(self, inventory_id: UUID) -> "EventCategory | None":
        for category in self.categories:
            if category.inventory_id == inventory_id:
                return category
        return None

    def transition_to(self, target: EventStatus) -> None:
        """Validate and apply a status change.

        Raises:
            InvalidTransitionError: if ``target`` is not reachable.
        """
        if target not in EVENT_TRANSITIONS[self.status_enum]:
            raise InvalidTransitionError("sale_event", self.status_enum.value, target.value)
        self.status = target.value

    def __repr__(self) -> str:
        return f"<SaleEvent {self.name!r} {self.status}>"


class EventCategory(Base):
    """Quantity of one inventory item offered in a sale event."""

    __tablename__ = "sale_event_categories"

    __table_args__ = (
        UniqueConstraint("event_id", "inventory_id", name="uq_category_event_item"),
        CheckConstraint("total_minted <= quantity_for_sale", name="ck_category_minted_bound"),
        CheckConstraint("total_minted >= 0", name="ck_category_minted_non_negative"),
        Index("idx_category_inventory", "inventory_id"),
    )

    event_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sale_events.id"),
        nullable=False,
    )

    inventory_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    quantity_for_sale: Mapped[int] = mapped_column(Integer, nullable=False)

    total_minted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    event: Mapped[SaleEvent] = relationship(back_populates="categories")

    @property
    def remaining(self) -> int:
        return self.quantity_for_sale - self.total_minted

    def __repr__(self) -> str:
        return (
            f"<EventCategory item={self.inventory_id} "
            f"{self.total_minted}/{self.quantity_for_sale}>"
        )
