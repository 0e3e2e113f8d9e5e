"""
LedgerStore -- data access for the settlement aggregates.

Responsibility:
    Loads and mutates Transaction, SaleEvent/EventCategory, InventoryItem,
    OwnershipRecord and Participant rows on behalf of the settlement and
    referral engines, inside the caller's unit of work.

Architecture position:
    Kernel > Services.  Constructed per unit of work with the session that
    scopes it; never commits.

Invariants enforced:
    - Category and event counters change only through single-statement
      atomic increments, so concurrent settlements commute.
    - Inventory rows are loaded FOR UPDATE before read-modify-write, and
      every inventory write keeps ``ck_inventory_conservation`` true.
    - Addresses are lower-cased at this boundary.

Failure modes:
    - *NotFoundError subclasses when a referenced row does not exist.
    - InsufficientQuantityError when inventory availability is short.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from settlement_kernel.exceptions import (
    EventNotFoundError,
    InsufficientQuantityError,
    InventoryNotFoundError,
    OwnershipNotFoundError,
    ParticipantNotFoundError,
    TransactionNotFoundError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.inventory import InventoryItem, InventoryStatus
from settlement_kernel.models.ownership import (
    HELD_STATUSES,
    OwnershipRecord,
    OwnershipStatus,
)
from settlement_kernel.models.participant import Participant
from settlement_kernel.models.sale_event import EventCategory, EventStatus, SaleEvent
from settlement_kernel.models.transaction import SettlementTransaction

logger = get_logger("services.ledger_store")


def normalize_address(address: str | None) -> str | None:
    if address is None:
        return None
    return address.lower()


class LedgerStore:
    """
    Repository over the settlement tables for one unit of work.

    Contract:
        Every method runs against ``self.session``.  Callers own the
        transaction boundary (``session_scope``).

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT apply business rules beyond counter arithmetic.
    """

    def __init__(self, session: Session):
        self.session = session

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def add_transaction(self, transaction: SettlementTransaction) -> SettlementTransaction:
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def get_transaction(self, transaction_id: UUID, for_update: bool = False) -> SettlementTransaction:
        stmt = select(SettlementTransaction).where(SettlementTransaction.id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update()
        transaction = self.session.execute(stmt).scalar_one_or_none()
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    def find_transaction_by_hash(self, tx_hash: str, token_key: str = "") -> SettlementTransaction | None:
        return self.session.execute(
            select(SettlementTransaction).where(
                SettlementTransaction.hash == tx_hash.lower(),
                SettlementTransaction.token_key == token_key,
            )
        ).scalar_one_or_none()

    def list_transactions_by_status(self, status: str, limit: int = 100) -> Sequence[SettlementTransaction]:
        return self.session.execute(
            select(SettlementTransaction)
            .where(SettlementTransaction.status == status)
            .order_by(SettlementTransaction.created_at)
            .limit(limit)
        ).scalars().all()

    # -------------------------------------------------------------------------
    # Sale events
    # -------------------------------------------------------------------------

    def get_event(self, event_id: UUID, for_update: bool = False) -> SaleEvent:
        stmt = select(SaleEvent).where(SaleEvent.id == event_id)
        if for_update:
            stmt = stmt.with_for_update()
        event = self.session.execute(stmt).scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    def refresh_event(self, event: SaleEvent) -> SaleEvent:
        """Reload an event and its categories after atomic counter updates."""
        self.session.refresh(event)
        for category in event.categories:
            self.session.refresh(category)
        return event

    def increment_category_minted(self, event_id: UUID, inventory_id: UUID, quantity: int) -> bool:
        """
        Atomically add ``quantity`` to a Live event's category minted count.

        Returns False (and changes nothing) when the event is not Live or the
        increment would push total_minted past quantity_for_sale.
        """
        live_event = select(SaleEvent.id).where(
            SaleEvent.id == event_id,
            SaleEvent.status == EventStatus.LIVE.value,
        )
        result = self.session.execute(
            update(EventCategory)
            .where(
                EventCategory.event_id.in_(live_event.scalar_subquery()),
                EventCategory.inventory_id == inventory_id,
                EventCategory.total_minted + quantity <= EventCategory.quantity_for_sale,
            )
            .values(total_minted=EventCategory.total_minted + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_event_revenue(self, event_id: UUID, revenue: Decimal, admin_earnings: Decimal) -> None:
        self.session.execute(
            update(SaleEvent)
            .where(SaleEvent.id == event_id)
            .values(
                total_revenue=SaleEvent.total_revenue + revenue,
                admin_earnings=SaleEvent.admin_earnings + admin_earnings,
            )
            .execution_options(synchronize_session=False)
        )

    def other_live_event_references(self, inventory_id: UUID, excluding_event_id: UUID | None) -> bool:
        """True when another Live event still offers units of the item."""
        stmt = (
            select(func.count())
            .select_from(EventCategory)
            .join(SaleEvent, SaleEvent.id == EventCategory.event_id)
            .where(
                EventCategory.inventory_id == inventory_id,
                SaleEvent.status == EventStatus.LIVE.value,
            )
        )
        if excluding_event_id is not None:
            stmt = stmt.where(SaleEvent.id != excluding_event_id)
        return self.session.execute(stmt).scalar_one() > 0

    # -------------------------------------------------------------------------
    # Inventory
    # -------------------------------------------------------------------------

    def get_inventory(self, inventory_id: UUID, for_update: bool = False) -> InventoryItem:
        stmt = select(InventoryItem).where(InventoryItem.id == inventory_id)
        if for_update:
            stmt = stmt.with_for_update()
        item = self.session.execute(stmt).scalar_one_or_none()
        if item is None:
            raise InventoryNotFoundError(str(inventory_id))
        return item

    def reserve_for_sale(self, item: InventoryItem, quantity: int) -> None:
        """Move ``quantity`` units from available into a sale event."""
        if item.total_available < quantity:
            raise InsufficientQuantityError(quantity, item.total_available)
        item.total_available -= quantity
        item.total_on_sale += quantity
        item.status = InventoryStatus.ON_SALE.value
        self.session.flush()

    def release_from_sale(self, item: InventoryItem, quantity: int) -> None:
        """Return ``quantity`` unsold units from a sale event to available."""
        item.total_on_sale -= quantity
        item.total_available += quantity
        self.session.flush()

    def record_mint(
        self,
        item: InventoryItem,
        token_ids: Iterable[str],
        from_sale: bool,
    ) -> None:
        """
        Move minted units out of on-sale (event purchase) or available (admin mint).

        Raises:
            InsufficientQuantityError: when the source counter is short.
        """
        tokens = list(token_ids)
        quantity = len(tokens)
        if from_sale:
            if item.total_on_sale < quantity:
                raise InsufficientQuantityError(quantity, item.total_on_sale)
            item.total_on_sale -= quantity
        else:
            if item.total_available < quantity:
                raise InsufficientQuantityError(quantity, item.total_available)
            item.total_available -= quantity
        item.total_minted += quantity
        item.token_ids = [*(item.token_ids or []), *tokens]
        self.session.flush()

    def record_burn(self, item: InventoryItem, token_id: str) -> None:
        """A minted unit was burnt: minted -> burnt, supply unchanged."""
        item.total_minted -= 1
        item.total_burnt += 1
        item.token_ids = [t for t in (item.token_ids or []) if t != token_id]
        self.session.flush()

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def add_ownership_records(
        self,
        item: InventoryItem,
        token_ids: Iterable[str],
        owner: str,
        minted_date: datetime,
        minted_hash: str | None,
        minted_value: Decimal,
        minted_by_admin: bool,
    ) -> list[OwnershipRecord]:
        owner = normalize_address(owner)
        records = [
            OwnershipRecord(
                token_id=token_id,
                inventory_id=item.id,
                address=owner,
                status=OwnershipStatus.UNLOCKED.value,
                minted_address=owner,
                is_minted_address_admin=minted_by_admin,
                minted_date=minted_date,
                minted_hash=minted_hash,
                minted_value=minted_value,
                is_transfer=False,
            )
            for token_id in token_ids
        ]
        self.session.add_all(records)
        self.session.flush()
        return records

    def get_ownership(self, token_id: str) -> OwnershipRecord:
        record = self.session.execute(
            select(OwnershipRecord).where(OwnershipRecord.token_id == token_id)
        ).scalar_one_or_none()
        if record is None:
            raise OwnershipNotFoundError(token_id)
        return record

    def ownerships_for(self, token_ids: Iterable[str]) -> Sequence[OwnershipRecord]:
        return self.session.execute(
            select(OwnershipRecord).where(OwnershipRecord.token_id.in_(list(token_ids)))
        ).scalars().all()

    def count_owned_units(self, address: str) -> int:
        """Units held in locked, unlocked or redeemed status."""
        return self.session.execute(
            select(func.count())
            .select_from(OwnershipRecord)
            .where(
                OwnershipRecord.address == normalize_address(address),
                OwnershipRecord.status.in_(sorted(HELD_STATUSES)),
            )
        ).scalar_one()

    def count_restricted_units(self, address: str, include_transferred: bool = True) -> int:
        """Admin-minted restricted units held and not burnt or invalidated."""
        stmt = (
            select(func.count())
            .select_from(OwnershipRecord)
            .join(InventoryItem, InventoryItem.id == OwnershipRecord.inventory_id)
            .where(
                InventoryItem.is_restricted.is_(True),
                OwnershipRecord.is_minted_address_admin.is_(True),
                OwnershipRecord.address == normalize_address(address),
                OwnershipRecord.status.not_in(
                    [OwnershipStatus.BURNED.value, OwnershipStatus.INVALID.value]
                ),
            )
        )
        if not include_transferred:
            stmt = stmt.where(OwnershipRecord.is_transfer.is_(False))
        return self.session.execute(stmt).scalar_one()

    def count_restricted_units_unredeemed(self, address: str) -> int:
        """Admin-minted restricted units still locked or unlocked."""
        return self.session.execute(
            select(func.count())
            .select_from(OwnershipRecord)
            .join(InventoryItem, InventoryItem.id == OwnershipRecord.inventory_id)
            .where(
                InventoryItem.is_restricted.is_(True),
                OwnershipRecord.is_minted_address_admin.is_(True),
                OwnershipRecord.address == normalize_address(address),
                OwnershipRecord.status.in_(
                    [OwnershipStatus.LOCKED.value, OwnershipStatus.UNLOCKED.value]
                ),
            )
        ).scalar_one()

    # -------------------------------------------------------------------------
    # Participants
    # -------------------------------------------------------------------------

    def find_participant(self, address: str | None, for_update: bool = False) -> Participant | None:
        if not address:
            return None
        stmt = select(Participant).where(
            Participant.address == normalize_address(address),
            Participant.is_deleted.is_(False),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get_participant(self, address: str, for_update: bool = False) -> Participant:
        participant = self.find_participant(address, for_update=for_update)
        if participant is None:
            raise ParticipantNotFoundError(normalize_address(address) or "")
        return participant

    def find_admin(self, address: str, include_deleted: bool = False) -> Participant | None:
        stmt = select(Participant).where(Participant.address == normalize_address(address))
        if not include_deleted:
            stmt = stmt.where(Participant.is_deleted.is_(False))
        return self.session.execute(stmt).scalar_one_or_none()
