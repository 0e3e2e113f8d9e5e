"""
TransactionService -- creation and pre-chain lifecycle of transactions.

Responsibility:
    Validates and records user and admin requests as Draft transactions,
    moves them to Processing once the client reports the broadcast hash,
    and to Failed when the chain rejects them.  Also creates sale events,
    which reserves their units in inventory.

Architecture position:
    Kernel > Services.  Takes the caller's session; never commits.  The
    Success transition belongs to SettlementEngine.

Invariants enforced:
    - Every business rule is checked before the first write: a rejected
      request leaves no row behind.
    - The commission snapshot (affiliate_info) is fixed at creation.
    - A hash is recorded at most once, and only as ``0x`` + 64 hex digits.
    - Admin side effects of a broadcast (draft admin, soft delete, status
      processing) are reverted when the transaction fails.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_config.schema import SettlementConfig
from settlement_kernel.domain.clock import Clock, SystemClock, as_utc
from settlement_kernel.domain.decimal_math import ZERO, multiply, to_decimal
from settlement_kernel.domain.referral_rules import compute_affiliate_info
from settlement_kernel.exceptions import (
    AlreadyHoldsRestrictedError,
    BuyerIsCreatorError,
    CategoryNotFoundError,
    EventNotLiveError,
    InsufficientQuantityError,
    InvalidAmountError,
    InvalidTransactionHashError,
    InvalidTransitionError,
    OwnershipNotFoundError,
    ParticipantNotBDAError,
    ParticipantNotFoundError,
    SoldOutError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.ownership import OwnershipStatus
from settlement_kernel.models.participant import AdminStatus, Participant, ParticipantRole
from settlement_kernel.models.sale_event import EventCategory, EventStatus, SaleEvent
from settlement_kernel.models.transaction import (
    ADMIN_ACTION_TYPES,
    REDEMPTION_TYPES,
    SettlementTransaction,
    TransactionStatus,
    TransactionType,
)
from settlement_kernel.services.ledger_store import LedgerStore, normalize_address

logger = get_logger("services.transaction_service")

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

_REDEMPTION_SOURCE_STATUS: dict[TransactionType, OwnershipStatus] = {
    TransactionType.REDEMPTION_SUBMIT: OwnershipStatus.UNLOCKED,
    TransactionType.REDEMPTION_APPROVE: OwnershipStatus.LOCKED,
    TransactionType.REDEMPTION_CANCEL: OwnershipStatus.LOCKED,
}


@dataclass(frozen=True)
class CategoryRequest:
    """One category of a sale event being created."""

    inventory_id: UUID
    quantity_for_sale: int
    unit_price: Decimal


class TransactionService:
    """
    Draft creation, hash recording and failure handling.

    Contract:
        Every ``create_*`` method returns a flushed Draft transaction (or
        sale event) with its id assigned.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT sign payloads for the contract; the chain client does.
    """

    def __init__(
        self,
        session: Session,
        config: SettlementConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._store = LedgerStore(session)

    # -------------------------------------------------------------------------
    # Sale events
    # -------------------------------------------------------------------------

    def create_event(
        self,
        name: str,
        creator_address: str,
        start_date: datetime,
        end_date: datetime | None,
        categories: Sequence[CategoryRequest],
    ) -> SaleEvent:
        """
        Create a Draft sale event and reserve its units.

        Raises:
            InvalidAmountError: empty category list, non-positive quantity
                or negative price.
            InsufficientQuantityError: an item cannot cover its category.
        """
        if not categories:
            raise InvalidAmountError(0, "a sale event needs at least one category")
        seen: set[UUID] = set()
        for request in categories:
            if request.quantity_for_sale <= 0:
                raise InvalidAmountError(request.quantity_for_sale, "quantity_for_sale must be positive")
            if to_decimal(request.unit_price) < ZERO:
                raise InvalidAmountError(request.unit_price, "unit_price must not be negative")
            if request.inventory_id in seen:
                raise InvalidAmountError(str(request.inventory_id), "item listed twice")
            seen.add(request.inventory_id)

        items = [self._store.get_inventory(r.inventory_id, for_update=True) for r in categories]
        for item, request in zip(items, categories):
            if item.total_available < request.quantity_for_sale:
                raise InsufficientQuantityError(request.quantity_for_sale, item.total_available)

        event = SaleEvent(
            name=name,
            status=EventStatus.DRAFT.value,
            creator_address=normalize_address(creator_address),
            start_date=start_date,
            end_date=end_date,
            end_time_origin=end_date,
            categories=[
                EventCategory(
                    inventory_id=request.inventory_id,
                    position=position,
                    quantity_for_sale=request.quantity_for_sale,
                    total_minted=0,
                    unit_price=to_decimal(request.unit_price),
                )
                for position, request in enumerate(categories)
            ],
        )
        self._session.add(event)
        for item, request in zip(items, categories):
            self._store.reserve_for_sale(item, request.quantity_for_sale)
        self._session.flush()

        logger.info(
            "sale_event_created",
            extra={"event_id": str(event.id), "categories": len(categories)},
        )
        return event

    def launch_event(self, event_id: UUID, status: EventStatus = EventStatus.LIVE) -> SaleEvent:
        """Publish a Draft event as ComingSoon or Live."""
        event = self._store.get_event(event_id, for_update=True)
        event.transition_to(status)
        self._session.flush()
        logger.info("sale_event_launched", extra={"event_id": str(event.id), "status": status.value})
        return event

    # -------------------------------------------------------------------------
    # Transaction creation
    # -------------------------------------------------------------------------

    def create_buy_transaction(
        self,
        buyer_address: str,
        event_id: UUID,
        inventory_id: UUID,
        quantity: int,
    ) -> SettlementTransaction:
        """
        Validate a purchase and record it as a Draft mint.

        Raises:
            EventNotLiveError, BuyerIsCreatorError, CategoryNotFoundError,
            SoldOutError, InsufficientQuantityError, ParticipantNotFoundError.
        """
        buyer_address = normalize_address(buyer_address)
        if quantity <= 0:
            raise InvalidAmountError(quantity, "quantity must be positive")

        event = self._store.get_event(event_id)
        if event.status_enum != EventStatus.LIVE:
            raise EventNotLiveError(str(event_id), event.status)
        end_date = as_utc(event.end_date)
        if end_date is not None and end_date <= self._clock.now():
            raise EventNotLiveError(str(event_id), "expired")
        if event.creator_address == buyer_address:
            raise BuyerIsCreatorError(str(event_id), buyer_address)

        category = event.category_for(inventory_id)
        if category is None:
            raise CategoryNotFoundError(str(event_id), str(inventory_id))
        remaining = category.remaining
        if remaining == 0:
            raise SoldOutError(str(event_id), str(inventory_id))
        if quantity > remaining:
            raise InsufficientQuantityError(quantity, remaining)

        buyer = self._store.get_participant(buyer_address)
        originator = self._store.find_participant(buyer.originator)
        revenue = multiply(category.unit_price, quantity)
        referral = self._config.referral
        affiliate = compute_affiliate_info(
            revenue,
            referrer=buyer.referrer,
            originator=buyer.originator,
            originator_is_bda=originator is not None and originator.is_bda,
            bda_ratio=referral.bda_ratio,
            commission_ratio=referral.commission_ratio,
            divisor=referral.divisor,
        )

        tx = self._store.add_transaction(SettlementTransaction(
            type=TransactionType.MINT.value,
            status=TransactionStatus.DRAFT.value,
            from_address=event.creator_address,
            to_address=buyer_address,
            quantity=quantity,
            revenue=revenue,
            affiliate_info=affiliate.to_json(),
            event_id=event.id,
            unit_price=category.unit_price,
            inventory_id=inventory_id,
        ))
        logger.info(
            "buy_transaction_created",
            extra={
                "transaction_id": str(tx.id),
                "event_id": str(event_id),
                "quantity": quantity,
                "revenue": revenue,
            },
        )
        return tx

    def create_admin_mint_transaction(
        self,
        admin_address: str,
        recipient_address: str,
        inventory_id: UUID,
        quantity: int,
    ) -> SettlementTransaction:
        """
        Validate an admin mint and record it as a Draft.

        Restricted items may only go to a BDA that does not already hold an
        admin-minted restricted unit.

        Raises:
            ParticipantNotBDAError, AlreadyHoldsRestrictedError,
            InsufficientQuantityError.
        """
        recipient_address = normalize_address(recipient_address)
        if quantity <= 0:
            raise InvalidAmountError(quantity, "quantity must be positive")

        item = self._store.get_inventory(inventory_id)
        if item.is_restricted:
            recipient = self._store.find_participant(recipient_address)
            if recipient is None or not recipient.is_bda:
                raise ParticipantNotBDAError(recipient_address)
            if self._store.count_restricted_units(recipient_address, include_transferred=False) > 0:
                raise AlreadyHoldsRestrictedError(recipient_address)
        if item.total_available < quantity:
            raise InsufficientQuantityError(quantity, item.total_available)

        tx = self._store.add_transaction(SettlementTransaction(
            type=TransactionType.ADMIN_MINT.value,
            status=TransactionStatus.DRAFT.value,
            admin_address=normalize_address(admin_address),
            to_address=recipient_address,
            quantity=quantity,
            revenue=ZERO,
            inventory_id=inventory_id,
        ))
        logger.info(
            "admin_mint_transaction_created",
            extra={"transaction_id": str(tx.id), "inventory_id": str(inventory_id), "quantity": quantity},
        )
        return tx

    def create_cancel_event_transaction(self, admin_address: str, event_id: UUID) -> SettlementTransaction:
        event = self._store.get_event(event_id)
        if event.status_enum not in (EventStatus.COMING_SOON, EventStatus.LIVE):
            raise InvalidTransitionError("sale_event", event.status, EventStatus.CANCEL.value)
        return self._store.add_transaction(SettlementTransaction(
            type=TransactionType.CANCEL_EVENT.value,
            status=TransactionStatus.DRAFT.value,
            admin_address=normalize_address(admin_address),
            event_id=event.id,
        ))

    def create_deposit_transaction(self, address: str, amount: Decimal | int | str) -> SettlementTransaction:
        value = to_decimal(amount)
        if value <= ZERO:
            raise InvalidAmountError(amount, "deposit must be positive")
        return self._store.add_transaction(SettlementTransaction(
            type=TransactionType.DEPOSIT.value,
            status=TransactionStatus.DRAFT.value,
            from_address=normalize_address(address),
            revenue=value,
        ))

    def create_admin_action_transaction(
        self,
        admin_address: str,
        target_address: str,
        action: TransactionType,
        admin_name: str | None = None,
        permissions: Sequence[str] | None = None,
    ) -> SettlementTransaction:
        """Record an admin permission change.  The target's current status is kept for reverts."""
        if action not in ADMIN_ACTION_TYPES:
            raise InvalidAmountError(action.value, "not an admin action")
        target_address = normalize_address(target_address)
        target = self._store.find_admin(target_address, include_deleted=True)
        if action != TransactionType.ADMIN_SETTING and target is None:
            raise ParticipantNotFoundError(target_address)

        return self._store.add_transaction(SettlementTransaction(
            type=action.value,
            status=TransactionStatus.DRAFT.value,
            from_address=normalize_address(admin_address),
            to_address=target_address,
            admin_address=target_address,
            admin_payload={
                "admin_name": admin_name,
                "permissions": list(permissions or []),
                "previous_status": target.admin_status if target is not None else None,
            },
        ))

    def create_redemption_transaction(
        self,
        owner_address: str,
        token_ids: Sequence[str],
        action: TransactionType,
    ) -> SettlementTransaction:
        """
        Record a redemption step over units held by ``owner_address``.

        Raises:
            OwnershipNotFoundError: a token is unknown or held by someone else.
            InvalidTransitionError: a unit is not in the status the step needs.
        """
        if action not in REDEMPTION_TYPES:
            raise InvalidAmountError(action.value, "not a redemption action")
        owner_address = normalize_address(owner_address)
        tokens = [str(t) for t in token_ids]
        if not tokens:
            raise InvalidAmountError(0, "no token ids")
        records = {r.token_id: r for r in self._store.ownerships_for(tokens)}
        source = _REDEMPTION_SOURCE_STATUS[action]
        for token_id in tokens:
            record = records.get(token_id)
            if record is None or record.address != owner_address:
                raise OwnershipNotFoundError(token_id)
            if record.status != source.value:
                raise InvalidTransitionError("ownership", record.status, action.value)

        return self._store.add_transaction(SettlementTransaction(
            type=action.value,
            status=TransactionStatus.DRAFT.value,
            from_address=owner_address,
            quantity=len(tokens),
            token_ids=tokens,
        ))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def update_transaction_hash(self, transaction_id: UUID, tx_hash: str) -> SettlementTransaction:
        """
        Record the broadcast hash: Draft -> Processing.

        A transaction the worker already settled is returned unchanged.

        Raises:
            InvalidTransactionHashError: malformed hash, or the hash belongs
                to another transaction.
            InvalidTransitionError: the transaction is not Draft.
        """
        if not isinstance(tx_hash, str) or not TX_HASH_RE.match(tx_hash):
            raise InvalidTransactionHashError(str(tx_hash))
        tx_hash = tx_hash.lower()

        tx = self._store.get_transaction(transaction_id, for_update=True)
        if tx.is_success:
            return tx
        other = self._store.find_transaction_by_hash(tx_hash)
        if other is not None and other.id != tx.id:
            raise InvalidTransactionHashError(tx_hash)

        tx.transition_to(TransactionStatus.PROCESSING)
        tx.hash = tx_hash
        if tx.type_enum in ADMIN_ACTION_TYPES:
            self._apply_broadcast_side_effects(tx)
        self._session.flush()

        logger.info(
            "transaction_processing",
            extra={"transaction_id": str(tx.id), "type": tx.type, "tx_hash": tx_hash},
        )
        return tx

    def fail_transaction(self, tx: SettlementTransaction, message: str | None = None) -> SettlementTransaction:
        """Processing -> Failed, reverting admin broadcast side effects."""
        tx.transition_to(TransactionStatus.FAILED)
        tx.message = message or "transaction failed on chain"
        if tx.type_enum in ADMIN_ACTION_TYPES:
            self._revert_broadcast_side_effects(tx)
        self._session.flush()
        logger.warning(
            "transaction_failed",
            extra={"transaction_id": str(tx.id), "type": tx.type, "reason": tx.message},
        )
        return tx

    def processing_transactions(self, limit: int = 100) -> Sequence[SettlementTransaction]:
        return self._store.list_transactions_by_status(TransactionStatus.PROCESSING.value, limit)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _apply_broadcast_side_effects(self, tx: SettlementTransaction) -> None:
        payload = tx.admin_payload or {}
        tx_type = tx.type_enum
        if tx_type == TransactionType.ADMIN_SETTING:
            if self._store.find_admin(tx.admin_address, include_deleted=True) is None:
                self._session.add(Participant(
                    address=tx.admin_address,
                    role=ParticipantRole.ADMIN.value,
                    path_ids=[],
                    admin_name=payload.get("admin_name"),
                    admin_permissions=list(payload.get("permissions") or []),
                    admin_status=AdminStatus.DRAFT.value,
                ))
        elif tx_type == TransactionType.ADMIN_DELETE:
            admin = self._store.find_admin(tx.admin_address)
            if admin is not None:
                admin.is_deleted = True
        elif tx_type in (TransactionType.ADMIN_ACTIVATE, TransactionType.ADMIN_DEACTIVATE):
            admin = self._store.find_admin(tx.admin_address)
            if admin is not None:
                admin.admin_status = AdminStatus.PROCESSING.value

    def _revert_broadcast_side_effects(self, tx: SettlementTransaction) -> None:
        payload = tx.admin_payload or {}
        tx_type = tx.type_enum
        if tx_type == TransactionType.ADMIN_SETTING:
            admin = self._store.find_admin(tx.admin_address)
            if admin is not None and admin.admin_status == AdminStatus.DRAFT.value:
                self._session.delete(admin)
        elif tx_type == TransactionType.ADMIN_DELETE:
            admin = self._store.find_admin(tx.admin_address, include_deleted=True)
            if admin is not None:
                admin.is_deleted = False
        elif tx_type in (TransactionType.ADMIN_ACTIVATE, TransactionType.ADMIN_DEACTIVATE):
            admin = self._store.find_admin(tx.admin_address)
            if admin is not None and admin.admin_status == AdminStatus.PROCESSING.value:
                fallback = (
                    AdminStatus.INACTIVE
                    if tx_type == TransactionType.ADMIN_ACTIVATE
                    else AdminStatus.ACTIVE
                )
                admin.admin_status = payload.get("previous_status") or fallback.value
