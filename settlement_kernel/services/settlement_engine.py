"""
SettlementEngine -- idempotent application of confirmed chain events.

Responsibility:
    Turns a decoded worker event into one all-or-nothing unit of work over
    the ledger: transaction status, sale event counters, inventory
    counters, ownership records and the referral network.  Notices
    produced along the way are dispatched only after the commit.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the worker gateway
    and the confirmation poller.  Owns the unit-of-work boundary
    (``session_scope``) and the lock around it.

Invariants enforced:
    - Every handler runs under ``LockManager.with_lock(lock_type, key)``.
    - A transaction already in Success is never re-applied.  The replay
      returns ALREADY_COMPLETED and writes nothing except ``synced_at``
      when the delivery came from the worker.
    - Category minted counts move only through the guarded atomic
      increment.  A sale that would exceed ``quantity_for_sale`` or hit a
      non-Live event rolls back whole.
    - Inventory conservation holds after every commit.
    - A referral failure (ReferralError) is confined to a savepoint; the
      sale still commits.  Any other error rolls back everything and the
      transaction keeps its prior status.
    - Notifications never run inside the unit of work and never raise.

Failure modes:
    - TransactionNotFoundError, CategoryBoundExceededError,
      InvalidChainDataError and InvalidTransitionError propagate.  The lock
      is released first.
    - LockContentionExhaustedError when the lock cannot be taken.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from settlement_config.schema import SettlementConfig
from settlement_kernel.db.engine import session_scope
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.decimal_math import ZERO, to_decimal
from settlement_kernel.domain.dtos import (
    AffiliateInfo,
    Notice,
    NoticeTemplate,
    SettlementResult,
    SettlementStatus,
)
from settlement_kernel.domain.ports import (
    ChainReceipt,
    NotificationDispatcher,
    NullNotificationDispatcher,
)
from settlement_kernel.domain.referral_rules import DemotionTrigger
from settlement_kernel.domain.worker_events import (
    AdminActionEvent,
    AdminMintEvent,
    CancelEventEvent,
    DepositEvent,
    MintEvent,
    RedemptionEvent,
    TransferEvent,
    WorkerEvent,
    WorkerEventType,
)
from settlement_kernel.exceptions import (
    CategoryBoundExceededError,
    InvalidChainDataError,
    ParticipantNotFoundError,
    ReferralError,
    UnknownWorkerEventError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.inventory import InventoryItem, InventoryStatus
from settlement_kernel.models.lock import LockType
from settlement_kernel.models.ownership import OwnershipStatus
from settlement_kernel.models.participant import AdminStatus, Participant, ParticipantRole
from settlement_kernel.models.sale_event import EventStatus
from settlement_kernel.models.transaction import (
    ADMIN_ACTION_TYPES,
    REDEMPTION_TYPES,
    SettlementTransaction,
    TransactionStatus,
    TransactionType,
)
from settlement_kernel.services.ledger_store import LedgerStore, normalize_address
from settlement_kernel.services.lock_manager import LockManager
from settlement_kernel.services.referral_engine import ReferralEngine
from settlement_kernel.services.transaction_service import TransactionService

logger = get_logger("services.settlement_engine")


LOCK_TYPE_FOR: dict[TransactionType, LockType] = {
    TransactionType.MINT: LockType.BUY_NFT,
    TransactionType.ADMIN_MINT: LockType.ADMIN_MINT_NFT,
    TransactionType.TRANSFER: LockType.TRANSFER_NFT,
    TransactionType.TRANSFER_OUTSIDE: LockType.TRANSFER_NFT,
    TransactionType.CANCEL_EVENT: LockType.CANCEL_EVENT,
    TransactionType.DEPOSIT: LockType.DEPOSIT,
    TransactionType.RECOVER: LockType.ADMIN_SETTING,
    **{t: LockType.ADMIN_SETTING for t in ADMIN_ACTION_TYPES},
    **{t: LockType.REDEMPTION for t in REDEMPTION_TYPES},
}

REDEMPTION_TYPE_FOR: dict[WorkerEventType, TransactionType] = {
    WorkerEventType.REDEMPTION_SUBMITTED: TransactionType.REDEMPTION_SUBMIT,
    WorkerEventType.REDEMPTION_APPROVED: TransactionType.REDEMPTION_APPROVE,
    WorkerEventType.REDEMPTION_CANCELED: TransactionType.REDEMPTION_CANCEL,
}

# (session, store, transaction) -> (token ids, notices)
Applier = Callable[[Session, LedgerStore, SettlementTransaction], tuple[Sequence[str], list[Notice]]]


class SettlementEngine:
    """
    Transaction state machine driven by chain callbacks.

    Contract:
        Each ``settle_*`` method takes the identifiers carried by one chain
        event and returns a SettlementResult.  Calling it again with the
        same event is safe.

    Guarantees:
        - At-least-once delivery is safe: replays return ALREADY_COMPLETED.
        - Exactly one writer per (lock type, transaction id) at a time.

    Non-goals:
        - Does NOT talk to the chain.  Receipt lookups belong to the
          confirmation poller, which passes the receipt in.
        - Does NOT retry.  A failed settlement is re-delivered upstream.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lock_manager: LockManager,
        config: SettlementConfig,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
    ):
        self._session_factory = session_factory
        self._locks = lock_manager
        self._config = config
        self._clock = clock or SystemClock()
        self._notifier = notifier or NullNotificationDispatcher()

    @property
    def config(self) -> SettlementConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(self, event: WorkerEvent) -> SettlementResult:
        """Route a decoded worker event to its handler."""
        if isinstance(event, MintEvent):
            return self.settle_mint(event.transaction_id, event.hash, event.token_ids)
        if isinstance(event, AdminMintEvent):
            return self.settle_admin_mint(event.transaction_id, event.hash, event.token_ids)
        if isinstance(event, TransferEvent):
            return self.settle_transfer(event.hash, event.from_address, event.to_address, event.token_id)
        if isinstance(event, RedemptionEvent):
            return self.settle_redemption(event.transaction_id, event.hash, event.event_type)
        if isinstance(event, CancelEventEvent):
            return self.settle_cancel_event(event.transaction_id, event.hash)
        if isinstance(event, AdminActionEvent):
            return self.settle_admin_action(event.transaction_id, event.hash)
        if isinstance(event, DepositEvent):
            return self.settle_deposit(event.transaction_id, event.hash)
        raise UnknownWorkerEventError(type(event).__name__)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def settle_mint(
        self,
        transaction_id: UUID,
        tx_hash: str,
        token_ids: Sequence[str],
        from_worker: bool = True,
        message: str | None = None,
    ) -> SettlementResult:
        """Settle a confirmed purchase from a sale event."""

        def apply(session: Session, store: LedgerStore, tx: SettlementTransaction):
            tokens = self._require_token_count(tx, tx_hash, token_ids)
            now = self._clock.now()
            notices: list[Notice] = []

            if not store.increment_category_minted(tx.event_id, tx.inventory_id, tx.quantity):
                raise CategoryBoundExceededError(str(tx.event_id), str(tx.inventory_id), tx.quantity)

            revenue = to_decimal(tx.revenue)
            affiliate = AffiliateInfo.from_json(tx.affiliate_info)
            store.add_event_revenue(tx.event_id, revenue, revenue - affiliate.total_fee)

            event = store.refresh_event(store.get_event(tx.event_id, for_update=True))
            if event.categories and all(c.remaining == 0 for c in event.categories):
                event.end_time_origin = event.end_time_origin or event.end_date
                event.end_date = now
                event.transition_to(EventStatus.END)
                notices.append(Notice(
                    NoticeTemplate.EVENT_ENDED.value,
                    {"event_id": str(event.id), "name": event.name},
                ))
                logger.info("sale_event_sold_out", extra={"event_id": str(event.id)})

            item = store.get_inventory(tx.inventory_id, for_update=True)
            store.record_mint(item, tokens, from_sale=True)
            category = event.category_for(tx.inventory_id)
            if item.total_available + item.total_on_sale == 0:
                item.status = InventoryStatus.SOLD_OUT.value
            elif (
                category is not None
                and category.remaining == 0
                and not store.other_live_event_references(item.id, event.id)
            ):
                item.status = InventoryStatus.OFF_SALE.value

            store.add_ownership_records(
                item,
                tokens,
                owner=tx.to_address,
                minted_date=now,
                minted_hash=tx_hash,
                minted_value=to_decimal(tx.unit_price),
                minted_by_admin=False,
            )

            notices.append(Notice(
                NoticeTemplate.BUY_SUCCESS.value,
                {
                    "to_address": tx.to_address,
                    "transaction_id": str(tx.id),
                    "quantity": tx.quantity,
                    "token_ids": list(tokens),
                },
            ))
            notices.extend(self._commission_notices(tx, affiliate))
            notices.extend(self._recompute_referral(session, store, tx))
            return tokens, notices

        return self._settle(
            LockType.BUY_NFT, transaction_id, tx_hash, {TransactionType.MINT},
            apply, from_worker, message,
        )

    def settle_admin_mint(
        self,
        transaction_id: UUID,
        tx_hash: str,
        token_ids: Sequence[str],
        from_worker: bool = True,
    ) -> SettlementResult:
        """Settle an admin mint.  Units come straight from availability."""

        def apply(session: Session, store: LedgerStore, tx: SettlementTransaction):
            tokens = self._require_token_count(tx, tx_hash, token_ids)
            item = store.get_inventory(tx.inventory_id, for_update=True)
            store.record_mint(item, tokens, from_sale=False)
            if item.total_available + item.total_on_sale == 0:
                item.status = InventoryStatus.SOLD_OUT.value
            store.add_ownership_records(
                item,
                tokens,
                owner=tx.to_address,
                minted_date=self._clock.now(),
                minted_hash=tx_hash,
                minted_value=ZERO,
                minted_by_admin=True,
            )
            if item.is_restricted:
                recipient = store.find_participant(tx.to_address, for_update=True)
                if recipient is not None:
                    recipient.have_received_black_from_admin = True
            return tokens, [Notice(
                NoticeTemplate.ADMIN_MINTED.value,
                {
                    "to_address": tx.to_address,
                    "inventory_id": str(item.id),
                    "token_ids": list(tokens),
                    "restricted": item.is_restricted,
                },
            )]

        return self._settle(
            LockType.ADMIN_MINT_NFT, transaction_id, tx_hash, {TransactionType.ADMIN_MINT},
            apply, from_worker,
        )

    def settle_transfer(
        self,
        tx_hash: str,
        from_address: str,
        to_address: str,
        token_id: str,
    ) -> SettlementResult:
        """
        Record a transfer observed on chain.

        Mints (from the zero address) and moves into or out of the locking
        contract are not ownership changes and are skipped.  A transfer to
        the zero address burns the unit.
        """
        chain = self._config.chain
        from_address = normalize_address(from_address)
        to_address = normalize_address(to_address)
        if chain.locking_contract in (from_address, to_address):
            return SettlementResult.skipped("transfer involves the locking contract")
        if from_address == chain.zero_address:
            return SettlementResult.skipped("mint transfer is settled by the mint event")

        resource_id = f"{tx_hash}-{token_id}"

        def work() -> SettlementResult:
            with LogContext.bind(tx_hash=tx_hash, event_type=WorkerEventType.TRANSFER.value):
                with session_scope(self._session_factory) as session:
                    store = LedgerStore(session)
                    existing = store.find_transaction_by_hash(tx_hash, token_key=str(token_id))
                    if existing is not None:
                        logger.info(
                            "settlement_already_completed",
                            extra={"transaction_id": str(existing.id), "token_id": token_id},
                        )
                        return SettlementResult.already_completed(existing.id)

                    ownership = store.get_ownership(token_id)
                    if ownership.address != from_address:
                        raise InvalidChainDataError(
                            tx_hash, f"token {token_id} is held by {ownership.address}, not {from_address}"
                        )
                    item = store.get_inventory(ownership.inventory_id, for_update=True)
                    referral = ReferralEngine(session, self._config.referral, store)
                    trigger = (
                        DemotionTrigger.TRANSFER_BLACK_NFT
                        if item.is_restricted
                        else DemotionTrigger.TRANSFER_NFT
                    )
                    notices = referral.evaluate_demotion(from_address, trigger)

                    now = self._clock.now()
                    tx = SettlementTransaction(
                        type=TransactionType.TRANSFER_OUTSIDE.value,
                        status=TransactionStatus.DRAFT.value,
                        hash=tx_hash,
                        token_key=str(token_id),
                        from_address=from_address,
                        to_address=to_address,
                        quantity=1,
                        inventory_id=item.id,
                        token_ids=[token_id],
                        synced_at=now,
                    )
                    tx.transition_to(TransactionStatus.SUCCESS)
                    store.add_transaction(tx)

                    ownership.address = to_address
                    ownership.is_transfer = True
                    if to_address == chain.zero_address:
                        ownership.status = OwnershipStatus.BURNED.value
                        store.record_burn(item, token_id)
                        logger.info("token_burned", extra={"token_id": token_id, "inventory_id": str(item.id)})
                    else:
                        notices.extend(referral.apply_transfer_receiver(to_address, item.is_restricted))
                    session.flush()
                    result = SettlementResult(
                        status=SettlementStatus.SETTLED,
                        transaction_id=tx.id,
                        token_ids=(token_id,),
                        notices=tuple(notices),
                    )
                logger.info(
                    "settlement_completed",
                    extra={"transaction_id": str(result.transaction_id), "type": TransactionType.TRANSFER_OUTSIDE.value},
                )
                self._dispatch(result.notices)
                return result

        return self._locks.with_lock(LockType.TRANSFER_NFT, resource_id, work)

    def settle_cancel_event(
        self,
        transaction_id: UUID,
        tx_hash: str,
        from_worker: bool = True,
    ) -> SettlementResult:
        """Cancel a sale event and return its unsold units to availability."""

        def apply(session: Session, store: LedgerStore, tx: SettlementTransaction):
            event = store.get_event(tx.event_id, for_update=True)
            event.transition_to(EventStatus.CANCEL)
            event.hash_cancel = tx_hash
            for category in event.categories:
                item = store.get_inventory(category.inventory_id, for_update=True)
                store.release_from_sale(item, category.remaining)
                item.status = self._resting_status(item).value
                logger.info(
                    "sale_units_released",
                    extra={
                        "event_id": str(event.id),
                        "inventory_id": str(item.id),
                        "quantity": category.remaining,
                    },
                )
            return (), []

        return self._settle(
            LockType.CANCEL_EVENT, transaction_id, tx_hash, {TransactionType.CANCEL_EVENT},
            apply, from_worker,
        )

    def settle_deposit(
        self,
        transaction_id: UUID,
        tx_hash: str,
        from_worker: bool = True,
    ) -> SettlementResult:
        return self._settle(
            LockType.DEPOSIT, transaction_id, tx_hash, {TransactionType.DEPOSIT},
            lambda session, store, tx: ((), []), from_worker,
        )

    def settle_admin_action(
        self,
        transaction_id: UUID,
        tx_hash: str,
        from_worker: bool = True,
    ) -> SettlementResult:
        """Apply a confirmed admin permission change."""

        def apply(session: Session, store: LedgerStore, tx: SettlementTransaction):
            self._apply_admin_action(session, store, tx)
            return (), []

        return self._settle(
            LockType.ADMIN_SETTING, transaction_id, tx_hash, set(ADMIN_ACTION_TYPES),
            apply, from_worker,
        )

    def settle_redemption(
        self,
        transaction_id: UUID,
        tx_hash: str,
        event_type: WorkerEventType,
        from_worker: bool = True,
    ) -> SettlementResult:
        """Lock, redeem or unlock the units named by a redemption transaction."""
        expected = REDEMPTION_TYPE_FOR[event_type]

        def apply(session: Session, store: LedgerStore, tx: SettlementTransaction):
            records = store.ownerships_for(tx.token_ids or [])
            if len(records) != len(tx.token_ids or []):
                raise InvalidChainDataError(tx_hash, "redemption names unknown token ids")
            notices: list[Notice] = []
            if expected == TransactionType.REDEMPTION_SUBMIT:
                target = OwnershipStatus.LOCKED
            elif expected == TransactionType.REDEMPTION_APPROVE:
                target = OwnershipStatus.REDEEMED
            else:
                target = OwnershipStatus.UNLOCKED
            for record in records:
                record.status = target.value
            session.flush()
            if expected == TransactionType.REDEMPTION_APPROVE and tx.from_address:
                referral = ReferralEngine(session, self._config.referral, store)
                notices.extend(referral.evaluate_demotion(tx.from_address, DemotionTrigger.REDEMPTION))
            return tuple(r.token_id for r in records), notices

        return self._settle(
            LockType.REDEMPTION, transaction_id, tx_hash, {expected},
            apply, from_worker,
        )

    # -------------------------------------------------------------------------
    # Failure path
    # -------------------------------------------------------------------------

    def mark_failed(self, transaction_id: UUID, message: str | None = None) -> SettlementResult:
        """
        Move a Processing transaction to Failed and revert its admin side effects.

        A transaction that already succeeded is left alone.
        """
        with session_scope(self._session_factory) as session:
            tx_type = LedgerStore(session).get_transaction(transaction_id).type_enum

        def work() -> SettlementResult:
            with LogContext.bind(transaction_id=str(transaction_id)):
                with session_scope(self._session_factory) as session:
                    store = LedgerStore(session)
                    tx = store.get_transaction(transaction_id, for_update=True)
                    if tx.is_success:
                        return SettlementResult.already_completed(tx.id)
                    TransactionService(session, self._config, self._clock).fail_transaction(tx, message)
                    result = SettlementResult(
                        status=SettlementStatus.FAILED,
                        transaction_id=tx.id,
                        notices=(Notice(
                            NoticeTemplate.TRANSACTION_FAILED.value,
                            {"transaction_id": str(tx.id), "type": tx.type, "to_address": tx.to_address},
                        ),),
                        message=message,
                    )
                self._dispatch(result.notices)
                return result

        return self._locks.with_lock(LOCK_TYPE_FOR[tx_type], str(transaction_id), work)

    def apply_receipt(self, transaction_id: UUID, receipt: ChainReceipt) -> SettlementResult:
        """A reverted receipt fails the transaction; a successful one waits for the worker event."""
        if not receipt.status:
            logger.warning(
                "chain_receipt_reverted",
                extra={"transaction_id": str(transaction_id), "tx_hash": receipt.tx_hash},
            )
            return self.mark_failed(transaction_id, "transaction reverted on chain")
        return SettlementResult.skipped("receipt confirmed; settlement follows the worker event")

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _settle(
        self,
        lock_type: LockType,
        transaction_id: UUID,
        tx_hash: str,
        expected_types: set[TransactionType],
        apply: Applier,
        from_worker: bool,
        message: str | None = None,
    ) -> SettlementResult:
        def work() -> SettlementResult:
            with LogContext.bind(transaction_id=str(transaction_id), tx_hash=tx_hash):
                with session_scope(self._session_factory) as session:
                    store = LedgerStore(session)
                    tx = store.get_transaction(transaction_id, for_update=True)
                    if tx.type_enum not in expected_types:
                        raise InvalidChainDataError(
                            tx_hash,
                            f"transaction {transaction_id} is {tx.type}, expected "
                            + "/".join(sorted(t.value for t in expected_types)),
                        )
                    replay = self._check_already_completed(tx, from_worker)
                    if replay is not None:
                        return replay

                    tx.transition_to(TransactionStatus.SUCCESS)
                    tx.hash = tx_hash.lower()
                    tx.message = message or ""
                    if from_worker:
                        tx.synced_at = self._clock.now()

                    token_ids, notices = apply(session, store, tx)
                    if token_ids:
                        tx.token_ids = list(token_ids)
                    session.flush()
                    result = SettlementResult(
                        status=SettlementStatus.SETTLED,
                        transaction_id=tx.id,
                        token_ids=tuple(token_ids),
                        notices=tuple(notices),
                    )
                    tx_type = tx.type
                logger.info(
                    "settlement_completed",
                    extra={
                        "transaction_id": str(transaction_id),
                        "type": tx_type,
                        "token_count": len(result.token_ids),
                        "notice_count": len(result.notices),
                    },
                )
                self._dispatch(result.notices)
                return result

        return self._locks.with_lock(lock_type, str(transaction_id), work)

    def _check_already_completed(
        self,
        tx: SettlementTransaction,
        from_worker: bool,
    ) -> SettlementResult | None:
        if not tx.is_success:
            return None
        if from_worker:
            tx.synced_at = self._clock.now()
        logger.info(
            "settlement_already_completed",
            extra={"transaction_id": str(tx.id), "type": tx.type},
        )
        return SettlementResult.already_completed(tx.id)

    def _recompute_referral(
        self,
        session: Session,
        store: LedgerStore,
        tx: SettlementTransaction,
    ) -> list[Notice]:
        engine = ReferralEngine(session, self._config.referral, store)
        try:
            with session.begin_nested():
                return engine.apply_purchase(tx)
        except ReferralError as exc:
            logger.warning(
                "referral_recompute_failed",
                extra={
                    "transaction_id": str(tx.id),
                    "address": exc.address,
                    "reason": exc.reason,
                },
            )
            return []

    @staticmethod
    def _commission_notices(tx: SettlementTransaction, affiliate: AffiliateInfo) -> list[Notice]:
        bda, direct = affiliate.bda, affiliate.referrer_direct
        base = {"transaction_id": str(tx.id), "buyer": tx.to_address}
        if bda is not None and direct is not None and bda.address == direct.address:
            return [Notice(
                NoticeTemplate.COMMISSION_RECEIVED_COMBINED.value,
                {
                    **base,
                    "to_address": bda.address,
                    "commission_fee": str(bda.commission_fee + direct.commission_fee),
                },
            )]
        notices = []
        for role, leg in (("bda", bda), ("referrer_direct", direct)):
            if leg is not None:
                notices.append(Notice(
                    NoticeTemplate.COMMISSION_RECEIVED.value,
                    {
                        **base,
                        "to_address": leg.address,
                        "role": role,
                        "commission_fee": str(leg.commission_fee),
                    },
                ))
        return notices

    def _apply_admin_action(self, session: Session, store: LedgerStore, tx: SettlementTransaction) -> None:
        payload = tx.admin_payload or {}
        address = normalize_address(tx.admin_address or tx.to_address)
        tx_type = tx.type_enum

        if tx_type == TransactionType.ADMIN_SETTING:
            admin = store.find_admin(address, include_deleted=True)
            if admin is None:
                admin = Participant(
                    address=address,
                    role=ParticipantRole.ADMIN.value,
                    path_ids=[],
                    admin_name=payload.get("admin_name"),
                    admin_permissions=list(payload.get("permissions") or []),
                    admin_status=AdminStatus.ACTIVE.value,
                )
                session.add(admin)
            elif admin.is_deleted or admin.admin_status == AdminStatus.DRAFT.value:
                admin.is_deleted = False
                admin.admin_status = AdminStatus.ACTIVE.value
        elif tx_type == TransactionType.ADMIN_DELETE:
            admin = store.find_admin(address, include_deleted=True)
            if admin is None:
                raise ParticipantNotFoundError(address)
            admin.is_deleted = True
        else:
            admin = store.find_admin(address)
            if admin is None:
                raise ParticipantNotFoundError(address)
            if tx_type == TransactionType.ADMIN_UPDATE:
                admin.admin_name = payload.get("admin_name", admin.admin_name)
                admin.admin_permissions = list(payload.get("permissions") or [])
            elif tx_type == TransactionType.ADMIN_ACTIVATE:
                admin.admin_status = AdminStatus.ACTIVE.value
            elif tx_type == TransactionType.ADMIN_DEACTIVATE:
                admin.admin_status = AdminStatus.INACTIVE.value
        session.flush()
        logger.info(
            "admin_action_applied",
            extra={"address": address, "type": tx_type.value},
        )

    @staticmethod
    def _resting_status(item: InventoryItem) -> InventoryStatus:
        if item.total_on_sale > 0:
            return InventoryStatus.ON_SALE
        if item.total_available == 0:
            return InventoryStatus.SOLD_OUT
        return InventoryStatus.OFF_SALE

    @staticmethod
    def _require_token_count(
        tx: SettlementTransaction,
        tx_hash: str,
        token_ids: Sequence[str],
    ) -> tuple[str, ...]:
        tokens = tuple(str(t) for t in token_ids)
        if len(tokens) != tx.quantity:
            raise InvalidChainDataError(
                tx_hash, f"expected {tx.quantity} token ids, got {len(tokens)}"
            )
        return tokens

    def _dispatch(self, notices: Sequence[Notice]) -> None:
        for notice in notices:
            try:
                self._notifier.notify(notice.template_id, dict(notice.payload))
            except Exception:
                logger.warning(
                    "notification_failed",
                    extra={"template_id": notice.template_id},
                    exc_info=True,
                )
