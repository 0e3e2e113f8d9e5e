"""
SettlementTransaction -- one settlement unit and its state machine.

Responsibility:
    Records a user- or admin-initiated operation from creation (Draft),
    through broadcast (Processing, hash known), to its confirmed outcome.

Architecture position:
    Kernel > Models.  Mutated only inside a SettlementEngine or
    TransactionService unit of work.

Invariants enforced:
    - Status changes follow VALID_TRANSITIONS.  Success, Failed and Cancel
      are terminal.
    - Once status is Success every downstream mutation for this row has
      already been committed in the same unit of work, so a re-delivered
      chain callback must be a no-op.
    - (hash, token_key) is unique.  token_key is empty for every type except
      transfer_outside, where one chain transaction may move several tokens
      and each gets its own row.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Address, TimestampedBase, UUIDString
from settlement_kernel.exceptions import InvalidTransitionError


class TransactionType(str, Enum):
    """Operation recorded by a transaction."""

    MINT = "mint"
    ADMIN_MINT = "admin_mint"
    TRANSFER = "transfer"
    TRANSFER_OUTSIDE = "transfer_outside"
    CANCEL_EVENT = "cancel_event"
    DEPOSIT = "deposit"
    ADMIN_SETTING = "admin_setting"
    ADMIN_UPDATE = "admin_update"
    ADMIN_ACTIVATE = "admin_activate"
    ADMIN_DEACTIVATE = "admin_deactivate"
    ADMIN_DELETE = "admin_delete"
    RECOVER = "recover"
    REDEMPTION_SUBMIT = "redemption_submit"
    REDEMPTION_APPROVE = "redemption_approve"
    REDEMPTION_CANCEL = "redemption_cancel"


ADMIN_ACTION_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.ADMIN_SETTING,
    TransactionType.ADMIN_UPDATE,
    TransactionType.ADMIN_ACTIVATE,
    TransactionType.ADMIN_DEACTIVATE,
    TransactionType.ADMIN_DELETE,
})

REDEMPTION_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.REDEMPTION_SUBMIT,
    TransactionType.REDEMPTION_APPROVE,
    TransactionType.REDEMPTION_CANCEL,
})


class TransactionStatus(str, Enum):
    """
    Settlement status.

    State machine:
        DRAFT → PROCESSING | SUCCESS | CANCEL
        PROCESSING → SUCCESS | FAILED | CANCEL
        SUCCESS: terminal
        FAILED: terminal
        CANCEL: terminal

    DRAFT → SUCCESS covers chain callbacks that arrive before the client
    has reported the broadcast hash.
    """

    DRAFT = "draft"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCEL = "cancel"


VALID_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.DRAFT: frozenset({
        TransactionStatus.PROCESSING, TransactionStatus.SUCCESS, TransactionStatus.CANCEL,
    }),
    TransactionStatus.PROCESSING: frozenset({
        TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.CANCEL,
    }),
    TransactionStatus.SUCCESS: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCEL: frozenset(),
}


class SettlementTransaction(TimestampedBase):
    """
    One settlement unit.

    Contract:
        The affiliate_info JSON snapshot is computed when the transaction is
        created and is the source of truth for commission credits at
        settlement time.  Its shape is::

            {"bda": {"address", "commission_fee", "percentage"} | None,
             "referrer_direct": {"address", "commission_fee", "percentage"} | None}

        Money values inside the JSON are stored as strings.

    Non-goals:
        - Does not enforce the idempotency guard itself; SettlementEngine
          checks ``is_success`` before mutating anything.
    """

    __tablename__ = "settlement_transactions"

    __table_args__ = (
        UniqueConstraint("hash", "token_key", name="uq_transaction_hash_token"),
        Index("idx_transaction_status", "status"),
        Index("idx_transaction_type_status", "type", "status"),
        Index("idx_transaction_event", "event_id"),
    )

    type: Mapped[str] = mapped_column(String(30), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.DRAFT.value,
    )

    hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    token_key: Mapped[str] = mapped_column(String(80), nullable=False, default="")

    from_address: Mapped[str | None] = mapped_column(Address(), nullable=True)

    to_address: Mapped[str | None] = mapped_column(Address(), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    revenue: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    affiliate_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Sale event snapshot (mint only)
    event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    inventory_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    token_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Admin action target and requested changes (name, permissions, prior status)
    admin_address: Mapped[str | None] = mapped_column(Address(), nullable=True)
    admin_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set only when a worker callback drove the settlement
    synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def type_enum(self) -> TransactionType:
        if isinstance(self.type, TransactionType):
            return self.type
        return TransactionType(self.type)

    @property
    def status_enum(self) -> TransactionStatus:
        """Return status as TransactionStatus enum (normalizes raw DB strings)."""
        if isinstance(self.status, TransactionStatus):
            return self.status
        return TransactionStatus(self.status)

    @property
    def is_success(self) -> bool:
        return self.status_enum == TransactionStatus.SUCCESS

    @property
    def is_terminal(self) -> bool:
        return len(VALID_TRANSITIONS[self.status_enum]) == 0

    def validate_transition(self, target: TransactionStatus) -> None:
        """Validate that a state transition is allowed.

        Raises:
            InvalidTransitionError: if ``target`` is not reachable from the
                current status.
        """
        if target not in VALID_TRANSITIONS[self.status_enum]:
            raise InvalidTransitionError("transaction", self.status_enum.value, target.value)

    def transition_to(self, target: TransactionStatus) -> None:
        """Validate and apply a status change."""
        self.validate_transition(target)
        self.status = target.value

    def __repr__(self) -> str:
        return f"<SettlementTransaction {self.type} {self.status} {self.id}>"
