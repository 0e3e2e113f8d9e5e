"""ORM models for the settlement kernel."""

from settlement_kernel.models.inventory import InventoryItem, InventoryStatus
from settlement_kernel.models.lock import LockType, SettlementLock
from settlement_kernel.models.ownership import HELD_STATUSES, OwnershipRecord, OwnershipStatus
from settlement_kernel.models.participant import (
    AdminStatus,
    Participant,
    ParticipantRole,
    ParticipantTier,
    ReferralPath,
)
from settlement_kernel.models.sale_event import (
    EVENT_TRANSITIONS,
    EventCategory,
    EventStatus,
    SaleEvent,
)
from settlement_kernel.models.transaction import (
    ADMIN_ACTION_TYPES,
    REDEMPTION_TYPES,
    VALID_TRANSITIONS,
    SettlementTransaction,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "ADMIN_ACTION_TYPES",
    "AdminStatus",
    "EVENT_TRANSITIONS",
    "EventCategory",
    "EventStatus",
    "HELD_STATUSES",
    "InventoryItem",
    "InventoryStatus",
    "LockType",
    "OwnershipRecord",
    "OwnershipStatus",
    "Participant",
    "ParticipantRole",
    "ParticipantTier",
    "REDEMPTION_TYPES",
    "ReferralPath",
    "SaleEvent",
    "SettlementLock",
    "SettlementTransaction",
    "TransactionStatus",
    "TransactionType",
    "VALID_TRANSITIONS",
]
