"""Services for the settlement kernel (write side)."""

from settlement_kernel.services.ledger_store import LedgerStore
from settlement_kernel.services.lock_manager import LockManager
from settlement_kernel.services.referral_engine import ReferralEngine
from settlement_kernel.services.settlement_engine import LOCK_TYPE_FOR, SettlementEngine
from settlement_kernel.services.transaction_service import CategoryRequest, TransactionService

__all__ = [
    "CategoryRequest",
    "LOCK_TYPE_FOR",
    "LedgerStore",
    "LockManager",
    "ReferralEngine",
    "SettlementEngine",
    "TransactionService",
]
