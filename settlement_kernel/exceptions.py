"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Settlement callers (the chain worker, the HTTP layer, the confirmation
poller) react differently to each failure class:

  - Validation errors are surfaced to the caller and never retried.
  - Contention errors are retried locally by the lock manager, and only
    escape once its budget is spent.
  - External-dependency errors are retried by the chain client layer and
    surface as fatal settlement failures once exhausted.

Every exception therefore carries:
  1. A TYPED class (catch by type, not by message)
  2. A stable CODE class attribute (machine-readable, API-safe)
  3. Structured attributes (not just a message string)

Idempotent replay of an already-settled transaction is NOT an error; the
settlement engine returns an ``ALREADY_COMPLETED`` result instead.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- ValidationError
    |   +-- TransactionNotFoundError
    |   +-- EventNotFoundError
    |   +-- CategoryNotFoundError
    |   +-- InventoryNotFoundError
    |   +-- ParticipantNotFoundError
    |   +-- OwnershipNotFoundError
    |   +-- InsufficientQuantityError
    |   +-- SoldOutError
    |   +-- CategoryBoundExceededError
    |   +-- InvalidTransactionHashError
    |   +-- InvalidTransitionError
    |   +-- EventNotLiveError
    |   +-- BuyerIsCreatorError
    |   +-- InvalidAmountError
    |
    +-- SettlementPermissionError
    |   +-- ParticipantNotBDAError
    |   +-- AlreadyHoldsRestrictedError
    |
    +-- ContentionError
    |   +-- LockContentionExhaustedError
    |
    +-- ExternalDependencyError
    |   +-- ChainUnavailableError
    |   +-- InvalidChainDataError
    |   +-- ReceiptNotFoundError
    |
    +-- WorkerError
    |   +-- UnknownWorkerEventError
    |   +-- MalformedWorkerEventError
    |
    +-- ReferralError
    |
    +-- ConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|-----------------------------------------
Validation   | TRANSACTION_NOT_FOUND        | Transaction id/hash does not exist
             | EVENT_NOT_FOUND              | Sale event id does not exist
             | CATEGORY_NOT_FOUND           | Event has no category for the item
             | INVENTORY_NOT_FOUND          | Inventory item id does not exist
             | PARTICIPANT_NOT_FOUND        | No participant with that address
             | OWNERSHIP_NOT_FOUND          | Token id has no ownership record
             | INSUFFICIENT_QUANTITY        | Requested more than remains
             | SOLD_OUT                     | Nothing remains in the category
             | CATEGORY_BOUND_EXCEEDED      | Mint would push minted past for-sale
             | INVALID_TRANSACTION_HASH     | Hash is not 0x + 64 hex characters
             | INVALID_TRANSITION           | Status change not in VALID_TRANSITIONS
             | EVENT_NOT_LIVE               | Event is not Live or has ended
             | BUYER_IS_CREATOR             | Creator tried to buy own event
             | INVALID_AMOUNT               | Float or non-numeric money value
-------------|------------------------------|-----------------------------------------
Permission   | USER_NOT_BDA                 | Restricted admin mint to non-BDA
             | USER_HAD_NFT_BLACK           | Recipient already holds restricted unit
-------------|------------------------------|-----------------------------------------
Contention   | LOCK_CONTENTION_EXHAUSTED    | Lock retry budget spent
-------------|------------------------------|-----------------------------------------
External     | CHAIN_UNAVAILABLE            | RPC retries exhausted
             | INVALID_CHAIN_DATA           | Receipt not from exchange contract
             | RECEIPT_NOT_FOUND            | Receipt not yet available
-------------|------------------------------|-----------------------------------------
Worker       | UNKNOWN_WORKER_EVENT         | Unrecognized event type
             | MALFORMED_WORKER_EVENT       | Payload missing required fields
-------------|------------------------------|-----------------------------------------
Referral     | REFERRAL_ERROR               | Upline state inconsistent
Config       | CONFIG_ERROR                 | Configuration failed validation
"""

from __future__ import annotations


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Validation errors


class ValidationError(SettlementKernelError):
    """Base exception for synchronous, non-retryable input errors."""

    code: str = "VALIDATION_ERROR"


class TransactionNotFoundError(ValidationError):
    """Transaction with given id or hash was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transaction not found: {reference}")


class EventNotFoundError(ValidationError):
    """Sale event with given id was not found."""

    code: str = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Sale event not found: {event_id}")


class CategoryNotFoundError(ValidationError):
    """Sale event has no category for the inventory item."""

    code: str = "CATEGORY_NOT_FOUND"

    def __init__(self, event_id: str, inventory_id: str):
        self.event_id = event_id
        self.inventory_id = inventory_id
        super().__init__(
            f"Sale event {event_id} has no category for inventory item {inventory_id}"
        )


class InventoryNotFoundError(ValidationError):
    """Inventory item with given id (or token id) was not found."""

    code: str = "INVENTORY_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Inventory item not found: {reference}")


class ParticipantNotFoundError(ValidationError):
    """No participant registered under the address."""

    code: str = "PARTICIPANT_NOT_FOUND"

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Participant not found: {address}")


class OwnershipNotFoundError(ValidationError):
    """Token id has no ownership record."""

    code: str = "OWNERSHIP_NOT_FOUND"

    def __init__(self, token_id: str):
        self.token_id = token_id
        super().__init__(f"Ownership record not found for token {token_id}")


class InsufficientQuantityError(ValidationError):
    """Requested quantity exceeds what remains."""

    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(self, requested: int, remaining: int):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Insufficient quantity: requested {requested}, remaining {remaining}"
        )


class SoldOutError(ValidationError):
    """The category has no remaining quantity."""

    code: str = "SOLD_OUT"

    def __init__(self, event_id: str, inventory_id: str):
        self.event_id = event_id
        self.inventory_id = inventory_id
        super().__init__(f"Sold out: event {event_id}, inventory item {inventory_id}")


class CategoryBoundExceededError(ValidationError):
    """
    Mint would push a category's minted count past its for-sale quantity.

    Raised from inside the unit of work, so the whole settlement rolls back.
    """

    code: str = "CATEGORY_BOUND_EXCEEDED"

    def __init__(self, event_id: str, inventory_id: str, quantity: int):
        self.event_id = event_id
        self.inventory_id = inventory_id
        self.quantity = quantity
        super().__init__(
            f"Minting {quantity} would exceed quantity for sale "
            f"(event {event_id}, inventory item {inventory_id})"
        )


class InvalidTransactionHashError(ValidationError):
    """Hash is not a 32-byte hex string."""

    code: str = "INVALID_TRANSACTION_HASH"

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Invalid transaction hash: {tx_hash!r}")


class InvalidTransitionError(ValidationError):
    """Status change is not allowed by the state machine."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: str, to_status: str):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid {entity} transition: {from_status} -> {to_status}"
        )


class EventNotLiveError(ValidationError):
    """Sale event is not Live or its end date has passed."""

    code: str = "EVENT_NOT_LIVE"

    def __init__(self, event_id: str, status: str):
        self.event_id = event_id
        self.status = status
        super().__init__(f"Sale event {event_id} is not live (status={status})")


class BuyerIsCreatorError(ValidationError):
    """The event creator cannot buy from their own event."""

    code: str = "BUYER_IS_CREATOR"

    def __init__(self, event_id: str, address: str):
        self.event_id = event_id
        self.address = address
        super().__init__(f"Creator {address} cannot buy from event {event_id}")


class InvalidAmountError(ValidationError):
    """Value cannot be used as a decimal money amount."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: object, reason: str):
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid amount {value!r}: {reason}")


# Permission errors


class SettlementPermissionError(SettlementKernelError):
    """Base exception for business permission violations."""

    code: str = "PERMISSION_ERROR"


class ParticipantNotBDAError(SettlementPermissionError):
    """Restricted units may only be admin-minted to BDA participants."""

    code: str = "USER_NOT_BDA"

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Participant {address} is not a BDA")


class AlreadyHoldsRestrictedError(SettlementPermissionError):
    """Recipient already holds an admin-minted restricted unit."""

    code: str = "USER_HAD_NFT_BLACK"

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Participant {address} already holds a restricted unit")


# Contention errors


class ContentionError(SettlementKernelError):
    """Base exception for lock contention."""

    code: str = "CONTENTION_ERROR"


class LockContentionExhaustedError(ContentionError):
    """
    Lock could not be acquired within the retry budget.

    The caller (usually the chain worker) is expected to retry later; the
    idempotency guard makes the retry safe.
    """

    code: str = "LOCK_CONTENTION_EXHAUSTED"

    def __init__(self, lock_type: str, resource_id: str, attempts: int, waited_seconds: float):
        self.lock_type = lock_type
        self.resource_id = resource_id
        self.attempts = attempts
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Could not acquire lock {lock_type}:{resource_id} after "
            f"{attempts} attempts ({waited_seconds:.1f}s)"
        )


# External dependency errors


class ExternalDependencyError(SettlementKernelError):
    """Base exception for chain RPC and other collaborator failures."""

    code: str = "EXTERNAL_DEPENDENCY_ERROR"


class ChainUnavailableError(ExternalDependencyError):
    """Retryable RPC failure persisted past the retry budget."""

    code: str = "CHAIN_UNAVAILABLE"

    def __init__(self, operation: str, attempts: int, last_error: str):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Chain call {operation} failed after {attempts} attempts: {last_error}"
        )


class InvalidChainDataError(ExternalDependencyError):
    """Chain data does not match what the settlement expects."""

    code: str = "INVALID_CHAIN_DATA"

    def __init__(self, tx_hash: str, reason: str):
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"Invalid chain data for {tx_hash}: {reason}")


class ReceiptNotFoundError(ExternalDependencyError):
    """Transaction receipt is not available yet."""

    code: str = "RECEIPT_NOT_FOUND"

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Receipt not found for {tx_hash}")


# Worker boundary errors


class WorkerError(SettlementKernelError):
    """Base exception for worker callback decoding."""

    code: str = "WORKER_ERROR"


class UnknownWorkerEventError(WorkerError):
    """Worker delivered an event type with no handler."""

    code: str = "UNKNOWN_WORKER_EVENT"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown worker event type: {event_type}")


class MalformedWorkerEventError(WorkerError):
    """Worker payload is missing or has invalid fields."""

    code: str = "MALFORMED_WORKER_EVENT"

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Malformed {event_type} payload: {reason}")


# Referral errors


class ReferralError(SettlementKernelError):
    """Referral tree state is inconsistent with the requested update."""

    code: str = "REFERRAL_ERROR"

    def __init__(self, address: str, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"Referral update failed for {address}: {reason}")


# Configuration errors


class ConfigError(SettlementKernelError):
    """Configuration failed validation."""

    code: str = "CONFIG_ERROR"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )

