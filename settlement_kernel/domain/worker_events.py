"""
Worker events -- typed decoding of chain worker callbacks.

Responsibility:
    Turns the loosely-typed ``{event_type, hash, data}`` callback delivered
    by the chain worker into one frozen dataclass per event type, exactly
    once, at the boundary.  Settlement handlers only ever see these types.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Unknown event types raise UnknownWorkerEventError.
    - Missing or malformed fields raise MalformedWorkerEventError; a
      handler is never invoked with a partially decoded payload.
    - Addresses are lower-cased; token ids are decimal strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union
from uuid import UUID

from settlement_kernel.exceptions import (
    MalformedWorkerEventError,
    UnknownWorkerEventError,
)

_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class WorkerEventType(str, Enum):
    """Contract event names emitted by the exchange contract."""

    ADMIN_MINT_NFT = "AdminMintNFT"
    MINT_NFT = "MintNFT"
    TRANSFER = "Transfer"
    REDEMPTION_SUBMITTED = "RedemptionSubmitted"
    REDEMPTION_APPROVED = "RedemptionApproved"
    REDEMPTION_CANCELED = "RedemptionCanceled"
    EVENT_CANCELED = "EventCanceled"
    PERMISSION_UPDATED = "PermissionUpdated"
    DEPOSITED = "Deposited"


@dataclass(frozen=True)
class MintEvent:
    transaction_id: UUID
    hash: str
    token_ids: tuple[str, ...]


@dataclass(frozen=True)
class AdminMintEvent:
    transaction_id: UUID
    hash: str
    token_ids: tuple[str, ...]


@dataclass(frozen=True)
class TransferEvent:
    hash: str
    from_address: str
    to_address: str
    token_id: str


@dataclass(frozen=True)
class RedemptionEvent:
    transaction_id: UUID
    hash: str
    event_type: WorkerEventType


@dataclass(frozen=True)
class CancelEventEvent:
    transaction_id: UUID
    hash: str


@dataclass(frozen=True)
class AdminActionEvent:
    transaction_id: UUID
    hash: str


@dataclass(frozen=True)
class DepositEvent:
    transaction_id: UUID
    hash: str


WorkerEvent = Union[
    MintEvent,
    AdminMintEvent,
    TransferEvent,
    RedemptionEvent,
    CancelEventEvent,
    AdminActionEvent,
    DepositEvent,
]


def decode_transaction_id(raw: Any, event_type: str) -> UUID:
    """
    Decode a transaction id as emitted by the contract.

    The contract carries the id either as the UUID string itself or as a
    bytes32 hex value holding the UUID's ASCII text, right-padded with zeros.
    """
    if isinstance(raw, UUID):
        return raw
    if not isinstance(raw, str) or not raw:
        raise MalformedWorkerEventError(event_type, "transaction_id is missing")
    text = raw
    if raw.startswith("0x"):
        try:
            text = bytes.fromhex(raw[2:]).rstrip(b"\x00").decode("ascii")
        except (ValueError, UnicodeDecodeError):
            raise MalformedWorkerEventError(
                event_type, f"transaction_id is not bytes32 text: {raw!r}"
            ) from None
    try:
        return UUID(text)
    except ValueError:
        raise MalformedWorkerEventError(
            event_type, f"transaction_id is not a UUID: {text!r}"
        ) from None


def _require_hash(raw: Any, event_type: str) -> str:
    if not isinstance(raw, str) or not _HASH_RE.match(raw):
        raise MalformedWorkerEventError(event_type, f"hash is not a transaction hash: {raw!r}")
    return raw.lower()


def _require_address(data: dict[str, Any], key: str, event_type: str) -> str:
    raw = data.get(key)
    if not isinstance(raw, str) or not _ADDRESS_RE.match(raw):
        raise MalformedWorkerEventError(event_type, f"{key} is not an address: {raw!r}")
    return raw.lower()


def _token_id(raw: Any, event_type: str) -> str:
    if isinstance(raw, bool):
        raise MalformedWorkerEventError(event_type, f"token id is not an integer: {raw!r}")
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, str) and raw.isascii() and raw.isdigit():
        return str(int(raw))
    raise MalformedWorkerEventError(event_type, f"token id is not an integer: {raw!r}")


def _token_ids(data: dict[str, Any], event_type: str) -> tuple[str, ...]:
    raw = data.get("token_ids", data.get("tokenIds")) or []
    if not isinstance(raw, (list, tuple)):
        raise MalformedWorkerEventError(event_type, "token_ids must be a list")
    return tuple(_token_id(item, event_type) for item in raw)


def decode_worker_event(payload: dict[str, Any]) -> WorkerEvent:
    """
    Decode one worker callback.

    Args:
        payload: ``{"event_type": ..., "hash": ..., "data": {...}}``.  The
            camelCase keys ``eventType``, ``transactionId`` and ``tokenIds``
            are accepted as sent by the worker.

    Raises:
        UnknownWorkerEventError: event type has no handler.
        MalformedWorkerEventError: required field missing or invalid.
    """
    raw_type = payload.get("event_type", payload.get("eventType"))
    try:
        event_type = WorkerEventType(raw_type)
    except ValueError:
        raise UnknownWorkerEventError(str(raw_type)) from None

    name = event_type.value
    tx_hash = _require_hash(payload.get("hash"), name)
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise MalformedWorkerEventError(name, "data must be an object")

    if event_type == WorkerEventType.TRANSFER:
        return TransferEvent(
            hash=tx_hash,
            from_address=_require_address(data, "from", name),
            to_address=_require_address(data, "to", name),
            token_id=_token_id(data.get("token_id", data.get("tokenId")), name),
        )

    transaction_id = decode_transaction_id(
        data.get("transaction_id", data.get("transactionId")), name
    )

    if event_type == WorkerEventType.MINT_NFT:
        return MintEvent(transaction_id, tx_hash, _token_ids(data, name))
    if event_type == WorkerEventType.ADMIN_MINT_NFT:
        return AdminMintEvent(transaction_id, tx_hash, _token_ids(data, name))
    if event_type in (
        WorkerEventType.REDEMPTION_SUBMITTED,
        WorkerEventType.REDEMPTION_APPROVED,
        WorkerEventType.REDEMPTION_CANCELED,
    ):
        return RedemptionEvent(transaction_id, tx_hash, event_type)
    if event_type == WorkerEventType.EVENT_CANCELED:
        return CancelEventEvent(transaction_id, tx_hash)
    if event_type == WorkerEventType.PERMISSION_UPDATED:
        return AdminActionEvent(transaction_id, tx_hash)
    return DepositEvent(transaction_id, tx_hash)
