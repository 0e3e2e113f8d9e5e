"""
Chain client -- signing, recovery and receipt lookups against the chain.

Responsibility:
    The settlement side's only window onto the chain node.  Signs request
    payloads the exchange contract verifies, recovers signers, and reads
    transaction receipts and the exchange events they carry.

Architecture position:
    Services > adapters.  ``Web3ChainClient`` wraps web3.py and
    eth_account.  ``RetryingChainClient`` adds the retry policy for
    transient RPC failures and is what the application wires in.

Failure modes:
    - ChainUnavailableError once a retryable RPC failure has been retried
      ``max_retries`` times.
    - InvalidChainDataError when a receipt was not emitted by the
      exchange contract.
    - ReceiptNotFoundError from ``get_event_by_hash`` while the
      transaction is unmined.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from settlement_config.schema import ChainSettings
from settlement_kernel.domain.ports import ChainReceipt
from settlement_kernel.exceptions import (
    ChainUnavailableError,
    InvalidChainDataError,
    ReceiptNotFoundError,
)
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.chain")

T = TypeVar("T")

# (solidity type, value) pairs, hashed with solidity_keccak
SignedFields = Sequence[tuple[str, Any]]


@runtime_checkable
class ChainClient(Protocol):
    def sign(self, fields: SignedFields, private_key: str) -> str:
        ...

    def recover(self, fields: SignedFields, signature: str) -> str:
        ...

    def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None:
        ...

    def get_event_by_hash(self, tx_hash: str) -> dict[str, Any]:
        ...


def _message_for(fields: SignedFields):
    types = [abi_type for abi_type, _ in fields]
    values = [value for _, value in fields]
    return encode_defunct(primitive=bytes(Web3.solidity_keccak(types, values)))


class Web3ChainClient:
    """
    web3.py-backed client.

    ``exchange_abi`` is the exchange contract ABI.  Without it
    ``get_event_by_hash`` returns the raw receipt logs.
    """

    def __init__(
        self,
        settings: ChainSettings,
        exchange_abi: list[dict[str, Any]] | None = None,
        w3: Web3 | None = None,
    ):
        self._settings = settings
        self._w3 = w3 or Web3(Web3.HTTPProvider(settings.rpc_url))
        self._exchange_abi = exchange_abi

    def sign(self, fields: SignedFields, private_key: str) -> str:
        signed = Account.sign_message(_message_for(fields), private_key=private_key)
        return Web3.to_hex(signed.signature)

    def recover(self, fields: SignedFields, signature: str) -> str:
        return Account.recover_message(_message_for(fields), signature=signature).lower()

    def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None:
        try:
            receipt = self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return ChainReceipt(
            tx_hash=tx_hash.lower(),
            status=receipt["status"] == 1,
            to_address=(receipt.get("to") or "").lower() or None,
            block_number=receipt.get("blockNumber"),
            logs=tuple(dict(log) for log in receipt.get("logs", [])),
        )

    def get_event_by_hash(self, tx_hash: str) -> dict[str, Any]:
        """
        Decode the exchange event carried by ``tx_hash``.

        Raises:
            ReceiptNotFoundError: the transaction is not mined yet.
            InvalidChainDataError: the receipt did not come from the
                exchange contract, or carries no exchange event.
        """
        try:
            receipt = self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            raise ReceiptNotFoundError(tx_hash) from None

        emitter = (receipt.get("to") or "").lower()
        if emitter != self._settings.exchange_contract.lower():
            raise InvalidChainDataError(tx_hash, f"emitted by {emitter or 'unknown'}, not the exchange contract")

        if self._exchange_abi is None:
            return {"event": None, "logs": [dict(log) for log in receipt.get("logs", [])]}

        contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(self._settings.exchange_contract),
            abi=self._exchange_abi,
        )
        event_names = [e["name"] for e in self._exchange_abi if e.get("type") == "event"]
        event_names.sort(key=lambda name: name != self._settings.mint_event_name)
        for name in event_names:
            decoded = getattr(contract.events, name)().process_receipt(receipt, errors=DISCARD)
            if decoded:
                log = decoded[0]
                return {"event": log["event"], "args": dict(log["args"])}
        raise InvalidChainDataError(tx_hash, "no exchange event in receipt")


class RetryingChainClient:
    """
    Retries transient RPC failures of the wrapped client.

    An error is transient when its message contains one of
    ``ChainSettings.retryable_errors`` (case-insensitive).  Anything else
    is re-raised at once.
    """

    def __init__(
        self,
        inner: ChainClient,
        settings: ChainSettings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._inner = inner
        self._settings = settings
        self._sleep = sleep
        self._patterns = tuple(p.lower() for p in settings.retryable_errors)

    def sign(self, fields: SignedFields, private_key: str) -> str:
        return self._inner.sign(fields, private_key)

    def recover(self, fields: SignedFields, signature: str) -> str:
        return self._inner.recover(fields, signature)

    def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None:
        return self._call("get_transaction_receipt", lambda: self._inner.get_transaction_receipt(tx_hash))

    def get_event_by_hash(self, tx_hash: str) -> dict[str, Any]:
        return self._call("get_event_by_hash", lambda: self._inner.get_event_by_hash(tx_hash))

    def is_retryable(self, exc: Exception) -> bool:
        message = str(exc).lower()
        return any(pattern in message for pattern in self._patterns)

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except (ReceiptNotFoundError, InvalidChainDataError):
                raise
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise
                if attempt > self._settings.max_retries:
                    logger.error(
                        "chain_call_exhausted",
                        extra={"operation": operation, "attempts": attempt, "error": str(exc)},
                    )
                    raise ChainUnavailableError(operation, attempt, str(exc)) from exc
                logger.warning(
                    "chain_call_retry",
                    extra={"operation": operation, "attempt": attempt, "error": str(exc)},
                )
                self._sleep(self._settings.retry_delay_seconds)
