"""
Ports -- interfaces the kernel calls out through.

Responsibility:
    Structural protocols for collaborators that live outside the kernel:
    notification delivery and chain receipt lookup.  Concrete adapters are
    in ``settlement_services``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget notification delivery."""

    def notify(self, template_id: str, payload: dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class ChainReceipt:
    """The parts of a transaction receipt settlement cares about."""

    tx_hash: str
    status: bool
    to_address: str | None = None
    block_number: int | None = None
    logs: tuple[dict[str, Any], ...] = field(default_factory=tuple)


@runtime_checkable
class ReceiptReader(Protocol):
    """Read side of the chain client used by the confirmation poller."""

    def get_transaction_receipt(self, tx_hash: str) -> ChainReceipt | None:
        ...


class NullNotificationDispatcher:
    """Dispatcher that drops every notice."""

    def notify(self, template_id: str, payload: dict[str, Any]) -> None:
        return None
