"""
settlement_services -- adapters and runtime around the settlement kernel.

Chain access, background jobs, notification delivery, the worker callback
gateway and the application composition root.
"""

from settlement_services.application import SettlementApplication
from settlement_services.chain import ChainClient, RetryingChainClient, Web3ChainClient
from settlement_services.jobs import ConfirmationPoller, InMemoryJobQueue, RetryPolicy
from settlement_services.notifications import (
    LoggingNotificationDispatcher,
    QueuedNotificationDispatcher,
)
from settlement_services.worker_gateway import WorkerGateway

__all__ = [
    "ChainClient",
    "ConfirmationPoller",
    "InMemoryJobQueue",
    "LoggingNotificationDispatcher",
    "QueuedNotificationDispatcher",
    "RetryPolicy",
    "RetryingChainClient",
    "SettlementApplication",
    "Web3ChainClient",
    "WorkerGateway",
]
