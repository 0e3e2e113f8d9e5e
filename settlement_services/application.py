"""
SettlementApplication -- composition root.

Responsibility:
    Builds the settlement runtime from one SettlementConfig: lock manager,
    notification queue, settlement engine, worker gateway, chain client and
    confirmation poller.  Owns the start/stop lifecycle of the background
    workers.

Architecture position:
    Outermost layer.  Nothing in ``settlement_kernel`` imports from here.

Failure modes:
    - RuntimeError from ``from_config`` when no database url is configured.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from settlement_config import get_active_config
from settlement_config.schema import SettlementConfig
from settlement_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.ports import ReceiptReader
from settlement_kernel.logging_config import get_logger
from settlement_kernel.services.lock_manager import LockManager
from settlement_kernel.services.referral_engine import ReferralEngine
from settlement_kernel.services.settlement_engine import SettlementEngine
from settlement_kernel.services.transaction_service import TransactionService
from settlement_services.chain import RetryingChainClient, Web3ChainClient
from settlement_services.jobs import ConfirmationPoller, InMemoryJobQueue
from settlement_services.notifications import Delivery, QueuedNotificationDispatcher
from settlement_services.worker_gateway import WorkerGateway

logger = get_logger("services.application")


class SettlementApplication:
    """
    Wires the settlement runtime together.

    Usage:
        with SettlementApplication.from_config("settlement.yaml") as app:
            app.gateway.receive_data(payload)
    """

    def __init__(
        self,
        config: SettlementConfig,
        session_factory: sessionmaker[Session] | None = None,
        chain_client: ReceiptReader | None = None,
        delivery: Delivery | None = None,
        clock: Clock | None = None,
    ):
        self.config = config
        self.clock = clock or SystemClock()
        self.session_factory = session_factory or get_session_factory()

        self.lock_manager = LockManager(self.session_factory, config.lock, self.clock)
        self.notification_queue = InMemoryJobQueue("notifications", clock=self.clock)
        self.notifier = QueuedNotificationDispatcher(self.notification_queue, delivery)
        self.engine = SettlementEngine(
            self.session_factory,
            self.lock_manager,
            config,
            clock=self.clock,
            notifier=self.notifier,
        )
        self.gateway = WorkerGateway(self.engine)

        self.chain = chain_client or RetryingChainClient(Web3ChainClient(config.chain), config.chain)
        self.confirmation_queue = InMemoryJobQueue("confirmations", clock=self.clock)
        self.poller = ConfirmationPoller(
            self.session_factory,
            self.engine,
            self.chain,
            self.confirmation_queue,
            config.poller,
        )

    @classmethod
    def from_config(cls, path: Path | str | None = None, **kwargs) -> SettlementApplication:
        """Load configuration, initialize the database engine and build the app."""
        config = get_active_config(path)
        if not config.database_url:
            raise RuntimeError(f"Config {config.config_id!r} has no database_url")
        init_engine_from_url(config.database_url)
        create_tables()
        return cls(config, session_factory=get_session_factory(), **kwargs)

    def transaction_service(self, session: Session) -> TransactionService:
        return TransactionService(session, self.config, self.clock)

    def referral_engine(self, session: Session) -> ReferralEngine:
        return ReferralEngine(session, self.config.referral)

    def start(self) -> None:
        self.notification_queue.start()
        self.confirmation_queue.start()
        self.poller.start()
        logger.info("settlement_application_started", extra={"config_id": self.config.config_id})

    def stop(self, timeout: float = 30.0) -> None:
        self.poller.stop(timeout)
        self.confirmation_queue.stop(timeout)
        self.notification_queue.stop(timeout)
        logger.info("settlement_application_stopped")

    def __enter__(self) -> SettlementApplication:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
