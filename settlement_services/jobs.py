"""
Job queue and confirmation poller.

Contract:
    ``InMemoryJobQueue`` runs delayed jobs with a retry policy on a
    background worker thread.  ``ConfirmationPoller`` finds Processing
    transactions, re-checks their chain receipts through the queue, and
    fails the ones the chain reverted or never confirmed.

Architecture: settlement_services.  Both are constructed explicitly by
    SettlementApplication and live between its start() and stop().

Invariants enforced:
    - A job id is queued at most once at a time; enqueueing a queued id is
      a no-op.
    - Timestamps come from the injected Clock.
    - stop() lets the job in flight finish.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from settlement_config.schema import PollerSettings
from settlement_kernel.db.engine import session_scope
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.ports import ReceiptReader
from settlement_kernel.exceptions import ReceiptNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.services.settlement_engine import SettlementEngine
from settlement_kernel.services.transaction_service import TransactionService

logger = get_logger("services.jobs")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how far apart a failing job is retried."""

    max_attempts: int = 1
    delay_seconds: float = 0.0
    backoff_factor: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Delay before attempt ``attempt + 1``."""
        return self.delay_seconds * (self.backoff_factor ** max(attempt - 1, 0))


@dataclass
class Job:
    job_id: str
    payload: dict[str, Any]
    retry_policy: RetryPolicy
    run_at: datetime
    attempts: int = 0
    last_error: str | None = None


JobHandler = Callable[[dict[str, Any]], Any]
SuccessListener = Callable[[Job, Any], None]
FailureListener = Callable[[Job, Exception], None]


class JobQueue(Protocol):
    def enqueue(
        self,
        job_id: str,
        payload: dict[str, Any],
        delay: float = 0.0,
        retry_policy: RetryPolicy | None = None,
    ) -> bool:
        ...

    def on_success(self, listener: SuccessListener) -> None:
        ...

    def on_failure(self, listener: FailureListener) -> None:
        ...


class InMemoryJobQueue:
    """Delayed jobs with retry, run by one worker thread.

    Contract:
        - ``set_handler(fn)`` before the first job runs.
        - ``run_pending()`` runs every due job on the calling thread
          (public for testing).
        - ``start()`` / ``stop()`` for background operation.
        - Failure listeners fire once a job exhausts its retry policy.

    Non-goals:
        - NOT durable.  Queued jobs are lost with the process; the poller
          re-discovers Processing transactions on its next tick.
    """

    def __init__(
        self,
        name: str,
        handler: JobHandler | None = None,
        clock: Clock | None = None,
        poll_interval_seconds: float = 0.1,
    ):
        self._name = name
        self._handler = handler
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval_seconds
        self._heap: list[tuple[datetime, int, Job]] = []
        self._queued: set[str] = set()
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._success_listeners: list[SuccessListener] = []
        self._failure_listeners: list[FailureListener] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def set_handler(self, handler: JobHandler) -> None:
        self._handler = handler

    def on_success(self, listener: SuccessListener) -> None:
        self._success_listeners.append(listener)

    def on_failure(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def enqueue(
        self,
        job_id: str,
        payload: dict[str, Any],
        delay: float = 0.0,
        retry_policy: RetryPolicy | None = None,
    ) -> bool:
        """Queue a job.  Returns False when ``job_id`` is already queued."""
        with self._lock:
            if job_id in self._queued:
                return False
            job = Job(
                job_id=job_id,
                payload=dict(payload),
                retry_policy=retry_policy or RetryPolicy(),
                run_at=self._clock.now() + timedelta(seconds=delay),
            )
            self._push(job)
        logger.debug("job_enqueued", extra={"queue": self._name, "job_id": job_id, "delay": delay})
        return True

    def run_pending(self) -> int:
        """Run every job that is due now.  Returns the number of attempts made."""
        ran = 0
        while not self._stop_event.is_set():
            job = self._pop_due()
            if job is None:
                break
            self._run(job)
            ran += 1
        return ran

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"job-queue-{self._name}",
            daemon=True,
        )
        self._thread.start()
        logger.info("job_queue_started", extra={"queue": self._name})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("job_queue_stopped", extra={"queue": self._name, "pending": len(self)})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _push(self, job: Job) -> None:
        heapq.heappush(self._heap, (job.run_at, next(self._counter), job))
        self._queued.add(job.job_id)

    def _pop_due(self) -> Job | None:
        now = self._clock.now()
        with self._lock:
            if not self._heap or self._heap[0][0] > now:
                return None
            _, _, job = heapq.heappop(self._heap)
            return job

    def _run(self, job: Job) -> None:
        if self._handler is None:
            raise RuntimeError(f"Job queue {self._name!r} has no handler")
        job.attempts += 1
        try:
            result = self._handler(job.payload)
        except Exception as exc:
            job.last_error = str(exc)
            if job.attempts < job.retry_policy.max_attempts:
                delay = job.retry_policy.delay_for(job.attempts)
                job.run_at = self._clock.now() + timedelta(seconds=delay)
                with self._lock:
                    heapq.heappush(self._heap, (job.run_at, next(self._counter), job))
                logger.info(
                    "job_retry_scheduled",
                    extra={
                        "queue": self._name,
                        "job_id": job.job_id,
                        "attempt": job.attempts,
                        "delay": delay,
                        "error": job.last_error,
                    },
                )
                return
            with self._lock:
                self._queued.discard(job.job_id)
            logger.warning(
                "job_failed",
                extra={"queue": self._name, "job_id": job.job_id, "attempts": job.attempts},
                exc_info=True,
            )
            for failure_listener in self._failure_listeners:
                failure_listener(job, exc)
            return

        with self._lock:
            self._queued.discard(job.job_id)
        logger.debug("job_succeeded", extra={"queue": self._name, "job_id": job.job_id})
        for success_listener in self._success_listeners:
            success_listener(job, result)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception:
                logger.exception("job_queue_loop_exception", extra={"queue": self._name})
            self._stop_event.wait(timeout=self._poll_interval)


class ConfirmationPoller:
    """Reconciles Processing transactions against chain receipts.

    Contract:
        - ``tick()`` queues one receipt check per Processing transaction
          that has a hash.
        - A check that finds no receipt raises ReceiptNotFoundError so the
          queue retries it.  Once retries run out the transaction is
          marked Failed.
        - A reverted receipt marks the transaction Failed at once.
        - ``start()`` / ``stop()`` for background operation.

    Non-goals:
        - Does NOT settle successful receipts.  The worker event carries
          the token ids settlement needs.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        engine: SettlementEngine,
        chain: ReceiptReader,
        queue: InMemoryJobQueue,
        settings: PollerSettings | None = None,
        transaction_service_factory: Callable[[Session], TransactionService] | None = None,
    ):
        self._session_factory = session_factory
        self._engine = engine
        self._chain = chain
        self._queue = queue
        self._settings = settings or PollerSettings()
        self._service_factory = transaction_service_factory
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._queue.set_handler(self.check)
        self._queue.on_failure(self._on_exhausted)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self._settings.max_attempts,
            delay_seconds=self._settings.retry_delay_seconds,
        )

    def tick(self) -> int:
        """Queue receipt checks for Processing transactions.  Returns the number queued."""
        with session_scope(self._session_factory) as session:
            pending = [
                (tx.id, tx.hash)
                for tx in self._service(session).processing_transactions()
                if tx.hash
            ]
        queued = 0
        for transaction_id, tx_hash in pending:
            if self._queue.enqueue(
                f"check-{transaction_id}",
                {"transaction_id": str(transaction_id), "tx_hash": tx_hash},
                retry_policy=self.retry_policy,
            ):
                queued += 1
        if queued:
            logger.info("confirmation_checks_queued", extra={"queued": queued})
        return queued

    def check(self, payload: dict[str, Any]):
        """Job handler: one receipt check."""
        transaction_id = UUID(payload["transaction_id"])
        tx_hash = payload["tx_hash"]
        receipt = self._chain.get_transaction_receipt(tx_hash)
        if receipt is None:
            raise ReceiptNotFoundError(tx_hash)
        return self._engine.apply_receipt(transaction_id, receipt)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="confirmation-poller",
            daemon=True,
        )
        self._thread.start()
        logger.info("poller_started", extra={"interval": self._settings.interval_seconds})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("poller_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _service(self, session: Session) -> TransactionService:
        if self._service_factory is not None:
            return self._service_factory(session)
        return TransactionService(session, self._engine.config)

    def _on_exhausted(self, job: Job, exc: Exception) -> None:
        if not isinstance(exc, ReceiptNotFoundError):
            return
        logger.warning(
            "transaction_unconfirmed",
            extra={"transaction_id": job.payload["transaction_id"], "attempts": job.attempts},
        )
        self._engine.mark_failed(UUID(job.payload["transaction_id"]), "transaction not confirmed")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("poller_tick_exception")
            self._stop_event.wait(timeout=self._settings.interval_seconds)
