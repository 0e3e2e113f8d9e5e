"""
Notification dispatchers.

``QueuedNotificationDispatcher`` is what the application wires into the
settlement engine: ``notify`` only enqueues, and a job-queue worker hands
each notice to the delivery callable with the queue's retry policy.  A
delivery that still fails after its retries is logged and dropped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from uuid import uuid4

from settlement_kernel.logging_config import get_logger
from settlement_services.jobs import InMemoryJobQueue, Job, RetryPolicy

logger = get_logger("services.notifications")

Delivery = Callable[[str, dict[str, Any]], None]


class LoggingNotificationDispatcher:
    """Writes every notice to the log.  The default delivery."""

    def notify(self, template_id: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification_sent",
            extra={"template_id": template_id, "to_address": payload.get("to_address")},
        )


class QueuedNotificationDispatcher:
    """Hands notices to a job queue for asynchronous delivery."""

    def __init__(
        self,
        queue: InMemoryJobQueue,
        delivery: Delivery | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._queue = queue
        self._delivery = delivery or LoggingNotificationDispatcher().notify
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=3, delay_seconds=5.0)
        self._queue.set_handler(self._deliver)
        self._queue.on_failure(self._on_undeliverable)

    def notify(self, template_id: str, payload: dict[str, Any]) -> None:
        self._queue.enqueue(
            f"notice-{uuid4()}",
            {"template_id": template_id, "payload": dict(payload)},
            retry_policy=self._retry_policy,
        )

    def _deliver(self, job_payload: dict[str, Any]) -> None:
        self._delivery(job_payload["template_id"], job_payload["payload"])

    @staticmethod
    def _on_undeliverable(job: Job, exc: Exception) -> None:
        logger.error(
            "notification_undeliverable",
            extra={
                "template_id": job.payload["template_id"],
                "attempts": job.attempts,
                "error": str(exc),
            },
        )
