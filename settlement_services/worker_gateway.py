"""
WorkerGateway -- entry point for chain worker callbacks.

Responsibility:
    Accepts the raw ``{event_type, hash, data}`` payload the chain worker
    posts, decodes it once and hands the typed event to the settlement
    engine.  Every log line written while the event settles carries the
    callback's correlation id, event type and hash.

Failure modes:
    - UnknownWorkerEventError / MalformedWorkerEventError are logged as
      ``worker_event_rejected`` and re-raised so the worker can dead-letter
      the payload.
    - Settlement errors propagate unchanged; the worker re-delivers and
      the engine's idempotency absorbs the replay.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from settlement_kernel.domain.dtos import SettlementResult
from settlement_kernel.domain.worker_events import decode_worker_event
from settlement_kernel.exceptions import WorkerError
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.services.settlement_engine import SettlementEngine

logger = get_logger("services.worker_gateway")


class WorkerGateway:
    def __init__(self, engine: SettlementEngine):
        self._engine = engine

    def receive_data(
        self,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> SettlementResult:
        correlation_id = correlation_id or str(uuid4())
        event_type = str(payload.get("event_type", payload.get("eventType")))
        with LogContext.bind(
            correlation_id=correlation_id,
            event_type=event_type,
            tx_hash=payload.get("hash"),
        ):
            try:
                event = decode_worker_event(payload)
            except WorkerError as exc:
                logger.error(
                    "worker_event_rejected",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

            logger.info("worker_event_received")
            result = self._engine.dispatch(event)
            logger.info(
                "worker_event_settled",
                extra={"status": result.status.value},
            )
            return result
