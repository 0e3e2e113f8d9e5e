"""
LockManager -- store-backed, expiring mutual exclusion.

Responsibility:
    Serializes every settlement attempt for one (lock_type, resource_id)
    across all worker processes and service instances.  Exclusivity comes
    from the database unique constraint on ``settlement_locks``, never from
    in-process memory.

Architecture position:
    Kernel > Services.  Uses its own short-lived sessions (one per attempt)
    so the lock row is committed and visible fleet-wide before the guarded
    callable opens its own unit of work.

Invariants enforced:
    - At most one guarded callable runs per (lock_type, resource_id) at a
      time, as long as it finishes within the TTL.
    - A lock left behind by a crashed holder is purged once ``expires_at``
      has passed, by the next caller for the same lock type.
    - Retry is an iterative loop bounded by ``max_attempts`` and
      ``max_wait_seconds``.  Exhaustion raises LockContentionExhaustedError.

Failure modes:
    - LockContentionExhaustedError when the retry budget is spent.
    - Any non-uniqueness database error propagates immediately, without
      retry.
    - Exceptions raised by the guarded callable propagate after the lock
      row is deleted.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import timedelta
from enum import Enum
from typing import TypeVar
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_config.schema import LockSettings
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import LockContentionExhaustedError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.lock import SettlementLock

logger = get_logger("services.lock_manager")

T = TypeVar("T")


class LockManager:
    """
    Distributed mutex over the ``settlement_locks`` table.

    Contract:
        ``with_lock(lock_type, resource_id, fn)`` runs ``fn()`` while holding
        the lock and returns its result.  ``hold(lock_type, resource_id)`` is
        the context-manager form.

    Guarantees:
        - The lock row is deleted whether ``fn`` returns or raises.
        - Only IntegrityError counts as contention.

    Non-goals:
        - No fencing tokens.  A holder that outlives the TTL can overlap
          with the next holder; callers keep guarded work well under it.
        - No owner identity: release deletes the row this call inserted.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: LockSettings | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._settings = settings or LockSettings()
        self._clock = clock or SystemClock()
        self._sleep = sleep

    def with_lock(self, lock_type: Enum | str, resource_id: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` under the (lock_type, resource_id) lock.

        Raises:
            LockContentionExhaustedError: if the lock could not be acquired
                within the retry budget.
        """
        with self.hold(lock_type, resource_id):
            return fn()

    @contextmanager
    def hold(self, lock_type: Enum | str, resource_id: str) -> Iterator[None]:
        type_key = lock_type.value if isinstance(lock_type, Enum) else str(lock_type)
        lock_id = self._acquire(type_key, resource_id)
        try:
            yield
        finally:
            self._release(type_key, resource_id, lock_id)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _acquire(self, lock_type: str, resource_id: str) -> UUID:
        settings = self._settings
        attempts = 0
        waited = 0.0
        while True:
            attempts += 1
            lock_id = self._try_insert(lock_type, resource_id)
            if lock_id is not None:
                logger.debug(
                    "lock_acquired",
                    extra={
                        "lock_type": lock_type,
                        "resource_id": resource_id,
                        "attempts": attempts,
                    },
                )
                return lock_id

            if attempts >= settings.max_attempts or waited + settings.backoff_seconds > settings.max_wait_seconds:
                logger.warning(
                    "lock_contention_exhausted",
                    extra={
                        "lock_type": lock_type,
                        "resource_id": resource_id,
                        "attempts": attempts,
                        "waited_seconds": waited,
                    },
                )
                raise LockContentionExhaustedError(lock_type, resource_id, attempts, waited)

            logger.debug(
                "lock_contended",
                extra={
                    "lock_type": lock_type,
                    "resource_id": resource_id,
                    "attempt": attempts,
                    "backoff_seconds": settings.backoff_seconds,
                },
            )
            self._sleep(settings.backoff_seconds)
            waited += settings.backoff_seconds

    def _try_insert(self, lock_type: str, resource_id: str) -> UUID | None:
        """One acquisition attempt.  Returns the new row id, or None on contention."""
        now = self._clock.now()
        session = self._session_factory()
        try:
            purged = session.execute(
                delete(SettlementLock).where(
                    SettlementLock.lock_type == lock_type,
                    SettlementLock.expires_at < now,
                )
            ).rowcount
            session.commit()
            if purged:
                logger.info(
                    "expired_locks_purged",
                    extra={"lock_type": lock_type, "purged": purged},
                )

            lock = SettlementLock(
                lock_type=lock_type,
                resource_id=resource_id,
                acquired_at=now,
                expires_at=now + timedelta(seconds=self._settings.ttl_seconds),
            )
            session.add(lock)
            session.commit()
            return lock.id
        except IntegrityError:
            session.rollback()
            return None
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _release(self, lock_type: str, resource_id: str, lock_id: UUID) -> None:
        session = self._session_factory()
        try:
            session.execute(delete(SettlementLock).where(SettlementLock.id == lock_id))
            session.commit()
        except Exception:
            session.rollback()
            logger.error(
                "lock_release_failed",
                extra={"lock_type": lock_type, "resource_id": resource_id},
                exc_info=True,
            )
            raise
        finally:
            session.close()
        logger.debug(
            "lock_released",
            extra={"lock_type": lock_type, "resource_id": resource_id},
        )
