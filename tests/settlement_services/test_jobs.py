"""
Tests for the in-memory job queue and the confirmation poller.

Jobs run on the calling thread through ``run_pending()``; time moves only
when the test advances the deterministic clock.
"""

import threading

import pytest

from settlement_kernel.domain.dtos import NoticeTemplate, SettlementStatus
from settlement_kernel.domain.ports import ChainReceipt
from settlement_kernel.models.transaction import TransactionStatus
from settlement_services.jobs import ConfirmationPoller, InMemoryJobQueue, RetryPolicy

from tests.conftest import SYSTEM_ADDRESS, addr


class Flaky:
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int):
        self.failures = failures
        self.payloads = []

    def __call__(self, payload):
        self.payloads.append(payload)
        if len(self.payloads) <= self.failures:
            raise RuntimeError(f"attempt {len(self.payloads)} failed")
        return "done"


class TestRetryPolicy:

    def test_backoff(self):
        policy = RetryPolicy(max_attempts=4, delay_seconds=5.0, backoff_factor=2.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [5.0, 10.0, 20.0]

    def test_default_runs_once(self):
        assert RetryPolicy().max_attempts == 1


class TestInMemoryJobQueue:

    @pytest.fixture
    def queue(self, deterministic_clock):
        return InMemoryJobQueue("test", clock=deterministic_clock)

    def test_runs_due_jobs(self, queue):
        handler = Flaky(0)
        queue.set_handler(handler)
        queue.enqueue("a", {"n": 1})
        queue.enqueue("b", {"n": 2})

        assert queue.run_pending() == 2
        assert handler.payloads == [{"n": 1}, {"n": 2}]
        assert len(queue) == 0

    def test_queued_id_deduplicated(self, queue):
        queue.set_handler(Flaky(0))
        assert queue.enqueue("a", {})
        assert not queue.enqueue("a", {})
        assert len(queue) == 1

        queue.run_pending()
        assert queue.enqueue("a", {})

    def test_delay_waits_for_clock(self, queue, deterministic_clock):
        handler = Flaky(0)
        queue.set_handler(handler)
        queue.enqueue("later", {}, delay=10)

        assert queue.run_pending() == 0
        deterministic_clock.advance(10)
        assert queue.run_pending() == 1

    def test_retries_then_succeeds(self, queue, captured_logs):
        handler = Flaky(2)
        queue.set_handler(handler)
        results = []
        queue.on_success(lambda job, result: results.append((job.attempts, result)))

        queue.enqueue("a", {}, retry_policy=RetryPolicy(max_attempts=3))

        assert queue.run_pending() == 3
        assert results == [(3, "done")]
        assert [r["message"] for r in captured_logs()].count("job_retry_scheduled") == 2

    def test_retry_respects_delay(self, queue, deterministic_clock):
        handler = Flaky(1)
        queue.set_handler(handler)
        queue.enqueue("a", {}, retry_policy=RetryPolicy(max_attempts=2, delay_seconds=30))

        assert queue.run_pending() == 1
        assert queue.run_pending() == 0
        deterministic_clock.advance(30)
        assert queue.run_pending() == 1
        assert len(handler.payloads) == 2

    def test_failure_listeners_after_exhaustion(self, queue, captured_logs):
        queue.set_handler(Flaky(5))
        failures = []
        queue.on_failure(lambda job, exc: failures.append((job.job_id, job.attempts, str(exc))))

        queue.enqueue("a", {}, retry_policy=RetryPolicy(max_attempts=2))
        queue.run_pending()

        assert failures == [("a", 2, "attempt 2 failed")]
        assert any(r["message"] == "job_failed" for r in captured_logs())
        assert queue.enqueue("a", {})

    def test_needs_handler(self, queue):
        queue.enqueue("a", {})
        with pytest.raises(RuntimeError):
            queue.run_pending()

    def test_background_worker(self):
        done = threading.Event()
        queue = InMemoryJobQueue("bg", handler=lambda payload: done.set(), poll_interval_seconds=0.01)
        queue.start()
        try:
            queue.enqueue("a", {})
            assert done.wait(timeout=5)
        finally:
            queue.stop()
        assert not queue.is_running


class FakeReceipts:
    """ReceiptReader answering from a dict; missing hashes are unmined."""

    def __init__(self):
        self.receipts = {}
        self.lookups = []

    def get_transaction_receipt(self, tx_hash):
        self.lookups.append(tx_hash)
        return self.receipts.get(tx_hash)


class TestConfirmationPoller:

    @pytest.fixture
    def chain(self):
        return FakeReceipts()

    @pytest.fixture
    def queue(self, deterministic_clock):
        return InMemoryJobQueue("confirmations", clock=deterministic_clock)

    @pytest.fixture
    def poller(self, session_factory, settlement, chain, queue, settings):
        return ConfirmationPoller(session_factory, settlement, chain, queue, settings.poller)

    @pytest.fixture
    def pending(self, ledger):
        """Two purchases: one broadcast (Processing), one still Draft."""
        buyer = addr(1101)
        ledger.system()
        ledger.participant(buyer, referrer=SYSTEM_ADDRESS)
        item_id = ledger.inventory(supply=10)
        event_id = ledger.live_event([(item_id, 5, "10")])
        processing = ledger.buy(buyer, event_id, item_id, 1)
        h = ledger.broadcast(processing)
        ledger.buy(buyer, event_id, item_id, 1)
        return processing, h

    def test_tick_queues_processing_only(self, poller, queue, pending):
        assert poller.tick() == 1
        assert poller.tick() == 0
        assert len(queue) == 1

    def test_reverted_receipt_fails_transaction(self, ledger, poller, queue, chain, notifier, pending):
        transaction_id, h = pending
        chain.receipts[h] = ChainReceipt(tx_hash=h, status=False)

        poller.tick()
        queue.run_pending()

        tx = ledger.get_transaction(transaction_id)
        assert tx.status == TransactionStatus.FAILED.value
        assert tx.message == "transaction reverted on chain"
        assert NoticeTemplate.TRANSACTION_FAILED.value in notifier.templates()

    def test_confirmed_receipt_waits_for_worker(self, ledger, poller, queue, chain, pending):
        transaction_id, h = pending
        chain.receipts[h] = ChainReceipt(tx_hash=h, status=True)
        results = []
        queue.on_success(lambda job, result: results.append(result))

        poller.tick()
        queue.run_pending()

        assert results[0].status == SettlementStatus.SKIPPED
        assert ledger.get_transaction(transaction_id).status == TransactionStatus.PROCESSING.value

    def test_unconfirmed_after_retries(self, ledger, poller, queue, chain, settings, captured_logs, pending):
        transaction_id, h = pending

        poller.tick()
        queue.run_pending()

        assert chain.lookups == [h] * settings.poller.max_attempts
        tx = ledger.get_transaction(transaction_id)
        assert tx.status == TransactionStatus.FAILED.value
        assert tx.message == "transaction not confirmed"
        assert any(r["message"] == "transaction_unconfirmed" for r in captured_logs())

    def test_worker_settlement_wins(self, ledger, poller, queue, settlement, pending):
        """The worker settles while receipt checks are still retrying."""
        transaction_id, h = pending
        poller.tick()
        settlement.settle_mint(transaction_id, h, ["1"])

        queue.run_pending()

        assert ledger.get_transaction(transaction_id).status == TransactionStatus.SUCCESS.value
