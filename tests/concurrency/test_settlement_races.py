"""
Concurrent delivery of chain callbacks.

The worker may deliver the same callback several times at once, and many
purchases of the same category may confirm together.  Each test releases
its threads from a barrier so the settlements really overlap.

Runs on SQLite by default; set DATABASE_URL for PostgreSQL.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from settlement_kernel.domain.dtos import SettlementStatus
from settlement_kernel.exceptions import CategoryBoundExceededError

from tests.conftest import SYSTEM_ADDRESS, addr

pytestmark = pytest.mark.slow_locks


def run_together(count, fn):
    """Run ``fn(i)`` on ``count`` threads released at once; return results or raised errors."""
    barrier = Barrier(count)

    def call(i):
        barrier.wait()
        try:
            return fn(i)
        except CategoryBoundExceededError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(call, range(count)))


class TestDuplicateDelivery:

    def test_same_callback_settles_once(self, ledger, settlement, notifier):
        buyer = addr(901)
        ledger.system()
        ledger.participant(buyer, referrer=SYSTEM_ADDRESS)
        item_id = ledger.inventory(supply=10)
        event_id = ledger.live_event([(item_id, 5, "10")])
        transaction_id = ledger.buy(buyer, event_id, item_id, 2)
        h = ledger.broadcast(transaction_id)

        results = run_together(6, lambda _: settlement.settle_mint(transaction_id, h, ["1", "2"]))

        statuses = [r.status for r in results]
        assert statuses.count(SettlementStatus.SETTLED) == 1
        assert statuses.count(SettlementStatus.ALREADY_COMPLETED) == 5
        item = ledger.get_inventory(item_id)
        assert item.total_minted == 2
        assert item.is_conserved
        assert notifier.templates().count("buy_success") == 1

    def test_same_transfer_settles_once(self, ledger, settlement, bought):
        owner, receiver = addr(902), addr(903)
        ledger.system()
        ledger.participant(owner, referrer=SYSTEM_ADDRESS)
        item_id = ledger.inventory(supply=10)
        event_id = ledger.live_event([(item_id, 5, "10")])
        _, tokens = bought(owner, event_id, item_id, 1)
        h = ledger.next_hash()

        results = run_together(4, lambda _: settlement.settle_transfer(h, owner, receiver, tokens[0]))

        statuses = [r.status for r in results]
        assert statuses.count(SettlementStatus.SETTLED) == 1
        assert statuses.count(SettlementStatus.ALREADY_COMPLETED) == 3
        assert ledger.ownership(tokens[0]).address == receiver


class TestCategoryBoundUnderContention:

    def test_never_oversells(self, ledger, settlement):
        ledger.system()
        item_id = ledger.inventory(supply=20)
        event_id = ledger.live_event([(item_id, 5, "10")])
        pending = []
        for n in range(8):
            buyer = addr(1000 + n)
            ledger.participant(buyer, referrer=SYSTEM_ADDRESS)
            transaction_id = ledger.buy(buyer, event_id, item_id, 1)
            pending.append((transaction_id, ledger.broadcast(transaction_id), str(100 + n)))

        results = run_together(
            len(pending),
            lambda i: settlement.settle_mint(pending[i][0], pending[i][1], [pending[i][2]]),
        )

        settled = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, CategoryBoundExceededError)]
        assert len(settled) == 5
        assert len(rejected) == 3
        _, categories = ledger.get_event(event_id)
        assert categories[0].total_minted == 5
        item = ledger.get_inventory(item_id)
        assert item.total_minted == 5
        assert item.total_on_sale == 0
        assert item.is_conserved
