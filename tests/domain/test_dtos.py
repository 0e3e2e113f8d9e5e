"""Tests for settlement result semantics in settlement_kernel.domain.dtos."""

from uuid import uuid4

import pytest

from settlement_kernel.domain.dtos import SettlementResult, SettlementStatus


class TestSettlementResult:

    @pytest.mark.parametrize(
        "status",
        [SettlementStatus.SETTLED, SettlementStatus.ALREADY_COMPLETED, SettlementStatus.SKIPPED],
    )
    def test_nothing_left_to_retry_is_success(self, status):
        assert SettlementResult(status=status).is_success

    def test_failed_is_not_success(self):
        assert not SettlementResult(status=SettlementStatus.FAILED).is_success

    def test_skipped_carries_reason(self):
        result = SettlementResult.skipped("transfer into the locking contract")
        assert result.status == SettlementStatus.SKIPPED
        assert result.is_success
        assert result.transaction_id is None

    def test_already_completed_keeps_transaction(self):
        transaction_id = uuid4()
        result = SettlementResult.already_completed(transaction_id)
        assert result.transaction_id == transaction_id
        assert result.is_success
