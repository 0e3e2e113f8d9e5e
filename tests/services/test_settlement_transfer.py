"""
Tests for SettlementEngine.settle_transfer.

Ownership moves, burns, skipped mint/locking transfers, replay and the
tier rules evaluated around a transfer.
"""

from decimal import Decimal

import pytest

from settlement_kernel.domain.dtos import NoticeTemplate, SettlementStatus
from settlement_kernel.exceptions import InvalidChainDataError, OwnershipNotFoundError
from settlement_kernel.models.ownership import OwnershipStatus
from settlement_kernel.models.participant import ParticipantTier

from tests.conftest import LOCKING_CONTRACT, SYSTEM_ADDRESS, ZERO_ADDRESS, addr

OWNER = addr(401)
RECEIVER = addr(402)
DEPENDANT = addr(403)


@pytest.fixture
def item(ledger):
    ledger.system()
    return ledger.inventory(supply=10)


@pytest.fixture
def owned(ledger, bought, item):
    """OWNER holds two units bought from a live event."""
    ledger.participant(OWNER, referrer=SYSTEM_ADDRESS)
    event_id = ledger.live_event([(item, 5, "10")])
    _, tokens = bought(OWNER, event_id, item, 2)
    return tokens


class TestOwnership:

    def test_moves_ownership(self, ledger, settlement, owned):
        h = ledger.next_hash()
        result = settlement.settle_transfer(h, OWNER, RECEIVER, owned[0])

        assert result.status == SettlementStatus.SETTLED
        record = ledger.ownership(owned[0])
        assert record.address == RECEIVER
        assert record.is_transfer
        assert record.minted_address == OWNER
        tx = ledger.get_transaction(result.transaction_id)
        assert tx.type == "transfer_outside"
        assert tx.token_key == owned[0]

    def test_replay_is_already_completed(self, ledger, settlement, owned):
        h = ledger.next_hash()
        first = settlement.settle_transfer(h, OWNER, RECEIVER, owned[0])
        replay = settlement.settle_transfer(h, OWNER, RECEIVER, owned[0])

        assert replay.status == SettlementStatus.ALREADY_COMPLETED
        assert replay.transaction_id == first.transaction_id
        assert ledger.ownership(owned[0]).address == RECEIVER

    def test_one_hash_moves_several_tokens(self, ledger, settlement, owned):
        h = ledger.next_hash()
        results = [settlement.settle_transfer(h, OWNER, RECEIVER, token) for token in owned]

        assert [r.status for r in results] == [SettlementStatus.SETTLED] * 2
        assert results[0].transaction_id != results[1].transaction_id
        assert all(ledger.ownership(t).address == RECEIVER for t in owned)

    def test_sender_must_hold_token(self, ledger, settlement, owned):
        with pytest.raises(InvalidChainDataError):
            settlement.settle_transfer(ledger.next_hash(), RECEIVER, OWNER, owned[0])
        assert ledger.ownership(owned[0]).address == OWNER

    def test_unknown_token(self, ledger, settlement, owned):
        with pytest.raises(OwnershipNotFoundError):
            settlement.settle_transfer(ledger.next_hash(), OWNER, RECEIVER, "9999")

    def test_addresses_normalized(self, ledger, settlement, owned):
        shout = OWNER.upper().replace("0X", "0x")
        settlement.settle_transfer(ledger.next_hash(), shout, RECEIVER.upper().replace("0X", "0x"), owned[0])
        assert ledger.ownership(owned[0]).address == RECEIVER


class TestSkipped:

    @pytest.mark.parametrize(
        "source,target",
        [(OWNER, LOCKING_CONTRACT), (LOCKING_CONTRACT, OWNER), (ZERO_ADDRESS, OWNER)],
    )
    def test_not_an_ownership_change(self, ledger, settlement, owned, source, target):
        result = settlement.settle_transfer(ledger.next_hash(), source, target, owned[0])

        assert result.status == SettlementStatus.SKIPPED
        assert result.is_success
        assert ledger.ownership(owned[0]).address == OWNER


class TestBurn:

    def test_burn_keeps_supply(self, ledger, settlement, owned, item):
        settlement.settle_transfer(ledger.next_hash(), OWNER, ZERO_ADDRESS, owned[0])

        record = ledger.ownership(owned[0])
        assert record.status == OwnershipStatus.BURNED.value
        assert record.address == ZERO_ADDRESS
        inventory = ledger.get_inventory(item)
        assert inventory.total_supply == 10
        assert (inventory.total_minted, inventory.total_burnt) == (1, 1)
        assert owned[0] not in inventory.token_ids
        assert inventory.is_conserved

    def test_burn_logged(self, ledger, settlement, owned, captured_logs):
        settlement.settle_transfer(ledger.next_hash(), OWNER, ZERO_ADDRESS, owned[0])
        burns = [r for r in captured_logs() if r["message"] == "token_burned"]
        assert burns[0]["token_id"] == owned[0]


class TestTierRules:

    def test_bda_loses_tier_with_last_unit(self, ledger, settlement, notifier, bought, item):
        ledger.participant(OWNER, referrer=SYSTEM_ADDRESS, bda=True, personal_volume=Decimal("12000"))
        ledger.participant(DEPENDANT, referrer=OWNER)
        event_id = ledger.live_event([(item, 5, "10")])
        _, tokens = bought(OWNER, event_id, item, 1)

        settlement.settle_transfer(ledger.next_hash(), OWNER, RECEIVER, tokens[0])

        owner = ledger.get_participant(OWNER)
        assert owner.tier == ParticipantTier.COMMON.value
        assert owner.personal_volume == Decimal("0")
        assert ledger.get_participant(DEPENDANT).originator == SYSTEM_ADDRESS
        assert NoticeTemplate.BDA_DEMOTED.value in notifier.for_address(OWNER)

    def test_bda_keeps_tier_while_holding(self, ledger, settlement, bought, item):
        ledger.participant(OWNER, referrer=SYSTEM_ADDRESS, bda=True)
        event_id = ledger.live_event([(item, 5, "10")])
        _, tokens = bought(OWNER, event_id, item, 2)

        settlement.settle_transfer(ledger.next_hash(), OWNER, RECEIVER, tokens[0])

        assert ledger.get_participant(OWNER).tier == ParticipantTier.BDA.value

    def test_receiver_regains_tier(self, ledger, settlement, notifier, owned):
        ledger.participant(RECEIVER, referrer=SYSTEM_ADDRESS, personal_volume=Decimal("10000"))

        settlement.settle_transfer(ledger.next_hash(), OWNER, RECEIVER, owned[0])

        assert ledger.get_participant(RECEIVER).tier == ParticipantTier.BDA.value
        assert NoticeTemplate.BDA_PROMOTED.value in notifier.for_address(RECEIVER)
        assert NoticeTemplate.ADMIN_BDA_PROMOTED.value in notifier.for_address(RECEIVER)

    def test_restricted_unit_transfer(self, ledger, settlement, notifier, admin_minted):
        ledger.system()
        restricted = ledger.inventory(supply=3, restricted=True, name="Black")
        ledger.participant(OWNER, referrer=SYSTEM_ADDRESS, bda=True)
        ledger.participant(
            RECEIVER,
            referrer=SYSTEM_ADDRESS,
            old_personal_volume=Decimal("10000"),
            have_received_black_from_admin=True,
        )
        tokens = admin_minted(OWNER, restricted, 1)
        assert ledger.get_participant(OWNER).have_received_black_from_admin

        settlement.settle_transfer(ledger.next_hash(), OWNER, RECEIVER, tokens[0])

        assert ledger.get_participant(OWNER).tier == ParticipantTier.COMMON.value
        assert ledger.get_participant(RECEIVER).tier == ParticipantTier.BDA.value
        assert NoticeTemplate.BDA_PROMOTED_BY_LEGACY_VOLUME.value in notifier.for_address(RECEIVER)

    def test_external_wallets_ignored(self, ledger, settlement, owned):
        result = settlement.settle_transfer(ledger.next_hash(), OWNER, addr(0xBEEF), owned[0])
        assert result.status == SettlementStatus.SETTLED
