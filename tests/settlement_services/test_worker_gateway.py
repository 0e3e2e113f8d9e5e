"""
Tests for WorkerGateway and the SettlementApplication wiring around it:
raw worker payloads in, settled ledger state and queued notices out.
"""

import pytest

from settlement_kernel.domain.dtos import NoticeTemplate, SettlementStatus
from settlement_kernel.exceptions import MalformedWorkerEventError, UnknownWorkerEventError
from settlement_kernel.models.transaction import TransactionStatus
from settlement_services.application import SettlementApplication
from settlement_services.notifications import LoggingNotificationDispatcher
from settlement_services.worker_gateway import WorkerGateway

from tests.conftest import SYSTEM_ADDRESS, ZERO_ADDRESS, addr

BUYER = addr(1201)


def mint_payload(transaction_id, h, token_ids):
    return {
        "event_type": "MintNFT",
        "hash": h,
        "data": {"transaction_id": str(transaction_id), "token_ids": token_ids},
    }


@pytest.fixture
def purchase(ledger):
    ledger.system()
    ledger.participant(BUYER, referrer=SYSTEM_ADDRESS)
    item_id = ledger.inventory(supply=10)
    event_id = ledger.live_event([(item_id, 5, "10")])
    transaction_id = ledger.buy(BUYER, event_id, item_id, 1)
    return transaction_id, ledger.broadcast(transaction_id)


class TestWorkerGateway:

    def test_settles_mint(self, ledger, settlement, purchase):
        transaction_id, h = purchase
        gateway = WorkerGateway(settlement)

        result = gateway.receive_data(mint_payload(transaction_id, h, [7]))

        assert result.status == SettlementStatus.SETTLED
        assert result.token_ids == ("7",)
        assert ledger.get_transaction(transaction_id).status == TransactionStatus.SUCCESS.value

    def test_logs_carry_callback_context(self, settlement, purchase, captured_logs):
        transaction_id, h = purchase
        WorkerGateway(settlement).receive_data(mint_payload(transaction_id, h, [7]), correlation_id="cb-1")

        records = captured_logs()
        settled = [r for r in records if r["message"] == "worker_event_settled"][0]
        assert settled["correlation_id"] == "cb-1"
        assert settled["event_type"] == "MintNFT"
        assert settled["status"] == "settled"
        completed = [r for r in records if r["message"] == "settlement_completed"][0]
        assert completed["correlation_id"] == "cb-1"
        assert completed["transaction_id"] == str(transaction_id)

    def test_redelivery_is_harmless(self, settlement, purchase):
        transaction_id, h = purchase
        gateway = WorkerGateway(settlement)
        gateway.receive_data(mint_payload(transaction_id, h, [7]))
        replay = gateway.receive_data(mint_payload(transaction_id, h, [7]))
        assert replay.status == SettlementStatus.ALREADY_COMPLETED

    def test_mint_transfer_skipped(self, ledger, settlement):
        result = WorkerGateway(settlement).receive_data({
            "event_type": "Transfer",
            "hash": ledger.next_hash(),
            "data": {"from": ZERO_ADDRESS, "to": BUYER, "token_id": 7},
        })
        assert result.status == SettlementStatus.SKIPPED

    def test_unknown_event_rejected(self, settlement, ledger, captured_logs):
        with pytest.raises(UnknownWorkerEventError):
            WorkerGateway(settlement).receive_data(
                {"event_type": "Approval", "hash": ledger.next_hash(), "data": {}},
                correlation_id="cb-2",
            )
        rejected = [r for r in captured_logs() if r["message"] == "worker_event_rejected"]
        assert rejected[0]["error_code"] == "UNKNOWN_WORKER_EVENT"
        assert rejected[0]["correlation_id"] == "cb-2"

    def test_malformed_event_rejected(self, settlement, ledger):
        with pytest.raises(MalformedWorkerEventError):
            WorkerGateway(settlement).receive_data(
                {"event_type": "MintNFT", "hash": ledger.next_hash(), "data": {"token_ids": [1]}}
            )


class TestApplication:

    @pytest.fixture
    def delivered(self):
        return []

    @pytest.fixture
    def app(self, settings, session_factory, deterministic_clock, delivered):
        class NoChain:
            def get_transaction_receipt(self, tx_hash):
                return None

        return SettlementApplication(
            settings,
            session_factory=session_factory,
            chain_client=NoChain(),
            delivery=lambda template_id, payload: delivered.append((template_id, payload)),
            clock=deterministic_clock,
        )

    def test_notices_delivered_through_queue(self, app, delivered, purchase):
        transaction_id, h = purchase

        app.gateway.receive_data(mint_payload(transaction_id, h, [3]))
        assert delivered == []
        app.notification_queue.run_pending()

        templates = [template for template, _ in delivered]
        assert NoticeTemplate.BUY_SUCCESS.value in templates
        assert NoticeTemplate.COMMISSION_RECEIVED.value in templates

    def test_undeliverable_notice_logged(
        self, settings, session_factory, deterministic_clock, purchase, captured_logs,
    ):
        def refuse(template_id, payload):
            raise ConnectionError("smtp down")

        app = SettlementApplication(
            settings,
            session_factory=session_factory,
            chain_client=object(),
            delivery=refuse,
            clock=deterministic_clock,
        )
        transaction_id, h = purchase
        app.gateway.receive_data(mint_payload(transaction_id, h, [3]))

        for _ in range(3):
            app.notification_queue.run_pending()
            deterministic_clock.advance(5)

        undeliverable = [r for r in captured_logs() if r["message"] == "notification_undeliverable"]
        assert {r["template_id"] for r in undeliverable} == {
            NoticeTemplate.BUY_SUCCESS.value,
            NoticeTemplate.COMMISSION_RECEIVED.value,
        }
        assert all(r["attempts"] == 3 for r in undeliverable)
        assert len(app.notification_queue) == 0

    def test_services_share_configuration(self, app, ledger):
        with ledger.session_factory() as session:
            assert app.transaction_service(session) is not None
            assert app.referral_engine(session).threshold == app.config.referral.bda_threshold

    def test_start_and_stop(self, app, captured_logs):
        with app:
            assert app.poller.is_running
            assert app.notification_queue.is_running
        assert not app.poller.is_running
        messages = [r["message"] for r in captured_logs()]
        assert "settlement_application_started" in messages
        assert "settlement_application_stopped" in messages

    def test_from_config_needs_database(self, tmp_path):
        path = tmp_path / "settlement.yaml"
        path.write_text("config_id: no-db\n")
        with pytest.raises(RuntimeError):
            SettlementApplication.from_config(path)


class TestLoggingDispatcher:

    def test_logs_notice(self, captured_logs):
        LoggingNotificationDispatcher().notify("buy_success", {"to_address": BUYER})
        sent = [r for r in captured_logs() if r["message"] == "notification_sent"]
        assert sent[0]["to_address"] == BUYER
