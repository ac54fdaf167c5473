import json
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from showpass.core.errors import BusinessRuleError, PayoutError
from showpass.services import wallet_service
from showpass.services.gateways.base import hmac_sha256_hex
from showpass.services.gateways.cashfree_gateway import cashfree_signature
from showpass.services.payouts.base import (
    BankDetails,
    ContactInfo,
    PayeeResult,
    PayoutStatus,
    TransferResult,
)
from showpass.services.payouts.cashfree_payouts import TEST_URL, CashfreePayoutConfig, CashfreePayouts
from showpass.services.payouts.orchestrator import PayoutOrchestrator
from showpass.services.payouts.razorpayx import BASE_URL, RazorpayXConfig, RazorpayXPayouts
from tests.factories import NOW, make_user, make_wallet

BANK = BankDetails(account_holder_name="Vendor One", account_number="123456789012", ifsc="HDFC0001234")
CONTACT = ContactInfo(name="Vendor One", email="vendor@example.com", phone="9999999999")


def _razorpayx(handler):
    config = RazorpayXConfig(key_id="rzp_test", key_secret="secret", account_number="2323230000",
                             webhook_secret="whsec")
    client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return RazorpayXPayouts(config, client=client)


def _cashfree(handler):
    config = CashfreePayoutConfig(client_id="cf_id", client_secret="cf_secret")
    client = httpx.Client(base_url=TEST_URL, transport=httpx.MockTransport(handler))
    return CashfreePayouts(config, client=client)


class TestRazorpayXPayouts:
    def test_new_payee(self):
        def handler(request):
            if request.url.path.endswith("/contacts"):
                return httpx.Response(201, json={"id": "cont_1"})
            body = json.loads(request.content)
            assert body["contact_id"] == "cont_1"
            assert body["bank_account"]["ifsc"] == "HDFC0001234"
            return httpx.Response(201, json={"id": "fa_1"})

        result = _razorpayx(handler).ensure_payee("VENDOR_7", BANK, CONTACT)

        assert result.kind == PayeeResult.CREATED
        assert result.payee_id == "fa_1"

    def test_existing_contact_is_looked_up(self):
        def handler(request):
            path = request.url.path
            if path.endswith("/contacts") and request.method == "POST":
                return httpx.Response(409, json={"error": {"description": "Contact already exists"}})
            if path.endswith("/contacts"):
                assert request.url.params["reference_id"] == "VENDOR_7"
                return httpx.Response(200, json={"items": [{"id": "cont_old"}]})
            return httpx.Response(200, json={"id": "fa_old"})

        result = _razorpayx(handler).ensure_payee("VENDOR_7", BANK, CONTACT)

        assert result.kind == PayeeResult.ALREADY_EXISTS
        assert result.payee_id == "fa_old"

    def test_fund_account_rejected(self):
        def handler(request):
            if request.url.path.endswith("/contacts"):
                return httpx.Response(201, json={"id": "cont_1"})
            return httpx.Response(400, json={"error": {"description": "Invalid IFSC"}})

        result = _razorpayx(handler).ensure_payee("VENDOR_7", BANK, CONTACT)

        assert not result.ok
        assert result.reason == "Invalid IFSC"

    def test_transfer_in_paise_with_idempotency_key(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["key"] = request.headers["X-Payout-Idempotency"]
            return httpx.Response(200, json={"id": "pout_1", "status": "processing"})

        result = _razorpayx(handler).request_transfer("WD_3", "fa_1", Decimal("300.00"))

        assert seen["body"]["amount"] == 30000
        assert seen["body"]["reference_id"] == "WD_3"
        assert seen["key"] == "WD_3"
        assert result.status == PayoutStatus.PENDING
        assert result.provider_reference == "pout_1"

    def test_transfer_rejected(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"description": "Insufficient balance"}})

        with pytest.raises(PayoutError) as exc:
            _razorpayx(handler).request_transfer("WD_3", "fa_1", Decimal("300.00"))
        assert exc.value.code == "transfer_rejected"
        assert exc.value.step == "transfer"

    def test_status_lookup(self):
        def handler(request):
            return httpx.Response(200, json={"items": [
                {"id": "pout_1", "status": "reversed", "status_details": {"description": "Account closed"}},
            ]})

        result = _razorpayx(handler).get_transfer_status("WD_3")

        assert result.status == PayoutStatus.FAILED
        assert result.reason == "Account closed"

    def test_status_unknown_is_pending(self):
        result = _razorpayx(lambda request: httpx.Response(200, json={"items": []})).get_transfer_status("WD_3")
        assert result.status == PayoutStatus.PENDING

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(PayoutError) as exc:
            _razorpayx(handler).request_transfer("WD_3", "fa_1", Decimal("300.00"))
        assert exc.value.code == "network_error"

    def test_webhook(self):
        provider = _razorpayx(lambda request: httpx.Response(200, json={}))
        body = json.dumps({
            "event": "payout.reversed",
            "payload": {"payout": {"entity": {"id": "pout_1", "reference_id": "WD_3",
                                              "failure_reason": "Account closed"}}},
        }).encode()
        headers = {"X-Razorpay-Signature": hmac_sha256_hex("whsec", body)}

        assert provider.verify_webhook_signature(body, headers)
        assert not provider.verify_webhook_signature(body, {"X-Razorpay-Signature": "bad"})
        event = provider.parse_webhook(body)
        assert event.event == "TRANSFER_REVERSED"
        assert event.transfer_id == "WD_3"
        assert event.reason == "Account closed"


class TestCashfreePayouts:
    def test_payee_created_and_existing(self):
        replies = iter([
            {"status": "SUCCESS", "subCode": "200"},
            {"status": "ERROR", "subCode": "409", "message": "Beneficiary Id already exists"},
        ])
        provider = _cashfree(lambda request: httpx.Response(200, json=next(replies)))

        assert provider.ensure_payee("VENDOR_7", BANK, CONTACT).kind == PayeeResult.CREATED
        again = provider.ensure_payee("VENDOR_7", BANK, CONTACT)
        assert again.kind == PayeeResult.ALREADY_EXISTS
        assert again.payee_id == "VENDOR_7"

    def test_transfer_accepted(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["amount"] == "300.00"
            assert body["transferId"] == "WD_3"
            return httpx.Response(200, json={"status": "PENDING", "data": {"referenceId": "cf_ref"}})

        result = _cashfree(handler).request_transfer("WD_3", "VENDOR_7", Decimal("300"))

        assert result.status == PayoutStatus.PENDING
        assert result.provider_reference == "cf_ref"

    def test_transfer_rejected(self):
        provider = _cashfree(lambda request: httpx.Response(200, json={"status": "ERROR", "message": "Low balance"}))
        with pytest.raises(PayoutError, match="Low balance"):
            provider.request_transfer("WD_3", "VENDOR_7", Decimal("300"))

    def test_provider_outage(self):
        provider = _cashfree(lambda request: httpx.Response(503, json={"message": "maintenance"}))
        with pytest.raises(PayoutError) as exc:
            provider.get_transfer_status("WD_3")
        assert exc.value.code == "provider_unavailable"

    def test_status(self):
        provider = _cashfree(lambda request: httpx.Response(200, json={
            "status": "SUCCESS",
            "data": {"transfer": {"status": "SUCCESS", "utr": "UTR123"}},
        }))
        result = provider.get_transfer_status("WD_3")
        assert result.status == PayoutStatus.SUCCESS
        assert result.provider_reference == "UTR123"

    def test_webhook(self):
        provider = _cashfree(lambda request: httpx.Response(200, json={}))
        body = json.dumps({"event": "TRANSFER_FAILED", "data": {"transferId": "WD_3", "reason": "Invalid account"}})
        body = body.encode()
        headers = {"x-webhook-timestamp": "1700000000",
                   "x-webhook-signature": cashfree_signature("cf_secret", "1700000000", body)}

        assert provider.verify_webhook_signature(body, headers)
        assert not provider.verify_webhook_signature(body, {"x-webhook-signature": headers["x-webhook-signature"]})
        event = provider.parse_webhook(body)
        assert event.event == "TRANSFER_FAILED"
        assert event.reason == "Invalid account"

    def test_malformed_webhook(self):
        provider = _cashfree(lambda request: httpx.Response(200, json={}))
        with pytest.raises(PayoutError):
            provider.parse_webhook(b"not json")


class TestPayoutOrchestrator:
    @pytest.fixture
    def withdrawal(self, db):
        vendor = make_user(db, role="vendor", name="Vendor One", email="vendor@example.com")
        make_wallet(db, vendor.id, available="1000.00")
        return wallet_service.request_withdrawal(db, vendor.id, Decimal("300"), now=NOW)

    @staticmethod
    def _provider(status=PayoutStatus.PENDING):
        provider = MagicMock()
        provider.name = "razorpayx"
        provider.ensure_payee.return_value = PayeeResult.created("fa_1")
        provider.request_transfer.side_effect = lambda transfer_id, payee_id, amount, remarks: TransferResult(
            transfer_id=transfer_id, status=status, provider_reference="pout_1", raw={"id": "pout_1"}
        )
        return provider

    def test_process_sends_transfer(self, db, withdrawal):
        provider = self._provider()

        result = PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

        assert result.status == "processing"
        assert result.payee_id == "fa_1"
        assert result.transfer_id == f"WD_{withdrawal.id}"
        assert result.provider_reference == "pout_1"
        provider.ensure_payee.assert_called_once()
        assert provider.ensure_payee.call_args.args[0] == f"VENDOR_{withdrawal.vendor_id}"

    def test_immediate_success(self, db, withdrawal):
        result = PayoutOrchestrator(db, self._provider(PayoutStatus.SUCCESS)).process_withdrawal(withdrawal.id, now=NOW)
        assert result.status == "success"

    def test_payee_failure_fails_and_refunds(self, db, withdrawal):
        provider = self._provider()
        provider.ensure_payee.return_value = PayeeResult.failed("Invalid IFSC")

        with pytest.raises(PayoutError):
            PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

        db.expire_all()
        assert withdrawal.status == "failed"
        assert withdrawal.failure_reason == "Invalid IFSC"
        assert wallet_service.get_wallet(db, withdrawal.vendor_id).available_balance == Decimal("1000.00")
        provider.request_transfer.assert_not_called()

    def test_transfer_error_fails_and_refunds(self, db, withdrawal):
        provider = self._provider()
        provider.request_transfer.side_effect = PayoutError(code="transfer_rejected", message="Low balance",
                                                            step="transfer")

        with pytest.raises(PayoutError):
            PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

        db.expire_all()
        assert withdrawal.status == "failed"
        assert wallet_service.get_wallet(db, withdrawal.vendor_id).available_balance == Decimal("1000.00")

    @pytest.mark.parametrize("code", ["network_error", "provider_unavailable", "malformed_response"])
    def test_uncertain_transfer_error_stays_processing(self, db, withdrawal, code):
        provider = self._provider()
        provider.request_transfer.side_effect = PayoutError(code=code, message="Read timed out", step="transfer")

        result = PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

        assert result.status == "processing"
        assert result.transfer_id == f"WD_{withdrawal.id}"
        assert result.provider_response["code"] == code
        db.expire_all()
        assert wallet_service.get_wallet(db, withdrawal.vendor_id).available_balance == Decimal("700.00")

    def test_success_webhook_settles_uncertain_transfer(self, db, withdrawal):
        provider = self._provider()
        provider.request_transfer.side_effect = PayoutError(code="network_error", message="Read timed out",
                                                            step="transfer")
        PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

        result = wallet_service.apply_payout_event(db, f"WD_{withdrawal.id}", "TRANSFER_SUCCESS",
                                                   provider_reference="pout_1")

        db.expire_all()
        wallet = wallet_service.get_wallet(db, withdrawal.vendor_id)
        assert result.status == "success"
        assert wallet.available_balance == Decimal("700.00")
        assert wallet.total_withdrawn == Decimal("300.00")

    def test_only_pending_withdrawals_are_processed(self, db, withdrawal):
        provider = self._provider()
        PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)
        with pytest.raises(BusinessRuleError):
            PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

    def test_retry_reuses_stored_payee(self, db, withdrawal):
        withdrawal.payee_id = "fa_saved"
        db.commit()
        provider = self._provider()

        PayoutOrchestrator(db, provider).process_withdrawal(withdrawal.id, now=NOW)

        provider.ensure_payee.assert_not_called()
        assert provider.request_transfer.call_args.args[1] == "fa_saved"

    def test_sync_applies_provider_status(self, db, withdrawal):
        provider = self._provider()
        orchestrator = PayoutOrchestrator(db, provider)
        orchestrator.process_withdrawal(withdrawal.id, now=NOW)
        provider.get_transfer_status.return_value = TransferResult(
            transfer_id=f"WD_{withdrawal.id}", status=PayoutStatus.FAILED, reason="Account closed"
        )

        result = orchestrator.sync_withdrawal(withdrawal.id, now=NOW)

        assert result.status == "failed"
        assert result.failure_reason == "Account closed"

    def test_sync_before_processing(self, db, withdrawal):
        with pytest.raises(BusinessRuleError):
            PayoutOrchestrator(db, self._provider()).sync_withdrawal(withdrawal.id)
