import base64
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock
from urllib.parse import urlencode

import httpx
import pytest
from razorpay.errors import BadRequestError

from showpass.core.errors import GatewayError
from showpass.services.gateways.base import PAYMENT_FAILED, PAYMENT_PENDING, PAYMENT_SUCCESS, CustomerInfo
from showpass.services.gateways.cashfree_gateway import CashfreeConfig, CashfreeGateway, cashfree_signature
from showpass.services.gateways.ccavenue_gateway import CCAvenueConfig, CCAvenueGateway, decrypt, encrypt
from showpass.services.gateways.razorpay_gateway import RazorpayConfig, RazorpayGateway

CUSTOMER = CustomerInfo(customer_id="user_1", name="Asha", email="asha@example.com", phone="9876543210")


# ==========================
# RAZORPAY
# ==========================
class TestRazorpay:
    def _gateway(self):
        client = MagicMock()
        return RazorpayGateway(RazorpayConfig("rzp_test", "secret", "whsec"), client=client), client

    def test_create_order_in_paise(self):
        gateway, client = self._gateway()
        client.order.create.return_value = {"id": "order_A", "amount": 49950, "currency": "INR",
                                            "receipt": "BK1", "status": "created"}

        order = gateway.create_order(Decimal("499.50"), "INR", "BK1", {"type": "booking"}, CUSTOMER)

        sent = client.order.create.call_args[0][0]
        assert sent["amount"] == 49950
        assert sent["notes"]["type"] == "booking"
        assert order.amount == Decimal("499.50")
        assert order.client_payload == {"keyId": "rzp_test", "orderId": "order_A"}

    def test_unsupported_currency(self):
        gateway, _ = self._gateway()
        with pytest.raises(GatewayError) as exc:
            gateway.create_order(Decimal("1"), "XYZ", "BK1")
        assert exc.value.code == "unsupported_currency"

    def test_sdk_errors_are_normalized(self):
        gateway, client = self._gateway()
        client.order.create.side_effect = BadRequestError("amount too small")
        with pytest.raises(GatewayError) as exc:
            gateway.create_order(Decimal("1"), "INR", "BK1")
        assert exc.value.code == "bad_request"
        assert exc.value.gateway == "razorpay"

    def test_signature(self):
        gateway, _ = self._gateway()
        good = hmac.new(b"secret", b"order_A|pay_B", hashlib.sha256).hexdigest()
        assert gateway.verify_signature("order_A", "pay_B", good)
        assert not gateway.verify_signature("order_A", "pay_C", good)
        assert not gateway.verify_signature("order_A", "pay_B", "")

    def test_fetch_payment_statuses(self):
        gateway, client = self._gateway()
        client.payment.fetch.return_value = {"id": "pay_B", "order_id": "order_A", "status": "captured",
                                             "amount": 10000, "currency": "INR", "method": "card"}
        record = gateway.fetch_payment("pay_B")
        assert record.status == PAYMENT_SUCCESS
        assert record.amount == Decimal("100.00")

        client.payment.fetch.return_value = {"id": "pay_B", "status": "authorized", "amount": 10000}
        assert gateway.fetch_payment("pay_B").status == PAYMENT_PENDING

    def test_webhook(self):
        gateway, _ = self._gateway()
        body = json.dumps({
            "event": "payment.failed",
            "payload": {"payment": {"entity": {"id": "pay_B", "order_id": "order_A", "status": "failed",
                                               "amount": 500, "currency": "INR"}}},
        }).encode()
        sig = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()

        assert gateway.verify_webhook_signature(body, {"X-Razorpay-Signature": sig})
        assert not gateway.verify_webhook_signature(body + b" ", {"X-Razorpay-Signature": sig})
        event = gateway.parse_webhook(body, {"x-razorpay-event-id": "evt_1"})
        assert event.outcome == PAYMENT_FAILED
        assert event.order_id == "order_A"
        assert event.event_id == "evt_1"


# ==========================
# CASHFREE
# ==========================
class TestCashfree:
    def _gateway(self, handler):
        config = CashfreeConfig(app_id="app", secret_key="cfsecret")
        client = httpx.Client(base_url=config.base_url, transport=httpx.MockTransport(handler))
        return CashfreeGateway(config, client=client)

    def test_create_order(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "order_id": seen["body"]["order_id"], "order_amount": 250.0, "order_currency": "INR",
                "payment_session_id": "session_1", "order_status": "ACTIVE",
            })

        order = self._gateway(handler).create_order(Decimal("250.00"), "INR", "BK9", {"type": "booking"}, CUSTOMER)
        assert seen["headers"]["x-client-id"] == "app"
        assert seen["body"]["order_tags"]["receipt"] == "BK9"
        assert order.client_payload["paymentSessionId"] == "session_1"
        assert order.amount == Decimal("250.00")

    def test_create_order_needs_customer(self):
        gateway = self._gateway(lambda request: httpx.Response(500))
        with pytest.raises(GatewayError):
            gateway.create_order(Decimal("1"), "INR", "BK9")

    def test_fetch_paid_order(self):
        def handler(request):
            if request.url.path.endswith("/payments"):
                return httpx.Response(200, json=[
                    {"cf_payment_id": 111, "payment_status": "FAILED"},
                    {"cf_payment_id": 222, "payment_status": "SUCCESS", "payment_group": "upi"},
                ])
            return httpx.Response(200, json={"order_id": "ORD1", "order_status": "PAID",
                                             "order_amount": 250.0, "order_currency": "INR"})

        record = self._gateway(handler).fetch_payment("ORD1", "ORD1")
        assert record.status == PAYMENT_SUCCESS
        assert record.payment_id == "222"
        assert record.method == "upi"
        assert record.amount == Decimal("250.00")

    def test_http_error(self):
        gateway = self._gateway(lambda request: httpx.Response(
            400, json={"code": "order_id_invalid", "message": "bad order"}))
        with pytest.raises(GatewayError) as exc:
            gateway.fetch_payment("ORD1")
        assert exc.value.code == "order_id_invalid"

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(GatewayError) as exc:
            self._gateway(handler).fetch_payment("ORD1")
        assert exc.value.code == "network_error"

    def test_webhook(self):
        gateway = self._gateway(lambda request: httpx.Response(500))
        body = json.dumps({
            "type": "PAYMENT_SUCCESS_WEBHOOK",
            "data": {"order": {"order_id": "ORD1"},
                     "payment": {"cf_payment_id": 222, "payment_status": "SUCCESS", "payment_amount": 250.0,
                                 "payment_currency": "INR"}},
        }).encode()
        digest = hmac.new(b"cfsecret", b"1700000000" + body, hashlib.sha256).digest()
        headers = {"x-webhook-signature": base64.b64encode(digest).decode(), "x-webhook-timestamp": "1700000000"}

        assert cashfree_signature("cfsecret", "1700000000", body) == headers["x-webhook-signature"]
        assert gateway.verify_webhook_signature(body, headers)
        event = gateway.parse_webhook(body, headers)
        assert event.outcome == PAYMENT_SUCCESS
        assert event.payment.amount == Decimal("250.00")
        assert event.event_id == "PAYMENT_SUCCESS_WEBHOOK:222"

    def test_client_callbacks_are_unsigned(self):
        gateway = self._gateway(lambda request: httpx.Response(500))
        assert gateway.signs_client_callbacks is False
        assert gateway.verify_signature("ORD1", "x", "y") is False


# ==========================
# CCAVENUE
# ==========================
WORKING_KEY = "0123456789ABCDEF0123456789ABCDEF"


class TestCCAvenue:
    def _gateway(self):
        return CCAvenueGateway(CCAvenueConfig(merchant_id="m1", access_code="AC1", working_key=WORKING_KEY))

    def _enc_resp(self, **fields):
        data = {"order_id": "CC1", "tracking_id": "trk_1", "order_status": "Success", "amount": "250.00",
                "currency": "INR", "payment_mode": "Net Banking"}
        data.update(fields)
        return encrypt(urlencode(data), WORKING_KEY)

    def test_cipher_round_trip(self):
        assert decrypt(encrypt("order_id=CC1&amount=1.00", WORKING_KEY), WORKING_KEY) == "order_id=CC1&amount=1.00"

    def test_corrupted_ciphertext(self):
        cipher = encrypt("order_id=CC1", WORKING_KEY)
        with pytest.raises(ValueError):
            decrypt(cipher[:-2], WORKING_KEY)
        with pytest.raises(ValueError):
            decrypt("zz" + cipher[2:], WORKING_KEY)
        assert self._gateway().verify_response_integrity("abc") is False

    def test_order_request_carries_params(self):
        order = self._gateway().create_order(Decimal("250"), "INR", "BK1", {"type": "booking", "itemId": "7"},
                                             CUSTOMER)
        plain = decrypt(order.client_payload["encRequest"], WORKING_KEY)
        assert "amount=250.00" in plain
        assert "merchant_param3=booking" in plain
        assert order.client_payload["accessCode"] == "AC1"

    def test_verify_requires_matching_order(self):
        gateway = self._gateway()
        enc = self._enc_resp()
        assert gateway.verify_signature("CC1", "trk_1", enc)
        assert not gateway.verify_signature("CC2", "trk_1", enc)

    def test_confirm_payment_reads_callback(self):
        record = self._gateway().confirm_payment("CC1", "trk_1", self._enc_resp(order_status="Aborted"))
        assert record.status == PAYMENT_FAILED
        assert record.amount == Decimal("250.00")

    def test_webhook_form_body(self):
        gateway = self._gateway()
        body = urlencode({"encResp": self._enc_resp(), "orderNo": "CC1"}).encode()
        assert gateway.verify_webhook_signature(body, {})
        event = gateway.parse_webhook(body)
        assert event.outcome == PAYMENT_SUCCESS
        assert event.payment.payment_id == "trk_1"
        assert not gateway.verify_webhook_signature(b"encResp=deadbeef", {})

    def test_refunds_unsupported(self):
        with pytest.raises(GatewayError):
            self._gateway().refund("trk_1")
