import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import razorpay
from razorpay.errors import BadRequestError, ServerError
from razorpay.errors import GatewayError as RazorpaySDKGatewayError

from showpass.services.gateways.base import (
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_SUCCESS,
    CustomerInfo,
    GatewayOrderRef,
    PaymentGateway,
    PaymentRecord,
    RefundRecord,
    WebhookEvent,
    header,
    hmac_sha256_hex,
)
from showpass.utils.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = (
    "INR", "USD", "EUR", "GBP", "AUD", "CAD", "SGD", "AED", "SAR", "MYR",
    "JPY", "CHF", "HKD", "NZD", "SEK", "DKK", "NOK", "ZAR", "QAR", "KWD",
)

_COUNTRY_CURRENCY = {
    "IN": "INR", "US": "USD", "GB": "GBP", "AU": "AUD", "CA": "CAD", "SG": "SGD",
    "AE": "AED", "SA": "SAR", "MY": "MYR", "JP": "JPY", "CH": "CHF", "HK": "HKD",
    "NZ": "NZD", "SE": "SEK", "DK": "DKK", "NO": "NOK", "ZA": "ZAR", "QA": "QAR",
    "KW": "KWD", "DE": "EUR", "FR": "EUR", "IT": "EUR", "ES": "EUR", "NL": "EUR",
}


def currency_for_country(country_code: Optional[str]) -> str:
    return _COUNTRY_CURRENCY.get((country_code or "").upper(), "INR")


@dataclass(frozen=True)
class RazorpayConfig:
    key_id: str
    key_secret: str
    webhook_secret: str


class RazorpayGateway(PaymentGateway):
    name = "razorpay"

    def __init__(self, config: RazorpayConfig, client: Any = None):
        self.config = config
        self.client = client or razorpay.Client(auth=(config.key_id, config.key_secret))

    def _call(self, label: str, fn, *args, **kwargs) -> Dict[str, Any]:
        try:
            return fn(*args, **kwargs)
        except BadRequestError as exc:
            raise self._error("bad_request", f"{label}: {exc}") from exc
        except (ServerError, RazorpaySDKGatewayError) as exc:
            raise self._error("provider_unavailable", f"{label}: {exc}") from exc
        except Exception as exc:
            raise self._error("network_error", f"{label}: {exc}") from exc

    def create_order(self, amount: Decimal, currency: str, receipt: str,
                     metadata: Optional[Dict[str, str]] = None,
                     customer: Optional[CustomerInfo] = None) -> GatewayOrderRef:
        if currency not in SUPPORTED_CURRENCIES:
            raise self._error("unsupported_currency", f"Currency {currency} is not supported")
        notes = {k: str(v) for k, v in (metadata or {}).items()}
        if customer is not None:
            notes.setdefault("customer_email", customer.email)
        order = self._call(
            "order.create",
            self.client.order.create,
            {
                "amount": to_minor_units(amount, currency),
                "currency": currency,
                "receipt": receipt[:40],
                "payment_capture": 1,
                "notes": notes,
            },
        )
        if not order.get("id"):
            raise self._error("malformed_response", "order.create returned no order id", order)

        logger.info("Razorpay order %s created for %s", order["id"], receipt, extra={"order_id": order["id"]})
        return GatewayOrderRef(
            gateway=self.name,
            order_id=order["id"],
            amount=from_minor_units(order.get("amount", to_minor_units(amount, currency)), currency),
            currency=order.get("currency", currency),
            receipt=order.get("receipt", receipt),
            status=order.get("status", "created"),
            client_payload={"keyId": self.config.key_id, "orderId": order["id"]},
            raw=order,
        )

    def verify_signature(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        if not (order_ref and payment_ref and signature and self.config.key_secret):
            return False
        expected = hmac_sha256_hex(self.config.key_secret, f"{order_ref}|{payment_ref}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    def _payment_record(self, entity: Dict[str, Any]) -> PaymentRecord:
        status = entity.get("status")
        if status == "captured":
            normalized = PAYMENT_SUCCESS
        elif status == "failed":
            normalized = PAYMENT_FAILED
        else:
            normalized = PAYMENT_PENDING
        currency = entity.get("currency") or "INR"
        amount = entity.get("amount")
        return PaymentRecord(
            gateway=self.name,
            payment_id=entity.get("id"),
            order_id=entity.get("order_id"),
            status=normalized,
            amount=from_minor_units(amount, currency) if amount is not None else None,
            currency=currency,
            method=entity.get("method"),
            raw=entity,
        )

    def fetch_payment(self, payment_ref: str, order_ref: Optional[str] = None) -> PaymentRecord:
        entity = self._call("payment.fetch", self.client.payment.fetch, payment_ref)
        if not isinstance(entity, dict) or "status" not in entity:
            raise self._error("malformed_response", "payment.fetch returned no status", entity)
        return self._payment_record(entity)

    def refund(self, payment_ref: str, amount: Optional[Decimal] = None, reason: Optional[str] = None,
               currency: str = "INR", order_ref: Optional[str] = None) -> RefundRecord:
        data: Dict[str, Any] = {"notes": {"reason": reason or "Refund"}}
        if amount is not None:
            data["amount"] = to_minor_units(amount, currency)
        refund = self._call("payment.refund", self.client.payment.refund, payment_ref, data)
        if not refund.get("id"):
            raise self._error("malformed_response", "payment.refund returned no refund id", refund)
        refunded = refund.get("amount")
        return RefundRecord(
            gateway=self.name,
            refund_id=refund["id"],
            payment_id=refund.get("payment_id", payment_ref),
            amount=from_minor_units(refunded, currency) if refunded is not None else None,
            status=refund.get("status", "processed"),
            raw=refund,
        )

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = header(headers, "x-razorpay-signature")
        if not signature or not self.config.webhook_secret:
            return False
        expected = hmac_sha256_hex(self.config.webhook_secret, raw_body)
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_body: bytes, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        try:
            body = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise self._error("malformed_webhook", "Webhook body is not JSON") from exc

        event = body.get("event", "")
        entity = (body.get("payload", {}).get("payment") or {}).get("entity") or {}
        payment = self._payment_record(entity) if entity else None
        order_id = entity.get("order_id")
        if not order_id:
            order_id = ((body.get("payload", {}).get("order") or {}).get("entity") or {}).get("id")

        if event in ("payment.captured", "order.paid"):
            outcome = PAYMENT_SUCCESS
        elif event == "payment.failed":
            outcome = PAYMENT_FAILED
        else:
            outcome = "ignored"

        event_id = header(headers, "x-razorpay-event-id") if headers else None
        if not event_id and payment is not None:
            event_id = f"{event}:{payment.payment_id}"
        return WebhookEvent(
            gateway=self.name,
            event_id=event_id,
            event_type=event,
            outcome=outcome,
            order_id=order_id,
            payment=payment,
            raw=body,
        )
