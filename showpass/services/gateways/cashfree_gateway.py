import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

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
)
from showpass.utils.money import quantize, to_decimal
from showpass.utils.references import gateway_order_id

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.cashfree.com/pg"
PRODUCTION_URL = "https://api.cashfree.com/pg"
API_VERSION = "2023-08-01"

_ORDER_STATUS = {
    "PAID": PAYMENT_SUCCESS,
    "EXPIRED": PAYMENT_FAILED,
    "TERMINATED": PAYMENT_FAILED,
    "TERMINATION_REQUESTED": PAYMENT_FAILED,
}

_WEBHOOK_OUTCOME = {
    "PAYMENT_SUCCESS_WEBHOOK": PAYMENT_SUCCESS,
    "PAYMENT_FAILED_WEBHOOK": PAYMENT_FAILED,
    "PAYMENT_USER_DROPPED_WEBHOOK": PAYMENT_FAILED,
}


@dataclass(frozen=True)
class CashfreeConfig:
    app_id: str
    secret_key: str
    production: bool = False
    return_url: Optional[str] = None
    notify_url: Optional[str] = None
    timeout: float = 15.0

    @property
    def base_url(self) -> str:
        return PRODUCTION_URL if self.production else SANDBOX_URL


def cashfree_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    """base64(HMAC-SHA256(secret, timestamp + raw body))."""
    digest = hmac.new(secret.encode("utf-8"), timestamp.encode("utf-8") + raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class CashfreeGateway(PaymentGateway):
    name = "cashfree"
    signs_client_callbacks = False

    def __init__(self, config: CashfreeConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-client-id": self.config.app_id,
            "x-client-secret": self.config.secret_key,
            "x-api-version": API_VERSION,
        }

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self.client.request(method, path, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise self._error("network_error", f"{method} {path}: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}
        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            code = (body.get("code") if isinstance(body, dict) else None) or f"http_{response.status_code}"
            raise self._error(code, message or f"{method} {path} failed with {response.status_code}", body)
        return body

    def create_order(self, amount: Decimal, currency: str, receipt: str,
                     metadata: Optional[Dict[str, str]] = None,
                     customer: Optional[CustomerInfo] = None) -> GatewayOrderRef:
        if customer is None:
            raise self._error("missing_customer", "Cashfree orders require customer details")
        amount = quantize(amount)
        tags = {k: str(v) for k, v in (metadata or {}).items()}
        tags["receipt"] = receipt
        payload: Dict[str, Any] = {
            "order_id": gateway_order_id(self.name),
            "order_amount": float(amount),
            "order_currency": currency,
            "customer_details": {
                "customer_id": customer.customer_id,
                "customer_name": customer.name,
                "customer_email": customer.email,
                "customer_phone": customer.phone or "9999999999",
            },
            "order_tags": tags,
        }
        meta = {}
        if self.config.return_url:
            meta["return_url"] = self.config.return_url
        if self.config.notify_url:
            meta["notify_url"] = self.config.notify_url
        if meta:
            payload["order_meta"] = meta

        order = self._request("POST", "/orders", payload)
        if not order.get("payment_session_id"):
            raise self._error("malformed_response", "Order created without payment_session_id", order)

        logger.info("Cashfree order %s created", order.get("order_id"), extra={"order_id": order.get("order_id")})
        return GatewayOrderRef(
            gateway=self.name,
            order_id=order.get("order_id", payload["order_id"]),
            amount=quantize(to_decimal(str(order.get("order_amount", amount)))),
            currency=order.get("order_currency", currency),
            receipt=receipt,
            status=order.get("order_status", "ACTIVE"),
            client_payload={
                "paymentSessionId": order["payment_session_id"],
                "orderId": order.get("order_id", payload["order_id"]),
                "environment": "production" if self.config.production else "sandbox",
            },
            raw=order,
        )

    def verify_signature(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        # the checkout redirect carries no signature; status comes from fetch_payment
        return False

    def fetch_payment(self, payment_ref: str, order_ref: Optional[str] = None) -> PaymentRecord:
        order_id = order_ref or payment_ref
        order = self._request("GET", f"/orders/{order_id}")
        if "order_status" not in order:
            raise self._error("malformed_response", "Order response has no order_status", order)

        status = _ORDER_STATUS.get(order["order_status"], PAYMENT_PENDING)
        payment_id = payment_ref if payment_ref != order_id else None
        method = None
        if status == PAYMENT_SUCCESS:
            payments = self._request("GET", f"/orders/{order_id}/payments")
            paid = [p for p in payments or [] if p.get("payment_status") == "SUCCESS"]
            if paid:
                payment_id = str(paid[0].get("cf_payment_id"))
                method = paid[0].get("payment_group")
        return PaymentRecord(
            gateway=self.name,
            payment_id=payment_id,
            order_id=order.get("order_id", order_id),
            status=status,
            amount=quantize(to_decimal(str(order["order_amount"]))) if order.get("order_amount") is not None else None,
            currency=order.get("order_currency"),
            method=method,
            receipt=(order.get("order_tags") or {}).get("receipt"),
            raw=order,
        )

    def refund(self, payment_ref: str, amount: Optional[Decimal] = None, reason: Optional[str] = None,
               currency: str = "INR", order_ref: Optional[str] = None) -> RefundRecord:
        if not order_ref:
            raise self._error("missing_order", "Cashfree refunds are issued against an order id")
        if amount is None:
            order = self._request("GET", f"/orders/{order_ref}")
            amount = to_decimal(str(order["order_amount"]))
        refund_id = f"RF_{order_ref}"
        body = self._request(
            "POST",
            f"/orders/{order_ref}/refunds",
            {"refund_amount": float(quantize(amount)), "refund_id": refund_id, "refund_note": reason or "Refund"},
        )
        return RefundRecord(
            gateway=self.name,
            refund_id=body.get("refund_id", refund_id),
            payment_id=payment_ref,
            amount=quantize(to_decimal(str(body.get("refund_amount", amount)))),
            status=body.get("refund_status", "PENDING"),
            raw=body,
        )

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = header(headers, "x-webhook-signature")
        timestamp = header(headers, "x-webhook-timestamp")
        if not signature or not timestamp or not self.config.secret_key:
            return False
        expected = cashfree_signature(self.config.secret_key, timestamp, raw_body)
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_body: bytes, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        try:
            body = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise self._error("malformed_webhook", "Webhook body is not JSON") from exc

        event_type = body.get("type", "")
        data = body.get("data") or {}
        order = data.get("order") or {}
        pay = data.get("payment") or {}
        outcome = _WEBHOOK_OUTCOME.get(event_type, "ignored")

        payment = None
        if pay:
            amount = pay.get("payment_amount")
            payment = PaymentRecord(
                gateway=self.name,
                payment_id=str(pay["cf_payment_id"]) if pay.get("cf_payment_id") is not None else None,
                order_id=order.get("order_id"),
                status=PAYMENT_SUCCESS if pay.get("payment_status") == "SUCCESS" else (
                    PAYMENT_FAILED if pay.get("payment_status") in ("FAILED", "USER_DROPPED") else PAYMENT_PENDING
                ),
                amount=quantize(to_decimal(str(amount))) if amount is not None else None,
                currency=pay.get("payment_currency") or order.get("order_currency"),
                method=pay.get("payment_group"),
                receipt=(order.get("order_tags") or {}).get("receipt"),
                raw=pay,
            )
        event_id = None
        if payment is not None and payment.payment_id:
            event_id = f"{event_type}:{payment.payment_id}"
        return WebhookEvent(
            gateway=self.name,
            event_id=event_id,
            event_type=event_type,
            outcome=outcome,
            order_id=order.get("order_id"),
            payment=payment,
            raw=body,
        )
