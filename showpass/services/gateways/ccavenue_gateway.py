"""
CCAvenue non-seamless checkout.

The browser is redirected to CCAvenue with an AES-128-CBC encrypted request;
CCAvenue posts back an encrypted ``encResp``. There is no signature: a
response counts as authentic when it decrypts with our working key. That
proves origin only, so callers must still compare order id and amount
against their own records.
"""
import binascii
import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional
from urllib.parse import parse_qs, parse_qsl, urlencode

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

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
)
from showpass.utils.money import quantize
from showpass.utils.references import gateway_order_id

logger = logging.getLogger(__name__)

TEST_URL = "https://test.ccavenue.com/transaction/transaction.do?command=initiateTransaction"
PRODUCTION_URL = "https://secure.ccavenue.com/transaction/transaction.do?command=initiateTransaction"

_IV = bytes(range(16))

# merchant_param slots carried through the round trip
_PARAM_SLOTS = ("userId", "itemId", "type", "purchaseType", "receipt")


@dataclass(frozen=True)
class CCAvenueConfig:
    merchant_id: str
    access_code: str
    working_key: str
    production: bool = False
    redirect_url: str = ""
    cancel_url: str = ""

    @property
    def checkout_url(self) -> str:
        return PRODUCTION_URL if self.production else TEST_URL


def _key(working_key: str) -> bytes:
    return hashlib.md5(working_key.encode("utf-8")).digest()


def encrypt(plain_text: str, working_key: str) -> str:
    padder = padding.PKCS7(128).padder()
    data = padder.update(plain_text.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_key(working_key)), modes.CBC(_IV)).encryptor()
    return (encryptor.update(data) + encryptor.finalize()).hex()


def decrypt(cipher_hex: str, working_key: str) -> str:
    """Raises ValueError for anything that is not a valid ciphertext under ``working_key``."""
    try:
        data = binascii.unhexlify(cipher_hex)
    except (binascii.Error, TypeError) as exc:
        raise ValueError("ciphertext is not hex") from exc
    if not data or len(data) % 16:
        raise ValueError("ciphertext length is not a multiple of the block size")
    decryptor = Cipher(algorithms.AES(_key(working_key)), modes.CBC(_IV)).decryptor()
    padded = decryptor.update(data) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    plain = unpadder.update(padded) + unpadder.finalize()
    return plain.decode("utf-8")


class CCAvenueGateway(PaymentGateway):
    name = "ccavenue"

    def __init__(self, config: CCAvenueConfig):
        self.config = config

    def create_order(self, amount: Decimal, currency: str, receipt: str,
                     metadata: Optional[Dict[str, str]] = None,
                     customer: Optional[CustomerInfo] = None) -> GatewayOrderRef:
        if not (self.config.merchant_id and self.config.access_code and self.config.working_key):
            raise self._error("not_configured", "CCAvenue credentials are not configured")
        metadata = dict(metadata or {})
        metadata["receipt"] = receipt
        order_id = gateway_order_id(self.name)
        amount = quantize(amount)

        params = {
            "merchant_id": self.config.merchant_id,
            "order_id": order_id,
            "currency": currency,
            "amount": f"{amount:.2f}",
            "redirect_url": self.config.redirect_url,
            "cancel_url": self.config.cancel_url,
            "language": "EN",
        }
        if customer is not None:
            params["billing_name"] = customer.name
            params["billing_email"] = customer.email
            if customer.phone:
                params["billing_tel"] = customer.phone
        for index, slot in enumerate(_PARAM_SLOTS, start=1):
            if metadata.get(slot) is not None:
                params[f"merchant_param{index}"] = str(metadata[slot])

        enc_request = encrypt(urlencode(params), self.config.working_key)
        logger.info("CCAvenue order %s prepared for %s", order_id, receipt, extra={"order_id": order_id})
        return GatewayOrderRef(
            gateway=self.name,
            order_id=order_id,
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
            client_payload={
                "encRequest": enc_request,
                "accessCode": self.config.access_code,
                "url": self.config.checkout_url,
            },
        )

    def decrypt_response(self, enc_resp: str) -> Dict[str, str]:
        plain = decrypt(enc_resp, self.config.working_key)
        fields = dict(parse_qsl(plain, keep_blank_values=True))
        if not fields:
            raise ValueError("decrypted response is empty")
        return fields

    def verify_response_integrity(self, enc_resp: str) -> bool:
        """True when ``enc_resp`` decrypts to a non-empty key=value payload."""
        if not enc_resp:
            return False
        try:
            self.decrypt_response(enc_resp)
        except ValueError:
            logger.warning("CCAvenue response failed to decrypt", extra={"gateway": self.name})
            return False
        return True

    def verify_signature(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        # ``signature`` is the encResp blob; it must decrypt and name the same order
        if not self.verify_response_integrity(signature):
            return False
        fields = self.decrypt_response(signature)
        return not order_ref or fields.get("order_id") == order_ref

    def payment_from_fields(self, fields: Dict[str, str]) -> PaymentRecord:
        status = fields.get("order_status", "")
        if status == "Success":
            normalized = PAYMENT_SUCCESS
        elif status in ("Failure", "Aborted", "Invalid", "Unsuccessful"):
            normalized = PAYMENT_FAILED
        else:
            normalized = PAYMENT_PENDING
        amount = fields.get("amount") or fields.get("mer_amount")
        return PaymentRecord(
            gateway=self.name,
            payment_id=fields.get("tracking_id"),
            order_id=fields.get("order_id"),
            status=normalized,
            amount=quantize(amount) if amount else None,
            currency=fields.get("currency"),
            method=fields.get("payment_mode"),
            receipt=fields.get(f"merchant_param{_PARAM_SLOTS.index('receipt') + 1}"),
            raw={k: v for k, v in fields.items() if not k.startswith("billing_")},
        )

    def confirm_payment(self, order_ref: str, payment_ref: Optional[str], signature: Optional[str]) -> PaymentRecord:
        # the decrypted callback is the only status source
        try:
            fields = self.decrypt_response(signature or "")
        except ValueError as exc:
            raise self._error("malformed_response", "Callback could not be decrypted") from exc
        return self.payment_from_fields(fields)

    def fetch_payment(self, payment_ref: str, order_ref: Optional[str] = None) -> PaymentRecord:
        raise self._error("unsupported", "CCAvenue status comes from the encrypted callback")

    def refund(self, payment_ref: str, amount: Optional[Decimal] = None, reason: Optional[str] = None,
               currency: str = "INR", order_ref: Optional[str] = None) -> RefundRecord:
        raise self._error("unsupported", "CCAvenue refunds are processed from the merchant dashboard")

    @staticmethod
    def enc_resp_from_body(raw_body: bytes) -> Optional[str]:
        form = parse_qs(raw_body.decode("utf-8", errors="replace"))
        values = form.get("encResp")
        return values[0] if values else None

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        enc_resp = self.enc_resp_from_body(raw_body)
        return bool(enc_resp) and self.verify_response_integrity(enc_resp)

    def parse_webhook(self, raw_body: bytes, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        enc_resp = self.enc_resp_from_body(raw_body)
        try:
            fields = self.decrypt_response(enc_resp or "")
        except ValueError as exc:
            raise self._error("malformed_webhook", "Callback could not be decrypted") from exc
        payment = self.payment_from_fields(fields)
        outcome = payment.status if payment.status in (PAYMENT_SUCCESS, PAYMENT_FAILED) else "ignored"
        return WebhookEvent(
            gateway=self.name,
            event_id=f"{payment.order_id}:{payment.payment_id}:{fields.get('order_status')}",
            event_type=f"order.{fields.get('order_status', 'unknown').lower()}",
            outcome=outcome,
            order_id=payment.order_id,
            payment=payment,
            raw=payment.raw,
        )
