"""
RazorpayX payouts: contact -> fund account -> payout.

RazorpayX has no single "beneficiary" object, so the payee id we persist is
the fund account id. Contacts carry ``reference_id = VENDOR_{id}`` which lets
a retry find the contact created by an earlier attempt.
"""
import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from showpass.services.gateways.base import header, hmac_sha256_hex
from showpass.services.payouts.base import (
    BankDetails,
    ContactInfo,
    PayeeResult,
    PayoutEvent,
    PayoutProvider,
    PayoutStatus,
    TransferResult,
)
from showpass.utils.money import to_minor_units

logger = logging.getLogger(__name__)

BASE_URL = "https://api.razorpay.com/v1"

_STATUS = {
    "processed": PayoutStatus.SUCCESS,
    "reversed": PayoutStatus.FAILED,
    "failed": PayoutStatus.FAILED,
    "cancelled": PayoutStatus.FAILED,
    "rejected": PayoutStatus.FAILED,
}

_EVENTS = {
    "payout.processed": "TRANSFER_SUCCESS",
    "payout.failed": "TRANSFER_FAILED",
    "payout.rejected": "TRANSFER_FAILED",
    "payout.reversed": "TRANSFER_REVERSED",
}


@dataclass(frozen=True)
class RazorpayXConfig:
    key_id: str
    key_secret: str
    account_number: str
    webhook_secret: str = ""
    mode: str = "IMPS"
    timeout: float = 20.0


class RazorpayXPayouts(PayoutProvider):
    name = "razorpayx"

    def __init__(self, config: RazorpayXConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(
            base_url=BASE_URL, auth=(config.key_id, config.key_secret), timeout=config.timeout
        )

    def _request(self, method: str, path: str, step: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None):
        try:
            response = self.client.request(method, path, json=payload, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise self._error("network_error", f"{method} {path}: {exc}", step=step) from exc
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}
        return response.status_code, body

    @staticmethod
    def _description(body: Any) -> str:
        if isinstance(body, dict):
            return (body.get("error") or {}).get("description") or ""
        return ""

    def _find_contact(self, vendor_ref: str) -> Optional[str]:
        status, body = self._request("GET", "/contacts", "contact", params={"reference_id": vendor_ref})
        if status >= 400:
            return None
        items = body.get("items") or []
        return items[0]["id"] if items else None

    def _ensure_contact(self, vendor_ref: str, contact: ContactInfo) -> PayeeResult:
        status, body = self._request("POST", "/contacts", "contact", {
            "name": contact.name,
            "email": contact.email,
            "contact": contact.phone,
            "type": "vendor",
            "reference_id": vendor_ref,
        })
        if status < 400 and body.get("id"):
            return PayeeResult.created(body["id"], body)
        if status == 409 or "already exists" in self._description(body).lower():
            existing = self._find_contact(vendor_ref)
            if existing:
                return PayeeResult.already_exists(existing, body)
        return PayeeResult.failed(self._description(body) or f"contact creation failed ({status})", body)

    def ensure_payee(self, vendor_ref: str, bank: BankDetails, contact: ContactInfo) -> PayeeResult:
        contact_result = self._ensure_contact(vendor_ref, contact)
        if not contact_result.ok:
            return contact_result

        # RazorpayX deduplicates identical fund accounts and returns the existing one
        status, body = self._request("POST", "/fund_accounts", "fund_account", {
            "contact_id": contact_result.payee_id,
            "account_type": "bank_account",
            "bank_account": {
                "name": bank.account_holder_name,
                "ifsc": bank.ifsc,
                "account_number": bank.account_number,
            },
        })
        if status >= 400 or not body.get("id"):
            return PayeeResult.failed(self._description(body) or f"fund account creation failed ({status})", body)
        if status == 200 or contact_result.kind == PayeeResult.ALREADY_EXISTS:
            return PayeeResult.already_exists(body["id"], body)
        return PayeeResult.created(body["id"], body)

    def _transfer_result(self, transfer_id: str, body: Dict[str, Any]) -> TransferResult:
        status = _STATUS.get(body.get("status", ""), PayoutStatus.PENDING)
        reason = None
        if status == PayoutStatus.FAILED:
            reason = (body.get("status_details") or {}).get("description") or body.get("failure_reason")
        return TransferResult(
            transfer_id=transfer_id,
            status=status,
            provider_reference=body.get("id"),
            reason=reason,
            raw=body,
        )

    def request_transfer(self, transfer_id: str, payee_id: str, amount: Decimal,
                         remarks: str = "Vendor withdrawal") -> TransferResult:
        status, body = self._request(
            "POST",
            "/payouts",
            "transfer",
            {
                "account_number": self.config.account_number,
                "fund_account_id": payee_id,
                "amount": to_minor_units(amount, "INR"),
                "currency": "INR",
                "mode": self.config.mode,
                "purpose": "payout",
                "queue_if_low_balance": True,
                "reference_id": transfer_id,
                "narration": remarks[:30],
            },
            headers={"X-Payout-Idempotency": transfer_id},
        )
        if status >= 400:
            raise self._error("transfer_rejected", self._description(body) or f"payout failed ({status})",
                              raw=body, step="transfer")
        logger.info("RazorpayX payout %s created for %s", body.get("id"), transfer_id,
                    extra={"transfer_id": transfer_id})
        return self._transfer_result(transfer_id, body)

    def get_transfer_status(self, transfer_id: str) -> TransferResult:
        status, body = self._request("GET", "/payouts", "status", params={
            "account_number": self.config.account_number,
            "reference_id": transfer_id,
        })
        if status >= 400:
            raise self._error("status_unavailable", self._description(body) or f"status lookup failed ({status})",
                              raw=body, step="status")
        items = body.get("items") or []
        if not items:
            return TransferResult(transfer_id=transfer_id, status=PayoutStatus.PENDING, raw=body)
        return self._transfer_result(transfer_id, items[0])

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = header(headers, "x-razorpay-signature")
        if not signature or not self.config.webhook_secret:
            return False
        return hmac.compare_digest(hmac_sha256_hex(self.config.webhook_secret, raw_body), signature)

    def parse_webhook(self, raw_body: bytes) -> PayoutEvent:
        try:
            body = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise self._error("malformed_webhook", "Webhook body is not JSON", step="webhook") from exc
        entity = ((body.get("payload") or {}).get("payout") or {}).get("entity") or {}
        reason = (entity.get("status_details") or {}).get("description") or entity.get("failure_reason")
        return PayoutEvent(
            event=_EVENTS.get(body.get("event", ""), body.get("event", "")),
            transfer_id=entity.get("reference_id"),
            reason=reason,
            provider_reference=entity.get("id"),
            raw=body,
        )
