import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from showpass.services.gateways.base import header
from showpass.services.gateways.cashfree_gateway import cashfree_signature
from showpass.services.payouts.base import (
    BankDetails,
    ContactInfo,
    PayeeResult,
    PayoutEvent,
    PayoutProvider,
    PayoutStatus,
    TransferResult,
)
from showpass.utils.money import quantize

logger = logging.getLogger(__name__)

TEST_URL = "https://payout-gamma.cashfree.com/payout/v1"
PRODUCTION_URL = "https://payout-api.cashfree.com/payout/v1"

_STATUS = {
    "SUCCESS": PayoutStatus.SUCCESS,
    "FAILED": PayoutStatus.FAILED,
    "REVERSED": PayoutStatus.FAILED,
    "REJECTED": PayoutStatus.FAILED,
}


@dataclass(frozen=True)
class CashfreePayoutConfig:
    client_id: str
    client_secret: str
    production: bool = False
    timeout: float = 20.0

    @property
    def base_url(self) -> str:
        return PRODUCTION_URL if self.production else TEST_URL


class CashfreePayouts(PayoutProvider):
    name = "cashfree"

    def __init__(self, config: CashfreePayoutConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            headers={
                "Content-Type": "application/json",
                "X-Client-Id": config.client_id,
                "X-Client-Secret": config.client_secret,
            },
        )

    def _request(self, method: str, path: str, step: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self.client.request(method, path, json=payload, params=params)
        except httpx.HTTPError as exc:
            raise self._error("network_error", f"{method} {path}: {exc}", step=step) from exc
        try:
            body = response.json()
        except ValueError:
            raise self._error("malformed_response", f"{method} {path} returned non-JSON", response.text, step)
        if response.status_code >= 500:
            raise self._error("provider_unavailable", body.get("message") or f"{method} {path} failed", body, step)
        return body

    def ensure_payee(self, vendor_ref: str, bank: BankDetails, contact: ContactInfo) -> PayeeResult:
        body = self._request("POST", "/addBeneficiary", "payee", {
            "beneId": vendor_ref,
            "name": bank.account_holder_name,
            "email": contact.email,
            "phone": contact.phone,
            "bankAccount": bank.account_number,
            "ifsc": bank.ifsc,
            "address1": "NA",
            "city": "NA",
            "state": "NA",
            "pincode": "000000",
        })
        sub_code = str(body.get("subCode", ""))
        if body.get("status") == "SUCCESS" and sub_code == "200":
            return PayeeResult.created(vendor_ref, body)
        if sub_code == "409":
            return PayeeResult.already_exists(vendor_ref, body)
        return PayeeResult.failed(body.get("message") or f"addBeneficiary failed ({sub_code})", body)

    def _transfer_result(self, transfer_id: str, body: Dict[str, Any]) -> TransferResult:
        data = body.get("data") or {}
        transfer = data.get("transfer") or data
        raw_status = (transfer.get("status") or "").upper()
        status = _STATUS.get(raw_status, PayoutStatus.PENDING)
        return TransferResult(
            transfer_id=transfer_id,
            status=status,
            provider_reference=transfer.get("referenceId") or transfer.get("utr"),
            reason=transfer.get("reason") if status == PayoutStatus.FAILED else None,
            raw=body,
        )

    def request_transfer(self, transfer_id: str, payee_id: str, amount: Decimal,
                         remarks: str = "Vendor withdrawal") -> TransferResult:
        body = self._request("POST", "/requestTransfer", "transfer", {
            "beneId": payee_id,
            "amount": f"{quantize(amount):.2f}",
            "transferId": transfer_id,
            "transferMode": "banktransfer",
            "remarks": remarks,
        })
        if body.get("status") not in ("SUCCESS", "PENDING"):
            raise self._error("transfer_rejected", body.get("message") or "requestTransfer failed", body, "transfer")
        logger.info("Cashfree transfer %s accepted (%s)", transfer_id, body.get("status"),
                    extra={"transfer_id": transfer_id})
        # here the top-level status is the transfer's own: 200 SUCCESS or 201 PENDING
        data = body.get("data") or {}
        return TransferResult(
            transfer_id=transfer_id,
            status=PayoutStatus.SUCCESS if body["status"] == "SUCCESS" else PayoutStatus.PENDING,
            provider_reference=data.get("referenceId") or data.get("utr"),
            raw=body,
        )

    def get_transfer_status(self, transfer_id: str) -> TransferResult:
        body = self._request("GET", "/getTransferStatus", "status", params={"transferId": transfer_id})
        if body.get("status") != "SUCCESS":
            raise self._error("status_unavailable", body.get("message") or "getTransferStatus failed", body, "status")
        return self._transfer_result(transfer_id, body)

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = header(headers, "x-webhook-signature")
        timestamp = header(headers, "x-webhook-timestamp")
        if not signature or not timestamp or not self.config.client_secret:
            return False
        expected = cashfree_signature(self.config.client_secret, timestamp, raw_body)
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_body: bytes) -> PayoutEvent:
        try:
            body = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise self._error("malformed_webhook", "Webhook body is not JSON", step="webhook") from exc
        data = body.get("data") or {}
        return PayoutEvent(
            event=body.get("event", ""),
            transfer_id=data.get("transferId"),
            reason=data.get("reason"),
            provider_reference=data.get("referenceId") or data.get("utr"),
            raw=body,
        )
