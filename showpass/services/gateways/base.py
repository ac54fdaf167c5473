"""
Payment gateway contract.

Every provider takes amounts in major units and converts them to its own
minor-unit convention internally. ``verify_signature`` and
``verify_webhook_signature`` are local cryptographic checks and never touch
the network. Provider and network failures surface as ``GatewayError`` and
are never retried here.
"""
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from showpass.core.errors import GatewayError

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"
PAYMENT_PENDING = "pending"


@dataclass
class CustomerInfo:
    customer_id: str
    name: str
    email: str
    phone: Optional[str] = None


@dataclass
class GatewayOrderRef:
    gateway: str
    order_id: str
    amount: Decimal
    currency: str
    receipt: str
    status: str = "created"
    # what the client SDK needs: key id, session id, encrypted request, redirect url
    client_payload: Dict[str, Any] = field(default_factory=dict)
    raw: Any = None


@dataclass
class PaymentRecord:
    gateway: str
    payment_id: Optional[str]
    order_id: Optional[str]
    status: str  # success | failed | pending
    amount: Optional[Decimal]
    currency: Optional[str]
    method: Optional[str] = None
    receipt: Optional[str] = None
    raw: Any = None


@dataclass
class RefundRecord:
    gateway: str
    refund_id: str
    payment_id: Optional[str]
    amount: Optional[Decimal]
    status: str
    raw: Any = None


@dataclass
class WebhookEvent:
    gateway: str
    event_id: Optional[str]
    event_type: str
    outcome: str  # success | failed | ignored
    order_id: Optional[str]
    payment: Optional[PaymentRecord] = None
    raw: Any = None


class PaymentGateway(ABC):
    name = "base"
    # False when the provider gives the client no signed callback; the
    # verify path then relies on fetch_payment alone
    signs_client_callbacks = True

    @abstractmethod
    def create_order(self, amount: Decimal, currency: str, receipt: str,
                     metadata: Optional[Dict[str, str]] = None,
                     customer: Optional[CustomerInfo] = None) -> GatewayOrderRef:
        ...

    @abstractmethod
    def verify_signature(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        ...

    @abstractmethod
    def fetch_payment(self, payment_ref: str, order_ref: Optional[str] = None) -> PaymentRecord:
        ...

    @abstractmethod
    def refund(self, payment_ref: str, amount: Optional[Decimal] = None, reason: Optional[str] = None,
               currency: str = "INR", order_ref: Optional[str] = None) -> RefundRecord:
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        ...

    @abstractmethod
    def parse_webhook(self, raw_body: bytes, headers: Optional[Mapping[str, str]] = None) -> WebhookEvent:
        ...

    def confirm_payment(self, order_ref: str, payment_ref: Optional[str], signature: Optional[str]) -> PaymentRecord:
        """Authoritative payment state behind a client callback. Asks the provider by default."""
        return self.fetch_payment(payment_ref or order_ref, order_ref)

    def _error(self, code: str, message: str, raw: Any = None) -> GatewayError:
        logger.warning("%s gateway error [%s]: %s", self.name, code, message, extra={"gateway": self.name})
        return GatewayError(code=code, message=message, raw=raw, gateway=self.name)


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts and Starlette headers."""
    if headers is None:
        return None
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for k, v in headers.items():
            if k.lower() == lowered:
                return v
    return value
