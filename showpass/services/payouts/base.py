import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from showpass.core.errors import PayoutError

logger = logging.getLogger(__name__)


class PayoutStatus:
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


@dataclass(frozen=True)
class BankDetails:
    account_holder_name: str
    account_number: str
    ifsc: str
    bank_name: Optional[str] = None


@dataclass(frozen=True)
class ContactInfo:
    name: str
    email: str
    phone: str


@dataclass
class PayeeResult:
    """Outcome of payee registration: ``created``, ``already_exists`` or ``failed``."""

    kind: str
    payee_id: Optional[str] = None
    reason: Optional[str] = None
    raw: Any = None

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"

    @classmethod
    def created(cls, payee_id: str, raw: Any = None) -> "PayeeResult":
        return cls(cls.CREATED, payee_id=payee_id, raw=raw)

    @classmethod
    def already_exists(cls, payee_id: str, raw: Any = None) -> "PayeeResult":
        return cls(cls.ALREADY_EXISTS, payee_id=payee_id, raw=raw)

    @classmethod
    def failed(cls, reason: str, raw: Any = None) -> "PayeeResult":
        return cls(cls.FAILED, reason=reason, raw=raw)

    @property
    def ok(self) -> bool:
        return self.kind != self.FAILED


@dataclass
class TransferResult:
    transfer_id: str
    status: str
    provider_reference: Optional[str] = None
    reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PayoutEvent:
    """A payout webhook normalised to TRANSFER_SUCCESS, TRANSFER_FAILED or TRANSFER_REVERSED."""

    event: str
    transfer_id: Optional[str]
    reason: Optional[str] = None
    provider_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PayoutProvider(ABC):
    name = "base"

    @abstractmethod
    def ensure_payee(self, vendor_ref: str, bank: BankDetails, contact: ContactInfo) -> PayeeResult:
        """Register the vendor's bank account once; re-registering reports AlreadyExists."""

    @abstractmethod
    def request_transfer(self, transfer_id: str, payee_id: str, amount: Decimal,
                         remarks: str = "Vendor withdrawal") -> TransferResult:
        ...

    @abstractmethod
    def get_transfer_status(self, transfer_id: str) -> TransferResult:
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        ...

    @abstractmethod
    def parse_webhook(self, raw_body: bytes) -> PayoutEvent:
        ...

    def _error(self, code: str, message: str, raw: Any = None, step: Optional[str] = None) -> PayoutError:
        logger.warning("%s payout error [%s/%s]: %s", self.name, step, code, message)
        return PayoutError(code=code, message=message, raw=raw, step=step)


def payee_ref(vendor_id: int) -> str:
    return f"VENDOR_{vendor_id}"


def transfer_ref(withdrawal_id: int) -> str:
    return f"WD_{withdrawal_id}"
