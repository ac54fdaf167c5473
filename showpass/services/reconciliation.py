"""
Payment reconciliation: gateway orders, client verification and webhooks.

Every gateway order is recorded as a pending PaymentTransaction. Whichever of
the client verify call or the provider webhook arrives first completes the
target (booking, video purchase or vendor package) through one conditional
UPDATE on ``payment_status``; the other observes the completed row and
returns the same result. Side effects (e-ticket, access window, vendor
credit) run only for the winner, inside the same database transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from showpass.core.errors import (
    AlreadyCompleted,
    BusinessRuleError,
    HoldExpired,
    NotFound,
    ShowPassError,
    SignatureMismatch,
)
from showpass.database import models
from showpass.database.payment_models import PaymentIssue, PaymentTransaction
from showpass.services import booking_service, video_service, vendor_package_service, wallet_service
from showpass.services.gateways.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCESS,
    CustomerInfo,
    GatewayOrderRef,
    PaymentGateway,
    PaymentRecord,
    WebhookEvent,
)
from showpass.utils.money import quantize

logger = logging.getLogger(__name__)

# target already paid for; further payments are replays or duplicate charges
SETTLED_STATES = ("completed", "refunded")


@dataclass
class CompletionResult:
    purpose: str
    target_id: int
    reference: str
    status: str  # completed | failed | pending
    already_processed: bool = False
    transaction_id: Optional[int] = None
    ticket_number: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "purpose": self.purpose,
            "targetId": self.target_id,
            "reference": self.reference,
            "status": self.status,
            "alreadyProcessed": self.already_processed,
            "transactionId": self.transaction_id,
            "ticketNumber": self.ticket_number,
        }


@dataclass
class WebhookResult:
    gateway: str
    event_id: Optional[str]
    event_type: str
    outcome: str  # processed | ignored | unknown_order | error
    result: Optional[CompletionResult] = None
    detail: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


# ==========================
# PAYABLE TARGETS
# ==========================
class _Target:
    purpose = ""
    model = None
    payable_states = ("pending",)

    def load(self, db: Session, target_id: int):
        target = db.get(self.model, target_id)
        if target is None:
            raise NotFound(f"{self.purpose.replace('_', ' ').capitalize()} not found")
        return target

    def amount(self, target):
        return quantize(target.amount)

    def check_payable(self, target, now: datetime) -> None:
        if target.payment_status == "completed":
            raise AlreadyCompleted()
        if target.payment_status not in self.payable_states:
            raise BusinessRuleError("This order can no longer be paid")

    def blocked_reason(self, target, now: datetime) -> Optional[str]:
        return None

    def guard(self, now: datetime) -> tuple:
        return ()

    def completed_values(self, now: datetime) -> dict:
        return {"payment_status": "completed"}

    def activate(self, db: Session, target, payment: PaymentRecord, now: datetime) -> Optional[str]:
        return None

    def vendor_id(self, target) -> Optional[int]:
        return None


class _BookingTarget(_Target):
    purpose = "booking"
    model = models.Booking
    payable_states = booking_service.UNPAID

    def amount(self, target):
        return quantize(target.final_amount)

    def check_payable(self, target, now):
        super().check_payable(target, now)
        reason = self.blocked_reason(target, now)
        if reason:
            raise HoldExpired(reason)

    def blocked_reason(self, target, now):
        if target.booking_status != "confirmed":
            return f"Booking is {target.booking_status}"
        if target.expires_at <= now:
            return "Booking hold expired before payment completed"
        return None

    def guard(self, now):
        return (models.Booking.booking_status == "confirmed", models.Booking.expires_at > now)

    def completed_values(self, now):
        return {"payment_status": "completed", "completed_at": now, "updated_at": now}

    def activate(self, db, target, payment, now):
        target.transaction_id = payment.payment_id
        target.payment_method = (payment.method or target.payment_method or "online")[:20]
        ticket = booking_service.mint_ticket(db, target, now)
        return ticket.ticket_number

    def vendor_id(self, target):
        movie = target.showtime.movie if target.showtime is not None else None
        return movie.owner_vendor_id if movie is not None else None


class _VideoTarget(_Target):
    purpose = "video"
    model = models.VideoPurchase
    payable_states = ("pending", "failed")

    def activate(self, db, target, payment, now):
        target.transaction_id = payment.payment_id
        video_service.activate_purchase(target, now)
        return None

    def vendor_id(self, target):
        return target.video.owner_vendor_id if target.video is not None else None


class _VendorPackageTarget(_Target):
    purpose = "vendor_package"
    model = models.VendorSubscription
    payable_states = ("pending", "failed")

    def activate(self, db, target, payment, now):
        vendor_package_service.activate_subscription(db, target, now)
        return None


TARGETS = {t.purpose: t for t in (_BookingTarget(), _VideoTarget(), _VendorPackageTarget())}


def target_for(purpose: str) -> _Target:
    try:
        return TARGETS[purpose]
    except KeyError:
        raise BusinessRuleError(f"Unknown payment purpose: {purpose}") from None


# ==========================
# SERVICE
# ==========================
class ReconciliationService:
    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway

    # -- orders --------------------------------------------------------
    def create_order(self, purpose: str, target_id: int, customer: Optional[CustomerInfo] = None,
                     metadata: Optional[Dict[str, str]] = None,
                     now: Optional[datetime] = None) -> Tuple[PaymentTransaction, GatewayOrderRef]:
        """Open a gateway order for a payable target and record it as a pending attempt."""
        now = now or datetime.utcnow()
        handler = target_for(purpose)
        target = handler.load(self.db, target_id)
        handler.check_payable(target, now)

        amount = handler.amount(target)
        meta = {"type": purpose, "itemId": str(target.id)}
        meta.update(metadata or {})
        order = self.gateway.create_order(amount, target.currency, target.reference, meta, customer)

        txn = PaymentTransaction(
            purpose=purpose,
            target_id=target.id,
            target_reference=target.reference,
            gateway=self.gateway.name,
            gateway_order_id=order.order_id,
            amount=amount,
            currency=target.currency,
            status="pending",
            gateway_response=order.raw,
            created_at=now,
        )
        self.db.add(txn)
        self.db.commit()
        self.db.refresh(txn)
        logger.info("Opened %s order %s for %s %s", self.gateway.name, order.order_id, purpose, target.reference,
                    extra={"order_id": order.order_id, "gateway": self.gateway.name})
        return txn, order

    def transaction_for_order(self, order_ref: str) -> PaymentTransaction:
        txn = (
            self.db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.gateway == self.gateway.name,
                PaymentTransaction.gateway_order_id == order_ref,
            )
            .first()
        )
        if txn is None:
            raise NotFound("Payment order not found")
        return txn

    # -- client verification -------------------------------------------
    def verify_and_complete(self, order_ref: str, payment_ref: Optional[str], signature: Optional[str],
                            purpose: Optional[str] = None, now: Optional[datetime] = None) -> CompletionResult:
        """
        Verify a client-side payment callback and complete the target.

        A bad signature raises SignatureMismatch before anything is written.
        The payment state used is always the provider's, never the client's.
        """
        now = now or datetime.utcnow()
        if self.gateway.signs_client_callbacks and not self.gateway.verify_signature(order_ref, payment_ref, signature):
            logger.warning("Rejected %s callback with bad signature for order %s", self.gateway.name, order_ref,
                           extra={"order_id": order_ref, "gateway": self.gateway.name, "event": "signature_mismatch"})
            raise SignatureMismatch()

        txn = self.transaction_for_order(order_ref)
        if purpose is not None and txn.purpose != purpose:
            raise NotFound("Payment order not found")
        if txn.status == "success":
            return self._existing_result(txn)

        payment = self.gateway.confirm_payment(order_ref, payment_ref, signature)
        return self.apply_payment(txn, payment, now)

    def apply_payment(self, txn: PaymentTransaction, payment: PaymentRecord,
                      now: Optional[datetime] = None) -> CompletionResult:
        now = now or datetime.utcnow()
        if payment.order_id and txn.gateway_order_id and payment.order_id != txn.gateway_order_id:
            self._record_issue("order_mismatch", txn,
                               f"Payment {payment.payment_id} belongs to order {payment.order_id}", payment.raw)
            self.db.commit()
            raise SignatureMismatch("Payment does not belong to this order")
        if payment.status == PAYMENT_SUCCESS:
            return self.complete(txn, payment, now)
        if payment.status == PAYMENT_FAILED:
            return self.fail(txn, payment, now)

        handler = target_for(txn.purpose)
        target = handler.load(self.db, txn.target_id)
        return CompletionResult(txn.purpose, target.id, target.reference, "pending", transaction_id=txn.id)

    # -- transitions ---------------------------------------------------
    def complete(self, txn: PaymentTransaction, payment: PaymentRecord,
                 now: Optional[datetime] = None) -> CompletionResult:
        now = now or datetime.utcnow()
        handler = target_for(txn.purpose)
        target = handler.load(self.db, txn.target_id)
        if target.payment_status in SETTLED_STATES:
            return self._settled(txn, target, payment, now)

        expected = quantize(txn.amount)
        paid = quantize(payment.amount) if payment.amount is not None else None
        if paid != expected or (payment.currency and payment.currency != txn.currency):
            self._record_issue("amount_mismatch", txn,
                               f"Provider reports {paid} {payment.currency}, expected {expected} {txn.currency}",
                               payment.raw)
            self.db.commit()
            logger.error("Amount mismatch on order %s", txn.gateway_order_id,
                         extra={"order_id": txn.gateway_order_id, "gateway": txn.gateway})
            raise BusinessRuleError("Paid amount does not match the order", status_code=409)

        reason = handler.blocked_reason(target, now)
        if reason:
            return self._late_success(handler, target, txn, payment, reason)

        result = self.db.execute(
            update(handler.model)
            .where(handler.model.id == target.id, handler.model.payment_status.in_(handler.payable_states),
                   *handler.guard(now))
            .values(**handler.completed_values(now))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            target = handler.load(self.db, txn.target_id)
            if target.payment_status in SETTLED_STATES:
                return self._settled(txn, target, payment, now)
            return self._late_success(handler, target, txn, payment,
                                      handler.blocked_reason(target, now) or "Order is no longer payable")
        self.db.refresh(target)

        txn.status = "success"
        txn.gateway_transaction_id = payment.payment_id
        txn.payment_method = (payment.method or "")[:20] or None
        txn.gateway_response = payment.raw
        txn.processed_at = now
        ticket_number = handler.activate(self.db, target, payment, now)

        vendor_id = handler.vendor_id(target)
        if vendor_id is not None:
            wallet_service.credit_vendor_earnings(self.db, vendor_id, expected, handler.purpose, target.id, now)

        try:
            self.db.commit()
        except IntegrityError:
            # another attempt for this target won between our update and commit
            self.db.rollback()
            logger.warning("Concurrent completion of %s %s", handler.purpose, txn.target_id)
            target = handler.load(self.db, txn.target_id)
            if target.payment_status in SETTLED_STATES:
                return self._settled(txn, target, payment, now)
            raise

        logger.info("Completed %s %s via %s payment %s", handler.purpose, target.reference, txn.gateway,
                    payment.payment_id, extra={"order_id": txn.gateway_order_id, "gateway": txn.gateway})
        return CompletionResult(handler.purpose, target.id, target.reference, "completed",
                                transaction_id=txn.id, ticket_number=ticket_number)

    def fail(self, txn: PaymentTransaction, payment: Optional[PaymentRecord] = None,
             now: Optional[datetime] = None) -> CompletionResult:
        """Record a failed attempt. Never downgrades a completed target."""
        now = now or datetime.utcnow()
        handler = target_for(txn.purpose)
        target = handler.load(self.db, txn.target_id)

        self.db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == txn.id, PaymentTransaction.status == "pending")
            .values(status="failed", processed_at=now, gateway_response=payment.raw if payment else txn.gateway_response)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            update(handler.model)
            .where(handler.model.id == target.id, handler.model.payment_status == "pending")
            .values(payment_status="failed")
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(target)
        if target.payment_status == "completed":
            return self._existing_result(txn, target)

        logger.info("Payment attempt %s failed for %s %s", txn.gateway_order_id, handler.purpose, target.reference,
                    extra={"order_id": txn.gateway_order_id, "gateway": txn.gateway})
        return CompletionResult(handler.purpose, target.id, target.reference, "failed", transaction_id=txn.id)

    def record_manual_payment(self, booking_id: int, gateway: str = "cash", method: str = "cash",
                              amount=None, currency: Optional[str] = None,
                              transaction_ref: Optional[str] = None, response: Optional[dict] = None,
                              now: Optional[datetime] = None) -> CompletionResult:
        """Box-office payment recorded by staff, completed through the same guarded transition."""
        now = now or datetime.utcnow()
        handler = target_for("booking")
        booking = handler.load(self.db, booking_id)
        handler.check_payable(booking, now)

        expected = handler.amount(booking)
        txn = PaymentTransaction(
            purpose="booking",
            target_id=booking.id,
            target_reference=booking.reference,
            gateway=gateway,
            amount=expected,
            currency=booking.currency,
            status="pending",
            payment_method=method,
            created_at=now,
        )
        self.db.add(txn)
        self.db.flush()
        payment = PaymentRecord(
            gateway=gateway,
            payment_id=transaction_ref or f"{gateway.upper()}_{booking.reference}",
            order_id=None,
            status=PAYMENT_SUCCESS,
            amount=quantize(amount) if amount is not None else expected,
            currency=currency or booking.currency,
            method=method,
            raw=response or {},
        )
        return self.complete(txn, payment, now)

    # -- webhooks ------------------------------------------------------
    def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str],
                       now: Optional[datetime] = None) -> WebhookResult:
        """
        Verify and apply a provider webhook.

        Only a bad signature raises. Processing problems are stored as
        PaymentIssue rows so the provider gets its acknowledgement.
        """
        return self.apply_event(self.verified_event(raw_body, headers), now)

    def verified_event(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        if not self.gateway.verify_webhook_signature(raw_body, headers):
            logger.warning("Rejected %s webhook with bad signature", self.gateway.name,
                           extra={"gateway": self.gateway.name, "event": "signature_mismatch"})
            raise SignatureMismatch("Invalid webhook signature")
        return self.gateway.parse_webhook(raw_body, headers)

    def apply_event(self, event: WebhookEvent, now: Optional[datetime] = None) -> WebhookResult:
        now = now or datetime.utcnow()
        if event.outcome not in (PAYMENT_SUCCESS, PAYMENT_FAILED) or not event.order_id:
            logger.info("Ignoring %s webhook %s", self.gateway.name, event.event_type,
                        extra={"gateway": self.gateway.name, "event": event.event_type})
            return WebhookResult(self.gateway.name, event.event_id, event.event_type, "ignored")

        txn = (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.gateway == self.gateway.name,
                    PaymentTransaction.gateway_order_id == event.order_id)
            .first()
        )
        if txn is None:
            self.record_issue("unknown_order", self.gateway.name, event.order_id,
                              f"{event.event_type} for unknown order", event.raw)
            return WebhookResult(self.gateway.name, event.event_id, event.event_type, "unknown_order")

        try:
            if event.outcome == PAYMENT_SUCCESS:
                if event.payment is None:
                    raise BusinessRuleError("Success webhook carries no payment entity")
                result = self.apply_payment(txn, event.payment, now)
            else:
                result = self.fail(txn, event.payment, now)
        except ShowPassError as exc:
            self.db.rollback()
            if not isinstance(exc, HoldExpired):
                self.record_issue("webhook_error", txn.gateway, txn.gateway_order_id, exc.message, event.raw,
                                  purpose=txn.purpose, target_id=txn.target_id)
            logger.warning("Webhook %s for order %s not applied: %s", event.event_type, event.order_id, exc.message,
                           extra={"order_id": event.order_id, "gateway": self.gateway.name})
            return WebhookResult(self.gateway.name, event.event_id, event.event_type, "error", detail=exc.message)

        return WebhookResult(self.gateway.name, event.event_id, event.event_type, "processed", result=result)

    # -- issues --------------------------------------------------------
    def record_issue(self, kind: str, gateway: Optional[str], order_id: Optional[str], detail: str,
                     payload: Any = None, purpose: Optional[str] = None,
                     target_id: Optional[int] = None) -> PaymentIssue:
        issue = PaymentIssue(kind=kind, gateway=gateway, gateway_order_id=order_id, purpose=purpose,
                             target_id=target_id, detail=detail, payload=payload)
        self.db.add(issue)
        self.db.commit()
        return issue

    def _record_issue(self, kind: str, txn: PaymentTransaction, detail: str, payload: Any) -> None:
        self.db.add(PaymentIssue(kind=kind, gateway=txn.gateway, gateway_order_id=txn.gateway_order_id,
                                 purpose=txn.purpose, target_id=txn.target_id, detail=detail, payload=payload))

    def _late_success(self, handler: _Target, target, txn: PaymentTransaction, payment: PaymentRecord,
                      reason: str) -> CompletionResult:
        self._record_issue("late_success", txn,
                           f"{reason}; payment {payment.payment_id} needs a manual refund", payment.raw)
        self.db.commit()
        logger.error("Late payment %s for %s %s: %s", payment.payment_id, handler.purpose, target.reference, reason,
                     extra={"order_id": txn.gateway_order_id, "gateway": txn.gateway})
        raise HoldExpired(reason)

    def _winning_txn(self, txn: PaymentTransaction) -> Optional[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.purpose == txn.purpose,
                    PaymentTransaction.target_id == txn.target_id,
                    PaymentTransaction.status.in_(("success", "refunded")))
            .first()
        )

    def _settled(self, txn: PaymentTransaction, target, payment: PaymentRecord, now: datetime) -> CompletionResult:
        """
        Success reported for a target that is already paid or refunded.

        A replay of the winning payment returns the existing result. A
        different payment is a second charge for the same target: the attempt
        is closed as failed and a ``duplicate_payment`` issue asks for a refund.
        """
        winner = self._winning_txn(txn)
        if winner is None or winner.id == txn.id or payment.payment_id == winner.gateway_transaction_id:
            return self._existing_result(txn, target)

        result = self.db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == txn.id,
                   PaymentTransaction.status.in_(("pending", "failed")),
                   or_(PaymentTransaction.gateway_transaction_id.is_(None),
                       PaymentTransaction.gateway_transaction_id != payment.payment_id))
            .values(status="failed", gateway_transaction_id=payment.payment_id, processed_at=now,
                    gateway_response={"duplicateOf": winner.id, "payment": payment.raw})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self._record_issue("duplicate_payment", txn,
                               f"Payment {payment.payment_id} charged {target.reference} again after "
                               f"transaction {winner.id}; it needs a refund", payment.raw)
            self.db.commit()
            logger.error("Duplicate payment %s for %s %s", payment.payment_id, txn.purpose, target.reference,
                         extra={"order_id": txn.gateway_order_id, "gateway": txn.gateway})
            self.db.refresh(txn)
        return self._existing_result(txn, target)

    def _existing_result(self, txn: PaymentTransaction, target=None) -> CompletionResult:
        handler = target_for(txn.purpose)
        if target is None:
            target = handler.load(self.db, txn.target_id)
        winner = self._winning_txn(txn)
        ticket_number = None
        if handler.purpose == "booking" and target.ticket is not None:
            ticket_number = target.ticket.ticket_number
        return CompletionResult(handler.purpose, target.id, target.reference, target.payment_status,
                                already_processed=True,
                                transaction_id=winner.id if winner is not None else None,
                                ticket_number=ticket_number)
