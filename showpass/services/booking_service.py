"""
Booking lifecycle: hold seats, expire stale holds, cancel, tickets, refunds.

States: pending(held) -> completed | expired | cancelled; completed -> refunded.
Completion itself is owned by the reconciliation service.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from showpass.core.config import settings
from showpass.core.errors import (
    AlreadyCancelled,
    AlreadyRefunded,
    BusinessRuleError,
    GatewayError,
    NotFound,
    ShowtimeNotActive,
)
from showpass.database import models
from showpass.database.payment_models import PaymentIssue, PaymentTransaction
from showpass.services import inventory, wallet_service
from showpass.services.gateways import build_gateway
from showpass.utils.money import TaxPolicy, compute_breakdown
from showpass.utils.references import booking_reference, ticket_number

logger = logging.getLogger(__name__)

UNPAID = ("pending", "failed")


@dataclass
class Customer:
    name: str
    email: str
    phone: Optional[str] = None


def _hold_window() -> timedelta:
    return timedelta(minutes=settings.BOOKING_HOLD_MINUTES)


def get_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def get_booking_by_reference(db: Session, reference: str) -> models.Booking:
    booking = db.query(models.Booking).filter(models.Booking.reference == reference).first()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def create_booking(
    db: Session,
    showtime_id: int,
    seat_ids: List[int],
    customer: Customer,
    user_id: Optional[int] = None,
    discount: Decimal = Decimal("0"),
    tax_policy: Optional[TaxPolicy] = None,
    now: Optional[datetime] = None,
) -> models.Booking:
    """
    Hold ``seat_ids`` and persist a pending booking.

    Ledger failures (NotFound, InsufficientSeats, SeatConflict) propagate
    unchanged and no booking row is written.
    """
    now = now or datetime.utcnow()
    showtime = db.get(models.Showtime, showtime_id)
    if showtime is None:
        raise NotFound("Showtime not found")
    if showtime.status == "cancelled":
        raise ShowtimeNotActive("Showtime is not available for booking")

    seats = inventory.reserve(db, showtime_id, seat_ids)

    policy = tax_policy or TaxPolicy.from_settings()
    seat_price = Decimal(showtime.base_price)
    breakdown = compute_breakdown(seat_price * len(seats), policy, discount)

    booking = models.Booking(
        reference=booking_reference(),
        user_id=user_id,
        showtime_id=showtime_id,
        selected_seats=[
            {
                "seatId": seat.id,
                "rowLabel": seat.row_label,
                "seatNumber": seat.seat_number,
                "seatType": seat.seat_type,
                "seatPrice": str(seat_price),
            }
            for seat in seats
        ],
        base_amount=breakdown.base,
        fee_amount=breakdown.fees,
        tax_amount=breakdown.tax,
        discount_amount=breakdown.discount,
        final_amount=breakdown.final,
        currency=showtime.currency,
        tax_policy=policy.as_dict(),
        payment_status="pending",
        booking_status="confirmed",
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        expires_at=now + _hold_window(),
        created_at=now,
    )
    db.add(booking)
    db.flush()
    inventory.attach_booking(db, showtime_id, booking.seat_ids, booking.id)
    db.commit()
    db.refresh(booking)

    logger.info(
        "Booking %s holds seats %s on showtime %s until %s",
        booking.reference, booking.seat_ids, showtime_id, booking.expires_at,
        extra={"booking_id": booking.id},
    )
    return booking


def expire_stale_holds(db: Session, now: Optional[datetime] = None) -> int:
    """
    Expire unpaid bookings whose hold deadline has passed and free their seats.

    A failed payment attempt keeps the hold so the customer can retry; it is
    released here like any other unpaid hold. Each booking is flipped with a
    conditional UPDATE that re-checks the unpaid state, so a booking completed
    between selection and update is left alone. Safe to run concurrently.
    """
    now = now or datetime.utcnow()
    candidates = (
        db.query(models.Booking.id, models.Booking.showtime_id, models.Booking.selected_seats)
        .filter(
            models.Booking.payment_status.in_(UNPAID),
            models.Booking.booking_status == "confirmed",
            models.Booking.expires_at <= now,
        )
        .all()
    )

    expired = 0
    for booking_id, showtime_id, selected_seats in candidates:
        result = db.execute(
            update(models.Booking)
            .where(
                models.Booking.id == booking_id,
                models.Booking.payment_status.in_(UNPAID),
                models.Booking.booking_status == "confirmed",
            )
            .values(booking_status="expired", payment_status="failed", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        seat_ids = [s["seatId"] for s in (selected_seats or [])]
        inventory.release(db, showtime_id, seat_ids, booking_id=booking_id)
        db.commit()
        expired += 1
        logger.info("Expired stale hold on booking %s", booking_id, extra={"booking_id": booking_id})

    if expired:
        logger.info("Expiry sweep released %s bookings", expired)
    return expired


def cancel_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> models.Booking:
    """
    Cancel a booking and release its seats, whatever its payment state.
    Refunds are a separate explicit action.
    """
    now = now or datetime.utcnow()
    booking = get_booking(db, booking_id)
    if booking.booking_status == "cancelled":
        raise AlreadyCancelled()

    result = db.execute(
        update(models.Booking)
        .where(models.Booking.id == booking_id, models.Booking.booking_status != "cancelled")
        .values(booking_status="cancelled", cancelled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyCancelled()

    inventory.release(db, booking.showtime_id, booking.seat_ids, booking_id=booking.id)
    if booking.ticket is not None:
        booking.ticket.is_valid = False
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s cancelled", booking.reference, extra={"booking_id": booking.id})
    return booking


# ==========================
# TICKETS
# ==========================
def build_qr_payload(booking: models.Booking, number: str, generated_at: datetime) -> str:
    showtime = booking.showtime
    return json.dumps(
        {
            "bookingId": booking.id,
            "bookingReference": booking.reference,
            "ticketNumber": number,
            "showtime": {
                "id": showtime.id,
                "showDate": showtime.show_date.isoformat(),
                "showTime": showtime.show_time,
            },
            "seats": booking.seat_ids,
            "generatedAt": generated_at.isoformat(),
        },
        sort_keys=True,
    )


def mint_ticket(db: Session, booking: models.Booking, now: Optional[datetime] = None) -> models.ETicket:
    """Create the booking's e-ticket. Callers guarantee this runs once per completed booking."""
    now = now or datetime.utcnow()
    number = ticket_number()
    ticket = models.ETicket(
        booking_id=booking.id,
        ticket_number=number,
        qr_data=build_qr_payload(booking, number, now),
        created_at=now,
    )
    db.add(ticket)
    return ticket


def get_ticket(db: Session, booking_id: int) -> models.ETicket:
    booking = get_booking(db, booking_id)
    if booking.ticket is None:
        raise NotFound("E-ticket not found")
    return booking.ticket


def redeem_ticket(db: Session, number: str, now: Optional[datetime] = None) -> models.ETicket:
    now = now or datetime.utcnow()
    ticket = db.query(models.ETicket).filter(models.ETicket.ticket_number == number).first()
    if ticket is None:
        raise NotFound("E-ticket not found")
    if not ticket.is_valid:
        raise BusinessRuleError("Ticket is no longer valid")

    result = db.execute(
        update(models.ETicket)
        .where(models.ETicket.id == ticket.id, models.ETicket.is_used.is_(False))
        .values(is_used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise BusinessRuleError("Ticket already used")
    db.commit()
    db.refresh(ticket)
    return ticket


# ==========================
# REFUNDS
# ==========================
def refund_booking(db: Session, booking_id: int, gateway=None, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> models.Booking:
    """
    Refund a completed booking through ``gateway``, by default the one that took the payment.

    Repeating the refund is rejected. A provider failure leaves the booking
    completed and records a PaymentIssue for review.
    """
    now = now or datetime.utcnow()
    booking = get_booking(db, booking_id)
    if booking.payment_status == "refunded":
        raise AlreadyRefunded()
    if booking.payment_status != "completed":
        raise BusinessRuleError("Only completed payments can be refunded")

    txn = (
        db.query(PaymentTransaction)
        .filter(
            PaymentTransaction.purpose == "booking",
            PaymentTransaction.target_id == booking.id,
            PaymentTransaction.status == "success",
        )
        .first()
    )
    if txn is None:
        raise NotFound("No successful payment found for booking")

    if txn.gateway != "cash":
        gateway = gateway or build_gateway(txn.gateway)
        try:
            refund = gateway.refund(txn.gateway_transaction_id, None, reason or "Booking refund",
                                    currency=txn.currency, order_ref=txn.gateway_order_id)
        except GatewayError as exc:
            db.add(PaymentIssue(
                kind="refund_failed", gateway=txn.gateway, gateway_order_id=txn.gateway_order_id,
                purpose="booking", target_id=booking.id, detail=exc.message, payload={"code": exc.code},
            ))
            db.commit()
            logger.warning("Refund failed for booking %s: %s", booking.reference, exc.message,
                           extra={"booking_id": booking.id, "gateway": txn.gateway})
            raise
        txn.refund_id = refund.refund_id
        txn.refunded_amount = refund.amount
    else:
        txn.refunded_amount = txn.amount

    result = db.execute(
        update(models.Booking)
        .where(models.Booking.id == booking.id, models.Booking.payment_status == "completed")
        .values(payment_status="refunded", refunded_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyRefunded()

    txn.status = "refunded"
    if booking.booking_status != "cancelled":
        booking.booking_status = "cancelled"
        booking.cancelled_at = now
        inventory.release(db, booking.showtime_id, booking.seat_ids, booking_id=booking.id)
    if booking.ticket is not None:
        booking.ticket.is_valid = False
    wallet_service.reverse_vendor_earnings(db, "booking", booking.id, now)
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s refunded", booking.reference, extra={"booking_id": booking.id})
    return booking
