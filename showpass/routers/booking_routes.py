# showpass/routers/booking_routes.py
"""
Booking holds, manual payments, cancellation, refunds and e-tickets
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from showpass.auth import get_optional_user, require_role
from showpass.core.errors import NotFound, ShowPassError
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.database.payment_models import PaymentTransaction
from showpass.services import booking_service
from showpass.services.reconciliation import ReconciliationService
from showpass.services.ticket_pdf import render_ticket_pdf

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


class GuestCredentials:
    """``?reference=BK...&email=...`` proving a guest holds the booking confirmation."""

    def __init__(
        self,
        reference: Optional[str] = Query(None, max_length=40),
        email: Optional[str] = Query(None, max_length=255),
    ):
        self.reference = reference
        self.email = email

    def matches(self, booking: models.Booking) -> bool:
        if not (self.reference and self.email):
            return False
        if self.reference.strip().upper() != booking.reference.upper():
            return False
        return self.email.strip().lower() == (booking.customer_email or "").lower()


def _owned_booking(db: Session, booking_id: int, user: Optional[models.User],
                   guest: GuestCredentials) -> models.Booking:
    """
    Admins see every booking and account bookings are visible to their owner.
    Guest bookings need the reference and customer email; a mismatch looks
    like a missing booking so ids cannot be walked.
    """
    booking = booking_service.get_booking(db, booking_id)
    if user is not None and user.role == "admin":
        return booking
    if booking.user_id is None:
        if not guest.matches(booking):
            raise NotFound("Booking not found")
        return booking
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if user.id != booking.user_id:
        raise HTTPException(status_code=403, detail="Not your booking")
    return booking


# ==========================
# HOLDS
# ==========================
@router.post("", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    body: schemas.BookingCreate,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
):
    details = body.customer_details
    customer = booking_service.Customer(name=details.name, email=str(details.email), phone=details.phone)
    return booking_service.create_booking(
        db,
        showtime_id=body.showtime_id,
        seat_ids=body.seat_ids,
        customer=customer,
        user_id=user.id if user is not None else None,
        discount=body.discount,
    )


@router.get("/{booking_id}", response_model=schemas.BookingResponse)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
    guest: GuestCredentials = Depends(),
):
    return _owned_booking(db, booking_id, user, guest)


@router.put("/{booking_id}/cancel", response_model=schemas.BookingResponse)
def cancel_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
    guest: GuestCredentials = Depends(),
):
    _owned_booking(db, booking_id, user, guest)
    return booking_service.cancel_booking(db, booking_id)


# ==========================
# PAYMENTS
# ==========================
@router.post("/{booking_id}/payment", response_model=schemas.ManualPaymentResponse)
def record_payment(
    booking_id: int,
    body: schemas.ManualPaymentIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    """Box-office payment entered by staff. Gateway payments go through /bookings/payment/*."""
    result = ReconciliationService(db).record_manual_payment(
        booking_id,
        gateway=body.payment_gateway,
        method=body.payment_method,
        amount=body.amount,
        currency=body.currency,
        transaction_ref=body.gateway_transaction_id,
        response=body.gateway_response,
    )
    logger.info("Manual payment recorded for booking %s by user %s", booking_id, admin.id,
                extra={"booking_id": booking_id})
    booking = booking_service.get_booking(db, booking_id)
    txn = db.get(PaymentTransaction, result.transaction_id) if result.transaction_id else None
    return {"booking": booking, "transaction": txn, "e_ticket": booking.ticket}


@router.post("/{booking_id}/refund", response_model=schemas.BookingResponse)
def refund_booking(
    booking_id: int,
    body: Optional[schemas.RefundIn] = Body(None),
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
    guest: GuestCredentials = Depends(),
):
    _owned_booking(db, booking_id, user, guest)
    try:
        return booking_service.refund_booking(db, booking_id, reason=body.reason if body else None)
    except ShowPassError:
        raise
    except Exception:
        logger.exception("Refund crashed for booking %s", booking_id, extra={"booking_id": booking_id})
        raise HTTPException(status_code=500, detail="Refund failed")


# ==========================
# TICKETS
# ==========================
@router.get("/{booking_id}/ticket", response_model=schemas.ETicketResponse)
def get_ticket(
    booking_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
    guest: GuestCredentials = Depends(),
):
    _owned_booking(db, booking_id, user, guest)
    return booking_service.get_ticket(db, booking_id)


@router.get("/{booking_id}/ticket/pdf")
def get_ticket_pdf(
    booking_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
    guest: GuestCredentials = Depends(),
):
    booking = _owned_booking(db, booking_id, user, guest)
    ticket = booking_service.get_ticket(db, booking_id)
    pdf = render_ticket_pdf(booking, ticket)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="ticket_{booking.reference}.pdf"'},
    )
