# showpass/routers/booking_payment_routes.py
"""
Gateway checkout for seat bookings
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from showpass.auth import get_optional_user
from showpass.core.redis import get_optional_redis
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.routers.payment_common import customer_info, open_order, process_webhook, verify_payment
from showpass.services import booking_service

router = APIRouter(prefix="/bookings/payment", tags=["Booking Payments"])


@router.post("/order", response_model=schemas.PaymentOrderResponse)
def create_booking_order(
    body: schemas.BookingOrderIn,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
):
    booking = booking_service.get_booking(db, body.booking_id)
    customer = customer_info(
        f"user_{user.id}" if user is not None else f"guest_{booking.reference}",
        booking.customer_name,
        booking.customer_email,
        booking.customer_phone,
    )
    return open_order(db, body.gateway, "booking", booking.id, customer)


@router.post("/verify", response_model=schemas.CompletionResponse)
def verify_booking_payment(body: schemas.VerifyPaymentIn, db: Session = Depends(get_db)):
    return verify_payment(db, body, "booking")


@router.post("/webhook/{gateway}")
async def booking_payment_webhook(
    gateway: str,
    request: Request,
    db: Session = Depends(get_db),
    redis: Optional[Redis] = Depends(get_optional_redis),
):
    return await process_webhook(request, gateway, db, redis)
