# showpass/routers/video_routes.py
"""
Pay-per-view video purchases and access checks
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from showpass.auth import get_current_user
from showpass.core.redis import get_optional_redis
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.routers.payment_common import customer_info, open_order, process_webhook, verify_payment
from showpass.services import video_service

router = APIRouter(prefix="/video", tags=["Videos"])


@router.post("/payment/order", response_model=schemas.PaymentOrderResponse)
def create_video_order(
    body: schemas.VideoOrderIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    purchase = video_service.start_purchase(
        db, user.id, body.video_id, body.purchase_type, body.country_code or user.country_code
    )
    customer = customer_info(f"user_{user.id}", user.name, user.email, user.phone)
    return open_order(db, body.gateway, "video", purchase.id, customer)


@router.post("/payment/verify", response_model=schemas.CompletionResponse)
def verify_video_payment(
    body: schemas.VerifyPaymentIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return verify_payment(db, body, "video")


@router.post("/payment/webhook/{gateway}")
async def video_payment_webhook(
    gateway: str,
    request: Request,
    db: Session = Depends(get_db),
    redis: Optional[Redis] = Depends(get_optional_redis),
):
    return await process_webhook(request, gateway, db, redis)


@router.post("/purchases/{purchase_id}/refund", response_model=schemas.VideoPurchaseResponse)
def refund_video_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return video_service.refund_purchase(db, purchase_id, user.id)


@router.get("/{video_id}/access", response_model=schemas.VideoAccessResponse)
def check_video_access(
    video_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return video_service.check_access(db, user.id, video_id)
