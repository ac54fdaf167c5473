"""
Pay-per-view videos: country pricing, purchases, access checks and refunds.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from showpass.core.errors import (
    AlreadyRefunded,
    BusinessRuleError,
    ContentUnavailable,
    GatewayError,
    NotFound,
    RefundWindowClosed,
)
from showpass.database import models
from showpass.database.payment_models import PaymentIssue, PaymentTransaction
from showpass.services import wallet_service
from showpass.services.gateways import build_gateway
from showpass.utils.money import quantize, to_decimal
from showpass.utils.references import video_purchase_reference

logger = logging.getLogger(__name__)

RENTAL_DAYS = 7
REFUND_WINDOW = timedelta(hours=24)


def get_video(db: Session, video_id: int) -> models.Video:
    video = db.get(models.Video, video_id)
    if video is None:
        raise NotFound("Video not found")
    return video


def get_purchase(db: Session, purchase_id: int) -> models.VideoPurchase:
    purchase = db.get(models.VideoPurchase, purchase_id)
    if purchase is None:
        raise NotFound("Video purchase not found")
    return purchase


def price_for_country(video: models.Video, country_code: Optional[str],
                      purchase_type: str = "buy") -> Tuple[Decimal, str]:
    """Price and currency a viewer in ``country_code`` pays. Country overrides win over the base price."""
    override = (video.country_prices or {}).get((country_code or "").upper())
    if override:
        key = "rentalPrice" if purchase_type == "rent" and override.get("rentalPrice") else "price"
        return quantize(override[key]), override.get("currency", video.currency)
    if purchase_type == "rent" and video.rental_price is not None:
        return quantize(video.rental_price), video.currency
    return quantize(video.price), video.currency


def ensure_visible(video: models.Video, now: datetime) -> None:
    if video.visible_from is not None and now < video.visible_from:
        raise ContentUnavailable("Video is not available yet", status_code=403)
    if video.visible_until is not None and now >= video.visible_until:
        raise ContentUnavailable("Video is no longer available", status_code=410)
    if video.status != "active":
        raise ContentUnavailable("Video is no longer available", status_code=410)


def active_purchase(db: Session, user_id: int, video_id: int, now: datetime) -> Optional[models.VideoPurchase]:
    return (
        db.query(models.VideoPurchase)
        .filter(
            models.VideoPurchase.user_id == user_id,
            models.VideoPurchase.video_id == video_id,
            models.VideoPurchase.payment_status == "completed",
            or_(models.VideoPurchase.expires_at.is_(None), models.VideoPurchase.expires_at > now),
        )
        .order_by(models.VideoPurchase.completed_at.desc())
        .first()
    )


def start_purchase(db: Session, user_id: int, video_id: int, purchase_type: str,
                   country_code: Optional[str] = None, now: Optional[datetime] = None) -> models.VideoPurchase:
    now = now or datetime.utcnow()
    if purchase_type not in ("rent", "buy"):
        raise BusinessRuleError("purchaseType must be 'rent' or 'buy'")
    video = get_video(db, video_id)
    ensure_visible(video, now)
    if video.is_free:
        raise BusinessRuleError("This video is free to watch")
    if active_purchase(db, user_id, video_id, now) is not None:
        raise BusinessRuleError("You already have access to this video")

    amount, currency = price_for_country(video, country_code, purchase_type)
    if amount <= 0:
        raise BusinessRuleError("This video has no price set")

    purchase = models.VideoPurchase(
        reference=video_purchase_reference(),
        user_id=user_id,
        video_id=video_id,
        purchase_type=purchase_type,
        amount=amount,
        currency=currency,
        country_code=(country_code or "").upper() or None,
        payment_status="pending",
        created_at=now,
    )
    db.add(purchase)
    db.commit()
    db.refresh(purchase)
    logger.info("Video purchase %s started for video %s", purchase.reference, video_id,
                extra={"purchase_id": purchase.id})
    return purchase


def activate_purchase(purchase: models.VideoPurchase, now: datetime) -> None:
    """Set the access window after payment. Does not commit."""
    purchase.completed_at = now
    if purchase.purchase_type == "rent":
        purchase.expires_at = now + timedelta(days=RENTAL_DAYS)
    else:
        purchase.expires_at = None


def check_access(db: Session, user_id: int, video_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    video = get_video(db, video_id)
    ensure_visible(video, now)
    if video.is_free:
        return {"videoId": video.id, "hasAccess": True, "accessType": "free", "expiresAt": None}

    purchase = active_purchase(db, user_id, video_id, now)
    if purchase is not None:
        return {
            "videoId": video.id,
            "hasAccess": True,
            "accessType": purchase.purchase_type,
            "expiresAt": purchase.expires_at.isoformat() if purchase.expires_at else None,
        }

    lapsed = (
        db.query(models.VideoPurchase.id)
        .filter(
            models.VideoPurchase.user_id == user_id,
            models.VideoPurchase.video_id == video_id,
            models.VideoPurchase.purchase_type == "rent",
            models.VideoPurchase.payment_status == "completed",
            models.VideoPurchase.expires_at <= now,
        )
        .first()
    )
    if lapsed is not None:
        raise ContentUnavailable("Your rental has expired", status_code=410)
    raise ContentUnavailable("Purchase required to watch this video", status_code=403)


def refund_purchase(db: Session, purchase_id: int, user_id: int, gateway=None,
                    now: Optional[datetime] = None) -> models.VideoPurchase:
    """Refund a completed purchase within 24 hours of payment."""
    now = now or datetime.utcnow()
    purchase = get_purchase(db, purchase_id)
    if purchase.user_id != user_id:
        raise NotFound("Video purchase not found")
    if purchase.payment_status == "refunded":
        raise AlreadyRefunded()
    if purchase.payment_status != "completed":
        raise BusinessRuleError("Only completed purchases can be refunded")
    if purchase.completed_at is None or now - purchase.completed_at > REFUND_WINDOW:
        raise RefundWindowClosed("Refunds are only available within 24 hours of purchase")

    txn = (
        db.query(PaymentTransaction)
        .filter(
            PaymentTransaction.purpose == "video",
            PaymentTransaction.target_id == purchase.id,
            PaymentTransaction.status == "success",
        )
        .first()
    )
    if txn is None:
        raise NotFound("No successful payment found for purchase")

    gateway = gateway or build_gateway(txn.gateway)
    try:
        refund = gateway.refund(txn.gateway_transaction_id, None, "Video purchase refund",
                                currency=txn.currency, order_ref=txn.gateway_order_id)
    except GatewayError as exc:
        db.add(PaymentIssue(
            kind="refund_failed", gateway=txn.gateway, gateway_order_id=txn.gateway_order_id,
            purpose="video", target_id=purchase.id, detail=exc.message, payload={"code": exc.code},
        ))
        db.commit()
        raise

    result = db.execute(
        update(models.VideoPurchase)
        .where(models.VideoPurchase.id == purchase.id, models.VideoPurchase.payment_status == "completed")
        .values(payment_status="refunded", refunded_at=now, expires_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyRefunded()
    txn.status = "refunded"
    txn.refund_id = refund.refund_id
    txn.refunded_amount = refund.amount if refund.amount is not None else to_decimal(txn.amount)
    wallet_service.reverse_vendor_earnings(db, "video", purchase.id, now)
    db.commit()
    db.refresh(purchase)
    logger.info("Video purchase %s refunded", purchase.reference, extra={"purchase_id": purchase.id})
    return purchase


def hide_expired_videos(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    result = db.execute(
        update(models.Video)
        .where(
            models.Video.status == "active",
            models.Video.visible_until.isnot(None),
            models.Video.visible_until <= now,
        )
        .values(status="hidden")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Hid %s videos past their visibility window", result.rowcount)
    return result.rowcount


def expire_rentals(db: Session, now: Optional[datetime] = None) -> int:
    """Abandon purchases left pending for over a day. Lapsed rentals need no write."""
    now = now or datetime.utcnow()
    result = db.execute(
        update(models.VideoPurchase)
        .where(
            models.VideoPurchase.payment_status == "pending",
            models.VideoPurchase.created_at <= now - timedelta(days=1),
        )
        .values(payment_status="failed")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount
