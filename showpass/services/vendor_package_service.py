import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from showpass.core.errors import BusinessRuleError, NotFound
from showpass.database import models
from showpass.utils.references import vendor_subscription_reference

logger = logging.getLogger(__name__)


def list_packages(db: Session) -> List[models.VendorPackage]:
    return (
        db.query(models.VendorPackage)
        .filter(models.VendorPackage.is_active.is_(True))
        .order_by(models.VendorPackage.price)
        .all()
    )


def get_subscription(db: Session, subscription_id: int) -> models.VendorSubscription:
    subscription = db.get(models.VendorSubscription, subscription_id)
    if subscription is None:
        raise NotFound("Vendor subscription not found")
    return subscription


def start_subscription(db: Session, vendor_id: int, package_id: int,
                       now: Optional[datetime] = None) -> models.VendorSubscription:
    now = now or datetime.utcnow()
    package = db.get(models.VendorPackage, package_id)
    if package is None or not package.is_active:
        raise NotFound("Package not found")
    if package.price <= 0:
        raise BusinessRuleError("Package has no price set")

    subscription = models.VendorSubscription(
        reference=vendor_subscription_reference(),
        vendor_id=vendor_id,
        package_id=package.id,
        amount=package.price,
        currency=package.currency,
        payment_status="pending",
        created_at=now,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def activate_subscription(db: Session, subscription: models.VendorSubscription, now: datetime) -> None:
    """Start the package period, stacking after any subscription still running. Does not commit."""
    current = (
        db.query(models.VendorSubscription)
        .filter(
            models.VendorSubscription.vendor_id == subscription.vendor_id,
            models.VendorSubscription.payment_status == "completed",
            models.VendorSubscription.id != subscription.id,
            models.VendorSubscription.ends_at > now,
        )
        .order_by(models.VendorSubscription.ends_at.desc())
        .first()
    )
    starts_at = current.ends_at if current is not None else now
    subscription.completed_at = now
    subscription.starts_at = starts_at
    subscription.ends_at = starts_at + timedelta(days=subscription.package.duration_days)
    logger.info("Vendor %s subscription %s active until %s", subscription.vendor_id,
                subscription.reference, subscription.ends_at)


def active_subscription(db: Session, vendor_id: int,
                        now: Optional[datetime] = None) -> Optional[models.VendorSubscription]:
    now = now or datetime.utcnow()
    return (
        db.query(models.VendorSubscription)
        .filter(
            models.VendorSubscription.vendor_id == vendor_id,
            models.VendorSubscription.payment_status == "completed",
            models.VendorSubscription.starts_at <= now,
            models.VendorSubscription.ends_at > now,
        )
        .first()
    )
