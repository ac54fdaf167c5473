# showpass/routers/vendor_routes.py
"""
Vendor package subscriptions
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from showpass.auth import require_role
from showpass.core.redis import get_optional_redis
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.routers.payment_common import customer_info, open_order, process_webhook, verify_payment
from showpass.services import vendor_package_service

router = APIRouter(prefix="/vendor", tags=["Vendor Packages"])


@router.get("/packages", response_model=List[schemas.VendorPackageResponse])
def list_packages(db: Session = Depends(get_db)):
    return vendor_package_service.list_packages(db)


@router.get("/subscription", response_model=Optional[schemas.VendorSubscriptionResponse])
def current_subscription(
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    return vendor_package_service.active_subscription(db, vendor.id)


@router.post("/payment/order", response_model=schemas.PaymentOrderResponse)
def create_vendor_order(
    body: schemas.VendorOrderIn,
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    subscription = vendor_package_service.start_subscription(db, vendor.id, body.package_id)
    customer = customer_info(f"vendor_{vendor.id}", vendor.name, vendor.email, vendor.phone)
    return open_order(db, body.gateway, "vendor_package", subscription.id, customer)


@router.post("/payment/verify", response_model=schemas.CompletionResponse)
def verify_vendor_payment(
    body: schemas.VerifyPaymentIn,
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    return verify_payment(db, body, "vendor_package")


@router.post("/payment/webhook/{gateway}")
async def vendor_payment_webhook(
    gateway: str,
    request: Request,
    db: Session = Depends(get_db),
    redis: Optional[Redis] = Depends(get_optional_redis),
):
    return await process_webhook(request, gateway, db, redis)
