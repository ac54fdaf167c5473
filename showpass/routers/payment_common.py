# showpass/routers/payment_common.py
"""
Shared plumbing for the booking, video and vendor payment routers.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from showpass.core.config import settings
from showpass.core.errors import BusinessRuleError, GatewayError, ShowPassError, SignatureMismatch
from showpass.database import schemas
from showpass.services.gateways import GATEWAYS, build_gateway
from showpass.services.gateways.base import CustomerInfo, PaymentGateway
from showpass.services.reconciliation import ReconciliationService
from showpass.services.webhook_dedup import claim_event, release_event

logger = logging.getLogger(__name__)


def resolve_gateway(name: Optional[str]) -> PaymentGateway:
    name = (name or settings.PAYMENT_GATEWAY).lower()
    if name not in GATEWAYS:
        raise BusinessRuleError(f"Unsupported payment gateway: {name}")
    return build_gateway(name)


def customer_info(customer_id: str, name: str, email: str, phone: Optional[str] = None) -> CustomerInfo:
    return CustomerInfo(customer_id=customer_id, name=name, email=email, phone=phone)


def open_order(db: Session, gateway_name: Optional[str], purpose: str, target_id: int,
               customer: Optional[CustomerInfo] = None) -> schemas.PaymentOrderResponse:
    gateway = resolve_gateway(gateway_name)
    try:
        txn, order = ReconciliationService(db, gateway).create_order(purpose, target_id, customer)
    except ShowPassError:
        raise
    except Exception:
        logger.exception("Order creation failed for %s %s", purpose, target_id, extra={"gateway": gateway.name})
        raise HTTPException(status_code=500, detail="Could not create payment order")
    return schemas.PaymentOrderResponse(
        gateway=order.gateway,
        order_id=order.order_id,
        amount=order.amount,
        currency=order.currency,
        receipt=order.receipt,
        transaction_id=txn.id,
        checkout=order.client_payload,
    )


def verify_payment(db: Session, body: schemas.VerifyPaymentIn, purpose: str) -> dict:
    gateway = resolve_gateway(body.gateway)
    try:
        result = ReconciliationService(db, gateway).verify_and_complete(
            body.order_id, body.payment_id, body.signature, purpose=purpose
        )
    except ShowPassError:
        raise
    except Exception:
        logger.exception("Payment verification failed for order %s", body.order_id,
                         extra={"order_id": body.order_id, "gateway": gateway.name})
        raise HTTPException(status_code=500, detail="Payment verification failed")
    return result.as_dict()


async def process_webhook(request: Request, gateway_name: str, db: Session, redis: Optional[Redis]) -> dict:
    """
    Verify, de-duplicate and apply a gateway webhook.

    Only a bad signature is answered with an error status. Everything else is
    acknowledged with 200 so the provider stops retrying; problems are kept as
    PaymentIssue rows.
    """
    gateway = resolve_gateway(gateway_name)
    raw_body = await request.body()
    service = ReconciliationService(db, gateway)

    try:
        event = service.verified_event(raw_body, request.headers)
    except SignatureMismatch:
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    except GatewayError as exc:
        service.record_issue("webhook_error", gateway.name, None, exc.message, {"code": exc.code})
        logger.warning("Unreadable %s webhook: %s", gateway.name, exc.message, extra={"gateway": gateway.name})
        return {"success": True, "status": "ignored"}

    if not await claim_event(redis, gateway.name, event.event_id):
        return {"success": True, "status": "duplicate", "eventId": event.event_id}

    try:
        result = service.apply_event(event)
    except Exception as exc:
        logger.exception("Webhook %s for order %s crashed", event.event_type, event.order_id,
                         extra={"order_id": event.order_id, "gateway": gateway.name})
        db.rollback()
        service.record_issue("webhook_error", gateway.name, event.order_id, str(exc) or type(exc).__name__,
                             event.raw)
        await release_event(redis, gateway.name, event.event_id)
        return {"success": True, "status": "error", "eventId": event.event_id}

    return {
        "success": True,
        "status": result.outcome,
        "eventId": result.event_id,
        "result": result.result.as_dict() if result.result is not None else None,
    }
