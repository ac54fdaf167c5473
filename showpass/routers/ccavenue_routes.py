# showpass/routers/ccavenue_routes.py
"""
CCAvenue posts the encrypted payment result back through the customer's
browser. We complete the order and send the browser on to the frontend.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from showpass.core.config import settings
from showpass.core.errors import ShowPassError
from showpass.database.database import get_db
from showpass.routers.payment_common import resolve_gateway
from showpass.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment/ccavenue", tags=["CCAvenue"])


def _status_redirect(order_id: Optional[str], status: str, **params) -> RedirectResponse:
    query = {"order_id": order_id or "", "status": status}
    query.update({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(url=f"{settings.FRONTEND_URL}/payment/status?{urlencode(query)}", status_code=303)


@router.post("/callback")
async def ccavenue_callback(request: Request, db: Session = Depends(get_db)):
    gateway = resolve_gateway("ccavenue")
    enc_resp = gateway.enc_resp_from_body(await request.body())
    if not enc_resp:
        return _status_redirect(None, "failed", reason="missing_response")

    try:
        fields = gateway.decrypt_response(enc_resp)
    except ValueError:
        logger.warning("CCAvenue callback could not be decrypted", extra={"gateway": gateway.name})
        return _status_redirect(None, "failed", reason="invalid_response")

    order_id = fields.get("order_id")
    try:
        result = ReconciliationService(db, gateway).verify_and_complete(order_id, fields.get("tracking_id"), enc_resp)
    except ShowPassError as exc:
        logger.warning("CCAvenue order %s not completed: %s", order_id, exc.message,
                       extra={"order_id": order_id, "gateway": gateway.name})
        return _status_redirect(order_id, "failed", reason=type(exc).__name__)

    return _status_redirect(order_id, result.status, type=result.purpose, reference=result.reference,
                            ticket=result.ticket_number)
