# showpass/routers/wallet_routes.py
"""
Vendor wallet, withdrawals and payout provider callbacks
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from showpass.auth import require_role
from showpass.core.errors import PayoutError, ShowPassError
from showpass.core.redis import get_optional_redis
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.services import wallet_service
from showpass.services.payouts import build_payout_provider
from showpass.services.payouts.orchestrator import PayoutOrchestrator
from showpass.services.webhook_dedup import claim_event, release_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["Wallet"])


# ==========================
# VENDOR
# ==========================
@router.get("", response_model=schemas.WalletResponse)
def get_wallet(db: Session = Depends(get_db), vendor: models.User = Depends(require_role("vendor"))):
    wallet = wallet_service.get_or_create_wallet(db, vendor.id)
    db.commit()
    return wallet


@router.put("/bank-details", response_model=schemas.WalletResponse)
def update_bank_details(
    body: schemas.BankDetailsIn,
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    return wallet_service.update_bank_details(
        db, vendor.id, body.account_holder_name, body.account_number, body.ifsc_code, body.bank_name
    )


@router.get("/transactions", response_model=List[schemas.WalletTransactionResponse])
def list_transactions(
    limit: int = 50,
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    return wallet_service.list_transactions(db, vendor.id, limit=min(max(limit, 1), 200))


@router.get("/withdrawals", response_model=List[schemas.WithdrawalResponse])
def list_withdrawals(db: Session = Depends(get_db), vendor: models.User = Depends(require_role("vendor"))):
    return wallet_service.list_withdrawals(db, vendor.id)


@router.post("/withdrawals", response_model=schemas.WithdrawalResponse, status_code=201)
def request_withdrawal(
    body: schemas.WithdrawalIn,
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    return wallet_service.request_withdrawal(db, vendor.id, body.amount)


@router.post("/withdrawals/{withdrawal_id}/cancel", response_model=schemas.WithdrawalResponse)
def cancel_withdrawal(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    vendor: models.User = Depends(require_role("vendor")),
):
    return wallet_service.cancel_withdrawal(db, withdrawal_id, vendor.id)


# ==========================
# ADMIN
# ==========================
@router.post("/admin/withdrawals/{withdrawal_id}/process", response_model=schemas.WithdrawalResponse)
def process_withdrawal(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    orchestrator = PayoutOrchestrator(db, build_payout_provider())
    try:
        return orchestrator.process_withdrawal(withdrawal_id)
    except ShowPassError:
        raise
    except Exception:
        logger.exception("Payout crashed for withdrawal %s", withdrawal_id, extra={"withdrawal_id": withdrawal_id})
        raise HTTPException(status_code=500, detail="Payout processing failed")


@router.post("/admin/withdrawals/{withdrawal_id}/sync-status", response_model=schemas.WithdrawalResponse)
def sync_withdrawal_status(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    orchestrator = PayoutOrchestrator(db, build_payout_provider())
    try:
        return orchestrator.sync_withdrawal(withdrawal_id)
    except ShowPassError:
        raise
    except Exception:
        logger.exception("Status sync crashed for withdrawal %s", withdrawal_id,
                         extra={"withdrawal_id": withdrawal_id})
        raise HTTPException(status_code=500, detail="Payout status sync failed")


@router.put("/admin/platform-fee")
def set_platform_fee(
    body: schemas.PlatformFeeIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    setting = wallet_service.set_platform_fee_percent(db, body.content_type, body.fee_percent)
    return {"contentType": setting.content_type, "feePercent": str(setting.fee_percent)}


# ==========================
# PROVIDER CALLBACKS
# ==========================
@router.post("/webhooks/payout")
async def payout_webhook(
    request: Request,
    db: Session = Depends(get_db),
    redis: Optional[Redis] = Depends(get_optional_redis),
):
    """Transfer status pushed by the payout provider. Always 200 unless the signature is bad."""
    provider = build_payout_provider()
    raw_body = await request.body()
    if not provider.verify_webhook_signature(raw_body, request.headers):
        logger.warning("Rejected %s payout webhook with bad signature", provider.name,
                       extra={"event": "signature_mismatch"})
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = provider.parse_webhook(raw_body)
    except PayoutError as exc:
        logger.warning("Unreadable %s payout webhook: %s", provider.name, exc.message)
        return {"success": True, "status": "ignored"}

    event_id = f"{event.transfer_id}:{event.event}"
    if not await claim_event(redis, f"payout_{provider.name}", event_id):
        return {"success": True, "status": "duplicate"}

    try:
        withdrawal = wallet_service.apply_payout_event(
            db, event.transfer_id, event.event, reason=event.reason,
            provider_reference=event.provider_reference, raw=event.raw,
        )
    except Exception:
        logger.exception("Payout webhook %s for transfer %s crashed", event.event, event.transfer_id,
                         extra={"transfer_id": event.transfer_id})
        db.rollback()
        await release_event(redis, f"payout_{provider.name}", event_id)
        return {"success": True, "status": "error"}

    if withdrawal is None:
        return {"success": True, "status": "unknown_transfer"}
    return {"success": True, "status": withdrawal.status, "withdrawalId": withdrawal.id}
