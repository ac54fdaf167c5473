"""
Vendor wallet: earning credits and their reversal, the pending -> available
sweep, withdrawals.

Balances are changed with SQL-side arithmetic (``balance = balance + x``) so
concurrent credits to one wallet never lose updates. Earning credits are
at-most-once per (source_type, source_id) through the unique constraint on
wallet_transactions.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from showpass.core.config import settings
from showpass.core.errors import BusinessRuleError, NotFound
from showpass.database import models
from showpass.database.payment_models import PaymentIssue
from showpass.utils.money import quantize, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_FEE_PERCENT = {
    "booking": Decimal("20"),
    "video": Decimal("50"),
}


def get_or_create_wallet(db: Session, vendor_id: int) -> models.Wallet:
    wallet = db.query(models.Wallet).filter(models.Wallet.vendor_id == vendor_id).first()
    if wallet is None:
        wallet = models.Wallet(
            vendor_id=vendor_id,
            available_balance=Decimal("0"),
            pending_balance=Decimal("0"),
            total_earnings=Decimal("0"),
            total_withdrawn=Decimal("0"),
        )
        db.add(wallet)
        db.flush()
    return wallet


def get_wallet(db: Session, vendor_id: int) -> models.Wallet:
    wallet = db.query(models.Wallet).filter(models.Wallet.vendor_id == vendor_id).first()
    if wallet is None:
        raise NotFound("Wallet not found")
    return wallet


def platform_fee_percent(db: Session, content_type: str) -> Decimal:
    setting = (
        db.query(models.PlatformSetting)
        .filter(models.PlatformSetting.content_type == content_type)
        .first()
    )
    if setting is not None:
        return to_decimal(setting.fee_percent)
    return DEFAULT_FEE_PERCENT.get(content_type, Decimal("20"))


def set_platform_fee_percent(db: Session, content_type: str, fee_percent: Decimal) -> models.PlatformSetting:
    fee_percent = to_decimal(fee_percent)
    if not Decimal("0") <= fee_percent <= Decimal("100"):
        raise BusinessRuleError("Platform fee must be between 0 and 100 percent")
    setting = (
        db.query(models.PlatformSetting)
        .filter(models.PlatformSetting.content_type == content_type)
        .first()
    )
    if setting is None:
        setting = models.PlatformSetting(content_type=content_type, fee_percent=fee_percent)
        db.add(setting)
    else:
        setting.fee_percent = fee_percent
    db.commit()
    return setting


def _add_balances(db: Session, wallet_id: int, **deltas) -> None:
    values = {name: getattr(models.Wallet, name) + delta for name, delta in deltas.items()}
    db.execute(
        update(models.Wallet)
        .where(models.Wallet.id == wallet_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def credit_vendor_earnings(
    db: Session,
    vendor_id: int,
    gross_amount: Decimal,
    source_type: str,
    source_id: int,
    now: Optional[datetime] = None,
) -> Optional[models.WalletTransaction]:
    """
    Credit a sale to the vendor's pending balance, net of the platform fee.

    Returns None when this source was already credited. Does not commit.
    """
    now = now or datetime.utcnow()
    wallet = get_or_create_wallet(db, vendor_id)
    already = (
        db.query(models.WalletTransaction.id)
        .filter(
            models.WalletTransaction.wallet_id == wallet.id,
            models.WalletTransaction.type == "pending_credit",
            models.WalletTransaction.source_type == source_type,
            models.WalletTransaction.source_id == source_id,
        )
        .first()
    )
    if already is not None:
        logger.info("Earnings for %s %s already credited", source_type, source_id)
        return None

    gross = quantize(gross_amount)
    fee = quantize(gross * platform_fee_percent(db, source_type) / 100)
    net = gross - fee

    credit = models.WalletTransaction(
        wallet_id=wallet.id,
        type="pending_credit",
        amount=net,
        source_type=source_type,
        source_id=source_id,
        description=f"Earnings from {source_type} #{source_id}",
        available_at=now + timedelta(days=settings.VENDOR_HOLD_DAYS),
        created_at=now,
    )
    db.add(credit)
    db.add(models.WalletTransaction(
        wallet_id=wallet.id,
        type="platform_fee",
        amount=fee,
        source_type=source_type,
        source_id=source_id,
        description=f"Platform fee on {source_type} #{source_id}",
        is_settled=True,
        created_at=now,
    ))
    db.flush()
    _add_balances(db, wallet.id, pending_balance=net, total_earnings=net)
    logger.info("Credited %s (fee %s) to vendor %s for %s %s", net, fee, vendor_id, source_type, source_id)
    return credit


def process_pending_funds(db: Session, now: Optional[datetime] = None) -> int:
    """Move matured pending credits to the available balance. Returns credits settled."""
    now = now or datetime.utcnow()
    matured = (
        db.query(models.WalletTransaction)
        .filter(
            models.WalletTransaction.type == "pending_credit",
            models.WalletTransaction.is_settled.is_(False),
            models.WalletTransaction.available_at <= now,
        )
        .all()
    )
    settled = 0
    for credit in matured:
        result = db.execute(
            update(models.WalletTransaction)
            .where(models.WalletTransaction.id == credit.id, models.WalletTransaction.is_settled.is_(False))
            .values(is_settled=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        _add_balances(db, credit.wallet_id, pending_balance=-credit.amount, available_balance=credit.amount)
        db.commit()
        settled += 1
    if settled:
        logger.info("Released %s matured vendor credits", settled)
    return settled


def reverse_vendor_earnings(
    db: Session,
    source_type: str,
    source_id: int,
    now: Optional[datetime] = None,
) -> Optional[models.WalletTransaction]:
    """
    Take back the vendor's net credit for a refunded sale.

    An unmatured credit comes out of the pending balance and is withdrawn
    from the sweep; a matured one comes out of the available balance, which
    may go negative until later earnings cover it. Returns None when the
    source was never credited or was already reversed. Does not commit.
    """
    now = now or datetime.utcnow()
    credit = (
        db.query(models.WalletTransaction)
        .filter(
            models.WalletTransaction.type == "pending_credit",
            models.WalletTransaction.source_type == source_type,
            models.WalletTransaction.source_id == source_id,
        )
        .first()
    )
    if credit is None:
        return None
    already = (
        db.query(models.WalletTransaction.id)
        .filter(
            models.WalletTransaction.wallet_id == credit.wallet_id,
            models.WalletTransaction.type == "earning_reversal",
            models.WalletTransaction.source_type == source_type,
            models.WalletTransaction.source_id == source_id,
        )
        .first()
    )
    if already is not None:
        logger.info("Earnings for %s %s already reversed", source_type, source_id)
        return None

    unmatured = db.execute(
        update(models.WalletTransaction)
        .where(models.WalletTransaction.id == credit.id, models.WalletTransaction.is_settled.is_(False))
        .values(is_settled=True)
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    reversal = models.WalletTransaction(
        wallet_id=credit.wallet_id,
        type="earning_reversal",
        amount=credit.amount,
        source_type=source_type,
        source_id=source_id,
        description=f"Refund of {source_type} #{source_id}",
        is_settled=True,
        created_at=now,
    )
    db.add(reversal)
    db.flush()
    if unmatured:
        _add_balances(db, credit.wallet_id, pending_balance=-credit.amount, total_earnings=-credit.amount)
    else:
        _add_balances(db, credit.wallet_id, available_balance=-credit.amount, total_earnings=-credit.amount)
    logger.info("Reversed %s of earnings for refunded %s %s", credit.amount, source_type, source_id)
    return reversal


def update_bank_details(db: Session, vendor_id: int, account_holder_name: str, account_number: str,
                        ifsc_code: str, bank_name: Optional[str] = None) -> models.Wallet:
    wallet = get_or_create_wallet(db, vendor_id)
    wallet.account_holder_name = account_holder_name
    wallet.account_number = account_number
    wallet.ifsc_code = ifsc_code.upper()
    wallet.bank_name = bank_name
    db.commit()
    db.refresh(wallet)
    return wallet


def list_transactions(db: Session, vendor_id: int, limit: int = 50) -> List[models.WalletTransaction]:
    wallet = get_wallet(db, vendor_id)
    return (
        db.query(models.WalletTransaction)
        .filter(models.WalletTransaction.wallet_id == wallet.id)
        .order_by(models.WalletTransaction.created_at.desc())
        .limit(limit)
        .all()
    )


# ==========================
# WITHDRAWALS
# ==========================
def get_withdrawal(db: Session, withdrawal_id: int) -> models.WithdrawalRequest:
    withdrawal = db.get(models.WithdrawalRequest, withdrawal_id)
    if withdrawal is None:
        raise NotFound("Withdrawal request not found")
    return withdrawal


def list_withdrawals(db: Session, vendor_id: int, limit: int = 50) -> List[models.WithdrawalRequest]:
    return (
        db.query(models.WithdrawalRequest)
        .filter(models.WithdrawalRequest.vendor_id == vendor_id)
        .order_by(models.WithdrawalRequest.created_at.desc())
        .limit(limit)
        .all()
    )


def request_withdrawal(db: Session, vendor_id: int, amount: Decimal,
                       now: Optional[datetime] = None) -> models.WithdrawalRequest:
    now = now or datetime.utcnow()
    amount = quantize(amount)
    if amount < settings.MIN_WITHDRAWAL_AMOUNT:
        raise BusinessRuleError(f"Minimum withdrawal amount is {settings.MIN_WITHDRAWAL_AMOUNT}")

    wallet = get_wallet(db, vendor_id)
    if not (wallet.account_number and wallet.ifsc_code and wallet.account_holder_name):
        raise BusinessRuleError("Add bank details before requesting a withdrawal")

    open_request = (
        db.query(models.WithdrawalRequest.id)
        .filter(
            models.WithdrawalRequest.vendor_id == vendor_id,
            models.WithdrawalRequest.status.in_(("pending", "processing")),
        )
        .first()
    )
    if open_request is not None:
        raise BusinessRuleError("A withdrawal request is already in progress")

    result = db.execute(
        update(models.Wallet)
        .where(models.Wallet.id == wallet.id, models.Wallet.available_balance >= amount)
        .values(available_balance=models.Wallet.available_balance - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise BusinessRuleError("Insufficient available balance")

    withdrawal = models.WithdrawalRequest(vendor_id=vendor_id, amount=amount, status="pending", created_at=now)
    db.add(withdrawal)
    db.flush()
    db.add(models.WalletTransaction(
        wallet_id=wallet.id,
        type="withdrawal",
        amount=amount,
        source_type="withdrawal",
        source_id=withdrawal.id,
        description=f"Withdrawal request #{withdrawal.id}",
        is_settled=False,
        created_at=now,
    ))
    db.commit()
    db.refresh(withdrawal)
    logger.info("Vendor %s requested withdrawal %s of %s", vendor_id, withdrawal.id, amount,
                extra={"withdrawal_id": withdrawal.id})
    return withdrawal


def _refund_to_wallet(db: Session, withdrawal: models.WithdrawalRequest, now: datetime) -> None:
    wallet = get_wallet(db, withdrawal.vendor_id)
    db.add(models.WalletTransaction(
        wallet_id=wallet.id,
        type="refund",
        amount=withdrawal.amount,
        source_type="withdrawal",
        source_id=withdrawal.id,
        description=f"Withdrawal #{withdrawal.id} returned to balance",
        is_settled=True,
        created_at=now,
    ))
    db.flush()
    _add_balances(db, wallet.id, available_balance=withdrawal.amount)


def _transition(db: Session, withdrawal_id: int, from_states, **values) -> bool:
    result = db.execute(
        update(models.WithdrawalRequest)
        .where(models.WithdrawalRequest.id == withdrawal_id, models.WithdrawalRequest.status.in_(from_states))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def cancel_withdrawal(db: Session, withdrawal_id: int, vendor_id: int,
                      now: Optional[datetime] = None) -> models.WithdrawalRequest:
    now = now or datetime.utcnow()
    withdrawal = get_withdrawal(db, withdrawal_id)
    if withdrawal.vendor_id != vendor_id:
        raise NotFound("Withdrawal request not found")
    if not _transition(db, withdrawal_id, ("pending",), status="cancelled", completed_at=now):
        db.rollback()
        raise BusinessRuleError("Only pending withdrawals can be cancelled")
    _refund_to_wallet(db, withdrawal, now)
    db.commit()
    db.refresh(withdrawal)
    return withdrawal


def mark_processing(db: Session, withdrawal: models.WithdrawalRequest, provider: str, transfer_id: str,
                    now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    ok = _transition(db, withdrawal.id, ("pending",), status="processing", provider=provider,
                     transfer_id=transfer_id, processed_at=now, failure_reason=None)
    db.commit()
    db.refresh(withdrawal)
    return ok


def fail_withdrawal(db: Session, withdrawal: models.WithdrawalRequest, reason: str, raw=None,
                    now: Optional[datetime] = None) -> bool:
    """Mark failed and return the amount to the vendor's balance. False if already terminal."""
    now = now or datetime.utcnow()
    if not _transition(db, withdrawal.id, ("pending", "processing"), status="failed",
                       failure_reason=(reason or "")[:255], provider_response=raw):
        db.rollback()
        return False
    refunded = (
        db.query(models.WalletTransaction.id)
        .filter(
            models.WalletTransaction.type == "refund",
            models.WalletTransaction.source_type == "withdrawal",
            models.WalletTransaction.source_id == withdrawal.id,
        )
        .first()
    )
    if refunded is None:
        _refund_to_wallet(db, withdrawal, now)
    db.commit()
    db.refresh(withdrawal)
    logger.warning("Withdrawal %s failed: %s", withdrawal.id, reason, extra={"withdrawal_id": withdrawal.id})
    return True


def complete_withdrawal(db: Session, withdrawal: models.WithdrawalRequest, provider_reference: Optional[str] = None,
                        now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    if not _transition(db, withdrawal.id, ("processing",), status="success", completed_at=now,
                       provider_reference=provider_reference):
        db.rollback()
        return False
    wallet = get_wallet(db, withdrawal.vendor_id)
    _add_balances(db, wallet.id, total_withdrawn=withdrawal.amount)
    db.execute(
        update(models.WalletTransaction)
        .where(
            models.WalletTransaction.type == "withdrawal",
            models.WalletTransaction.source_type == "withdrawal",
            models.WalletTransaction.source_id == withdrawal.id,
        )
        .values(is_settled=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(withdrawal)
    logger.info("Withdrawal %s paid out", withdrawal.id, extra={"withdrawal_id": withdrawal.id})
    return True


def apply_payout_event(db: Session, transfer_id: str, event: str, reason: Optional[str] = None,
                       provider_reference: Optional[str] = None, raw=None) -> Optional[models.WithdrawalRequest]:
    """Apply TRANSFER_SUCCESS / TRANSFER_FAILED / TRANSFER_REVERSED. Unknown transfers return None."""
    withdrawal = (
        db.query(models.WithdrawalRequest)
        .filter(models.WithdrawalRequest.transfer_id == transfer_id)
        .first()
    )
    if withdrawal is None:
        logger.warning("Payout event %s for unknown transfer %s", event, transfer_id,
                       extra={"transfer_id": transfer_id})
        return None

    if event == "TRANSFER_SUCCESS":
        if withdrawal.status in ("failed", "cancelled"):
            # money left the account after the balance was already returned
            db.add(PaymentIssue(
                kind="payout_conflict",
                gateway=withdrawal.provider,
                gateway_order_id=transfer_id,
                purpose="withdrawal",
                target_id=withdrawal.id,
                detail=f"Transfer succeeded but withdrawal #{withdrawal.id} is {withdrawal.status} "
                       f"and {withdrawal.amount} was returned to the wallet",
                payload=raw,
            ))
            db.commit()
            logger.error("Payout success for %s withdrawal %s", withdrawal.status, withdrawal.id,
                         extra={"transfer_id": transfer_id, "withdrawal_id": withdrawal.id})
        else:
            complete_withdrawal(db, withdrawal, provider_reference=provider_reference)
    elif event in ("TRANSFER_FAILED", "TRANSFER_REVERSED", "TRANSFER_REJECTED"):
        if withdrawal.status == "success" and event == "TRANSFER_REVERSED":
            # reversal after success: reopen so the refund path applies
            _transition(db, withdrawal.id, ("success",), status="processing")
            wallet = get_wallet(db, withdrawal.vendor_id)
            _add_balances(db, wallet.id, total_withdrawn=-withdrawal.amount)
            db.commit()
        fail_withdrawal(db, withdrawal, reason or event, raw)
    else:
        logger.info("Ignoring payout event %s for transfer %s", event, transfer_id)
    db.refresh(withdrawal)
    return withdrawal
