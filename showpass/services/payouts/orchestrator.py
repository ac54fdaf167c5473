"""
Withdrawal payouts: register the vendor as a payee, then request the transfer.

Identifiers are deterministic (``VENDOR_{vendorId}``, ``WD_{withdrawalId}``)
so a retried withdrawal reuses the payee and the provider deduplicates the
transfer. The payee id is stored on the withdrawal after the first step.

Only a definite rejection fails the withdrawal and returns the money. When
the transfer request ends with an uncertain error the withdrawal stays
``processing`` until a status sync or the provider webhook settles it.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from showpass.core.errors import BusinessRuleError, NotFound, PayoutError
from showpass.database import models
from showpass.services import wallet_service
from showpass.services.payouts.base import (
    BankDetails,
    ContactInfo,
    PayoutProvider,
    PayoutStatus,
    TransferResult,
    payee_ref,
    transfer_ref,
)

logger = logging.getLogger(__name__)

# Errors after which the transfer may or may not have been executed
UNCERTAIN_CODES = frozenset({"network_error", "provider_unavailable", "malformed_response"})


class PayoutOrchestrator:
    def __init__(self, db: Session, provider: PayoutProvider):
        self.db = db
        self.provider = provider

    def _payee_details(self, withdrawal: models.WithdrawalRequest):
        wallet = wallet_service.get_wallet(self.db, withdrawal.vendor_id)
        vendor = self.db.get(models.User, withdrawal.vendor_id)
        if vendor is None:
            raise NotFound("Vendor not found")
        if not (wallet.account_number and wallet.ifsc_code and wallet.account_holder_name):
            raise BusinessRuleError("Vendor has no bank details on file")
        bank = BankDetails(
            account_holder_name=wallet.account_holder_name,
            account_number=wallet.account_number,
            ifsc=wallet.ifsc_code,
            bank_name=wallet.bank_name,
        )
        contact = ContactInfo(name=vendor.name, email=vendor.email, phone=vendor.phone or "")
        return bank, contact

    def process_withdrawal(self, withdrawal_id: int, now: Optional[datetime] = None) -> models.WithdrawalRequest:
        now = now or datetime.utcnow()
        withdrawal = wallet_service.get_withdrawal(self.db, withdrawal_id)
        if withdrawal.status != "pending":
            raise BusinessRuleError(f"Withdrawal is {withdrawal.status}")
        bank, contact = self._payee_details(withdrawal)
        log_extra = {"withdrawal_id": withdrawal.id}

        sent = False
        try:
            if not withdrawal.payee_id:
                payee = self.provider.ensure_payee(payee_ref(withdrawal.vendor_id), bank, contact)
                if not payee.ok:
                    raise PayoutError("payee_failed", payee.reason or "Payee registration failed",
                                      raw=payee.raw, step="payee")
                withdrawal.payee_id = payee.payee_id
                self.db.commit()
                logger.info("Payee %s for vendor %s (%s)", payee.payee_id, withdrawal.vendor_id, payee.kind,
                            extra=log_extra)

            transfer_id = transfer_ref(withdrawal.id)
            if not wallet_service.mark_processing(self.db, withdrawal, self.provider.name, transfer_id, now):
                raise BusinessRuleError("Withdrawal is already being processed")
            sent = True
            transfer = self.provider.request_transfer(transfer_id, withdrawal.payee_id, withdrawal.amount,
                                                      remarks=f"Withdrawal {withdrawal.id}")
        except PayoutError as exc:
            detail = {"code": exc.code, "step": exc.step, "raw": exc.raw}
            if sent and exc.code in UNCERTAIN_CODES:
                # the provider may have executed the transfer; sync or webhook settles it
                logger.warning("Payout for withdrawal %s has unknown outcome: %s", withdrawal.id, exc.message,
                               extra=log_extra)
                withdrawal.provider_response = detail
                self.db.commit()
                self.db.refresh(withdrawal)
                return withdrawal
            logger.error("Payout for withdrawal %s failed at %s: %s", withdrawal.id, exc.step, exc.message,
                         extra=log_extra)
            wallet_service.fail_withdrawal(self.db, withdrawal, exc.message, detail, now)
            raise

        return self._apply(withdrawal, transfer, now)

    def _apply(self, withdrawal: models.WithdrawalRequest, transfer: TransferResult,
               now: datetime) -> models.WithdrawalRequest:
        withdrawal.provider_reference = transfer.provider_reference or withdrawal.provider_reference
        withdrawal.provider_response = transfer.raw
        self.db.commit()
        if transfer.status == PayoutStatus.SUCCESS:
            wallet_service.complete_withdrawal(self.db, withdrawal, transfer.provider_reference, now)
        elif transfer.status == PayoutStatus.FAILED:
            wallet_service.fail_withdrawal(self.db, withdrawal, transfer.reason or "Transfer failed",
                                           transfer.raw, now)
        self.db.refresh(withdrawal)
        return withdrawal

    def get_transfer_status(self, transfer_id: str) -> TransferResult:
        return self.provider.get_transfer_status(transfer_id)

    def sync_withdrawal(self, withdrawal_id: int, now: Optional[datetime] = None) -> models.WithdrawalRequest:
        """Poll the provider for a processing withdrawal and apply the result."""
        now = now or datetime.utcnow()
        withdrawal = wallet_service.get_withdrawal(self.db, withdrawal_id)
        if not withdrawal.transfer_id:
            raise BusinessRuleError("Withdrawal has not been sent for payout")
        if withdrawal.status != "processing":
            return withdrawal
        return self._apply(withdrawal, self.get_transfer_status(withdrawal.transfer_id), now)
