"""
Payment-related database models
"""
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, Numeric, String, Text, UniqueConstraint

from showpass.database.database import Base


class PaymentTransaction(Base):
    """One row per gateway attempt. ``purpose``/``target_id`` point at the booking or purchase."""

    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("gateway", "gateway_order_id", name="uq_payment_gateway_order"),
        UniqueConstraint("gateway", "gateway_transaction_id", name="uq_payment_gateway_txn"),
    )

    id = Column(Integer, primary_key=True, index=True)
    purpose = Column(String(20), nullable=False)  # booking | video | vendor_package
    target_id = Column(Integer, nullable=False, index=True)
    target_reference = Column(String(40), nullable=False)
    gateway = Column(String(20), nullable=False)  # razorpay | cashfree | ccavenue | cash
    gateway_order_id = Column(String(100), nullable=True, index=True)
    gateway_transaction_id = Column(String(100), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default="pending")  # pending | success | failed | refunded
    payment_method = Column(String(20), nullable=True)
    gateway_response = Column(JSON, nullable=True)
    refund_id = Column(String(100), nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PaymentIssue(Base):
    """Reconciliation problems kept for operator review."""

    __tablename__ = "payment_issues"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(40), nullable=False)  # late_success | amount_mismatch | duplicate_payment | refund_failed | payout_conflict | ...
    gateway = Column(String(20), nullable=True)
    gateway_order_id = Column(String(100), nullable=True, index=True)
    purpose = Column(String(20), nullable=True)
    target_id = Column(Integer, nullable=True)
    detail = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# at most one successful attempt per booking/purchase
Index(
    "uq_payment_one_success",
    PaymentTransaction.purpose,
    PaymentTransaction.target_id,
    unique=True,
    sqlite_where=PaymentTransaction.status == "success",
    postgresql_where=PaymentTransaction.status == "success",
)
