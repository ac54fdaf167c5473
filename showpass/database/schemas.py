# showpass/database/schemas.py
# =========================================================
# Request / response schemas (Pydantic v2, camelCase on the wire)
# =========================================================

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


# =========================================================
# Base Config
# =========================================================
class ConfigModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


# =========================================================
# Bookings
# =========================================================
class CustomerIn(ConfigModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=20)


class SelectedSeatIn(ConfigModel):
    seat_id: int


class PricingIn(ConfigModel):
    discount_amount: Decimal = Field(Decimal("0"), ge=0)


class BookingCreate(ConfigModel):
    showtime_id: int
    selected_seats: List[Union[int, SelectedSeatIn]] = Field(
        ..., min_length=1, validation_alias=AliasChoices("selectedSeats", "seatIds")
    )
    customer_details: CustomerIn = Field(..., validation_alias=AliasChoices("customerDetails", "customer"))
    pricing: Optional[PricingIn] = None

    @property
    def seat_ids(self) -> List[int]:
        return [s if isinstance(s, int) else s.seat_id for s in self.selected_seats]

    @property
    def discount(self) -> Decimal:
        return self.pricing.discount_amount if self.pricing else Decimal("0")


class SeatLine(ConfigModel):
    seat_id: int
    row_label: str
    seat_number: int
    seat_type: str
    seat_price: Decimal


class ETicketResponse(ConfigModel):
    id: int
    booking_id: int
    ticket_number: str
    qr_data: str
    is_valid: bool
    is_used: bool
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BookingResponse(ConfigModel):
    id: int
    reference: str
    user_id: Optional[int] = None
    showtime_id: int
    selected_seats: List[SeatLine]
    base_amount: Decimal
    fee_amount: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    currency: str
    tax_policy: Optional[Dict[str, Any]] = None
    payment_status: str
    booking_status: str
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    expires_at: datetime
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class ManualPaymentIn(ConfigModel):
    payment_gateway: str = "cash"
    payment_method: str = "cash"
    amount: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None


class RefundIn(ConfigModel):
    reason: Optional[str] = Field(None, max_length=255)


class TransactionResponse(ConfigModel):
    id: int
    purpose: str
    target_id: int
    gateway: str
    gateway_order_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    payment_method: Optional[str] = None
    processed_at: Optional[datetime] = None


class ManualPaymentResponse(ConfigModel):
    booking: BookingResponse
    transaction: Optional[TransactionResponse] = None
    e_ticket: Optional[ETicketResponse] = None


# =========================================================
# Gateway payments
# =========================================================
class BookingOrderIn(ConfigModel):
    booking_id: int
    gateway: Optional[str] = None


class VideoOrderIn(ConfigModel):
    video_id: int
    purchase_type: str = Field("buy", pattern="^(rent|buy)$")
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)
    gateway: Optional[str] = None


class VendorOrderIn(ConfigModel):
    package_id: int
    gateway: Optional[str] = None


class PaymentOrderResponse(ConfigModel):
    gateway: str
    order_id: str
    amount: Decimal
    currency: str
    receipt: str
    transaction_id: int
    checkout: Dict[str, Any]


class VerifyPaymentIn(ConfigModel):
    gateway: Optional[str] = None
    order_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class CompletionResponse(ConfigModel):
    purpose: str
    target_id: int
    reference: str
    status: str
    already_processed: bool = False
    transaction_id: Optional[int] = None
    ticket_number: Optional[str] = None


# =========================================================
# Videos
# =========================================================
class VideoPurchaseResponse(ConfigModel):
    id: int
    reference: str
    video_id: int
    purchase_type: str
    amount: Decimal
    currency: str
    country_code: Optional[str] = None
    payment_status: str
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class VideoAccessResponse(ConfigModel):
    video_id: int
    has_access: bool
    access_type: str
    expires_at: Optional[str] = None


# =========================================================
# Vendor packages
# =========================================================
class VendorPackageResponse(ConfigModel):
    id: int
    name: str
    price: Decimal
    currency: str
    duration_days: int


class VendorSubscriptionResponse(ConfigModel):
    id: int
    reference: str
    package_id: int
    amount: Decimal
    currency: str
    payment_status: str
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


# =========================================================
# Wallet
# =========================================================
class WalletResponse(ConfigModel):
    vendor_id: int
    available_balance: Decimal
    pending_balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    currency: str
    account_holder_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    bank_name: Optional[str] = None


class WalletTransactionResponse(ConfigModel):
    id: int
    type: str
    amount: Decimal
    source_type: str
    source_id: int
    description: Optional[str] = None
    available_at: Optional[datetime] = None
    is_settled: bool
    created_at: Optional[datetime] = None


class BankDetailsIn(ConfigModel):
    account_holder_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(..., pattern=r"^\d{6,20}$")
    ifsc_code: str = Field(..., pattern=r"^[A-Za-z]{4}0[A-Za-z0-9]{6}$")
    bank_name: Optional[str] = Field(None, max_length=100)


class WithdrawalIn(ConfigModel):
    amount: Decimal = Field(..., gt=0)


class WithdrawalResponse(ConfigModel):
    id: int
    vendor_id: int
    amount: Decimal
    status: str
    provider: Optional[str] = None
    transfer_id: Optional[str] = None
    provider_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class PlatformFeeIn(ConfigModel):
    content_type: str = Field(..., pattern="^(booking|video)$")
    fee_percent: Decimal = Field(..., ge=0, le=100)


# =========================================================
# Reviews
# =========================================================
class ReviewIn(ConfigModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewResponse(ConfigModel):
    id: int
    movie_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
