from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from showpass.database.database import Base

MONEY = Numeric(12, 2)


# ==========================
# USERS / CATALOG
# ==========================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False, index=True)
    phone = Column(String(20), nullable=True)
    password = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="user")  # user | vendor | admin
    country_code = Column(String(2), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    bookings = relationship("Booking", back_populates="user")


class Movie(Base):
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    owner_vendor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    average_rating = Column(Numeric(3, 1), nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    showtimes = relationship("Showtime", back_populates="movie")
    reviews = relationship("Review", back_populates="movie", cascade="all, delete-orphan")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("movie_id", "user_id", name="uq_review_movie_user"),)

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(Integer, ForeignKey("movies.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    movie = relationship("Movie", back_populates="reviews")


# ==========================
# HALLS / SEATS / SHOWTIMES
# ==========================
class Hall(Base):
    __tablename__ = "halls"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    total_seats = Column(Integer, nullable=False)

    seats = relationship("Seat", back_populates="hall", order_by="(Seat.row_label, Seat.seat_number)")


class Seat(Base):
    __tablename__ = "seats"
    __table_args__ = (UniqueConstraint("hall_id", "row_label", "seat_number", name="uq_seat_position"),)

    id = Column(Integer, primary_key=True, index=True)
    hall_id = Column(Integer, ForeignKey("halls.id"), nullable=False, index=True)
    row_label = Column(String(5), nullable=False)
    seat_number = Column(Integer, nullable=False)
    seat_type = Column(String(20), nullable=False, default="regular")  # regular | premium | vip

    hall = relationship("Hall", back_populates="seats")


class Showtime(Base):
    __tablename__ = "showtimes"

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(Integer, ForeignKey("movies.id"), nullable=False, index=True)
    hall_id = Column(Integer, ForeignKey("halls.id"), nullable=False)
    show_date = Column(Date, nullable=False)
    show_time = Column(String(10), nullable=False)
    base_price = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active | cancelled | housefull
    created_at = Column(DateTime, default=datetime.utcnow)

    movie = relationship("Movie", back_populates="showtimes")
    hall = relationship("Hall")
    held_seats = relationship("ShowtimeSeat", back_populates="showtime")


class ShowtimeSeat(Base):
    """A seat that is held or booked for one showtime. Absence means free."""

    __tablename__ = "showtime_seats"
    __table_args__ = (UniqueConstraint("showtime_id", "seat_id", name="uq_showtime_seat"),)

    id = Column(Integer, primary_key=True, index=True)
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False, index=True)
    seat_id = Column(Integer, ForeignKey("seats.id"), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    showtime = relationship("Showtime", back_populates="held_seats")


# ==========================
# BOOKINGS / TICKETS
# ==========================
class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_showtime_user", "showtime_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(40), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False)
    selected_seats = Column(JSON, nullable=False, default=list)

    base_amount = Column(MONEY, nullable=False)
    fee_amount = Column(MONEY, nullable=False, default=0)
    tax_amount = Column(MONEY, nullable=False, default=0)
    discount_amount = Column(MONEY, nullable=False, default=0)
    final_amount = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    tax_policy = Column(JSON, nullable=True)

    payment_status = Column(String(20), nullable=False, default="pending")  # pending | completed | failed | refunded
    booking_status = Column(String(20), nullable=False, default="confirmed")  # confirmed | cancelled | expired
    payment_method = Column(String(20), nullable=True)  # card | wallet | upi | netbanking | cash
    transaction_id = Column(String(100), nullable=True)

    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(100), nullable=False)
    customer_phone = Column(String(20), nullable=True)

    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="bookings")
    showtime = relationship("Showtime")
    ticket = relationship("ETicket", back_populates="booking", uselist=False)

    @property
    def seat_ids(self):
        return [s["seatId"] for s in (self.selected_seats or [])]


class ETicket(Base):
    __tablename__ = "etickets"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    ticket_number = Column(String(40), unique=True, nullable=False, index=True)
    qr_data = Column(Text, nullable=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    booking = relationship("Booking", back_populates="ticket")


# ==========================
# VIDEOS
# ==========================
class Video(Base):
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    owner_vendor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    price = Column(MONEY, nullable=False, default=0)
    rental_price = Column(MONEY, nullable=True)
    currency = Column(String(3), nullable=False, default="INR")
    country_prices = Column(JSON, nullable=True)  # {"US": {"price": "4.99", "currency": "USD"}}
    is_free = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="active")  # active | hidden
    visible_from = Column(DateTime, nullable=True)
    visible_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class VideoPurchase(Base):
    __tablename__ = "video_purchases"
    __table_args__ = (Index("ix_video_purchases_video_user", "video_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(40), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    video_id = Column(Integer, ForeignKey("videos.id"), nullable=False)
    purchase_type = Column(String(10), nullable=False)  # rent | buy
    amount = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    country_code = Column(String(2), nullable=True)
    payment_status = Column(String(20), nullable=False, default="pending")  # pending | completed | failed | refunded
    transaction_id = Column(String(100), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    video = relationship("Video")


# ==========================
# VENDOR PACKAGES
# ==========================
class VendorPackage(Base):
    __tablename__ = "vendor_packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    price = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    duration_days = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)


class VendorSubscription(Base):
    __tablename__ = "vendor_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(40), unique=True, nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("vendor_packages.id"), nullable=False)
    amount = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    payment_status = Column(String(20), nullable=False, default="pending")
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    package = relationship("VendorPackage")


# ==========================
# WALLET / PAYOUTS
# ==========================
class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    available_balance = Column(MONEY, nullable=False, default=0)
    pending_balance = Column(MONEY, nullable=False, default=0)
    total_earnings = Column(MONEY, nullable=False, default=0)
    total_withdrawn = Column(MONEY, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")

    account_holder_name = Column(String(100), nullable=True)
    account_number = Column(String(40), nullable=True)
    ifsc_code = Column(String(20), nullable=True)
    bank_name = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "type", "source_type", "source_id", name="uq_wallet_txn_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # pending_credit | platform_fee | earning_reversal | withdrawal | refund
    amount = Column(MONEY, nullable=False)
    source_type = Column(String(20), nullable=False)  # booking | video | withdrawal
    source_id = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)
    available_at = Column(DateTime, nullable=True)
    is_settled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending | processing | success | failed | cancelled
    provider = Column(String(20), nullable=True)
    payee_id = Column(String(100), nullable=True)
    transfer_id = Column(String(100), unique=True, nullable=True)
    provider_reference = Column(String(100), nullable=True)
    failure_reason = Column(String(255), nullable=True)
    provider_response = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class PlatformSetting(Base):
    __tablename__ = "platform_settings"

    id = Column(Integer, primary_key=True, index=True)
    content_type = Column(String(20), unique=True, nullable=False)  # booking | video
    fee_percent = Column(Numeric(5, 2), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
