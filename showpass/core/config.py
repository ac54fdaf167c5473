"""
Application configuration and settings
"""
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

# Database Configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./showpass.db")

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "showpass")
WEBHOOK_DEDUP_TTL_SECONDS = int(os.getenv("WEBHOOK_DEDUP_TTL_SECONDS", "86400"))

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Booking
BOOKING_HOLD_MINUTES = int(os.getenv("BOOKING_HOLD_MINUTES", "15"))
BOOKING_FEE_PERCENT = Decimal(os.getenv("BOOKING_FEE_PERCENT", "2"))
TAX_RATE_PERCENT = Decimal(os.getenv("TAX_RATE_PERCENT", "18"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")

# Razorpay (payments) and RazorpayX (payouts)
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
RAZORPAYX_ACCOUNT_NUMBER = os.getenv("RAZORPAYX_ACCOUNT_NUMBER", "")

# Cashfree PG and Payouts
CASHFREE_APP_ID = os.getenv("CASHFREE_APP_ID", "")
CASHFREE_SECRET_KEY = os.getenv("CASHFREE_SECRET_KEY", "")
CASHFREE_ENV = os.getenv("CASHFREE_ENV", "sandbox")  # sandbox | production
CASHFREE_PAYOUT_CLIENT_ID = os.getenv("CASHFREE_PAYOUT_CLIENT_ID", "")
CASHFREE_PAYOUT_CLIENT_SECRET = os.getenv("CASHFREE_PAYOUT_CLIENT_SECRET", "")
CASHFREE_PAYOUT_ENV = os.getenv("CASHFREE_PAYOUT_ENV", "TEST")  # TEST | PROD

# CCAvenue
CCAVENUE_MERCHANT_ID = os.getenv("CCAVENUE_MERCHANT_ID", "")
CCAVENUE_ACCESS_CODE = os.getenv("CCAVENUE_ACCESS_CODE", "")
CCAVENUE_WORKING_KEY = os.getenv("CCAVENUE_WORKING_KEY", "")
CCAVENUE_ENV = os.getenv("CCAVENUE_ENV", "test")  # test | production

PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "razorpay")  # razorpay | cashfree | ccavenue
PAYOUT_PROVIDER = os.getenv("PAYOUT_PROVIDER", "razorpayx")  # razorpayx | cashfree

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

# Wallet
VENDOR_HOLD_DAYS = int(os.getenv("VENDOR_HOLD_DAYS", "7"))
MIN_WITHDRAWAL_AMOUNT = Decimal(os.getenv("MIN_WITHDRAWAL_AMOUNT", "100"))

SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "300"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()  # json | text
LOG_FILE = os.getenv("LOG_FILE", "")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))


class Settings:
    PROJECT_NAME: str = "ShowPass API"
    VERSION: str = "1.0.0"
    DATABASE_URL = DATABASE_URL
    REDIS_URL = REDIS_URL
    REDIS_KEY_PREFIX = REDIS_KEY_PREFIX
    WEBHOOK_DEDUP_TTL_SECONDS = WEBHOOK_DEDUP_TTL_SECONDS
    SECRET_KEY = SECRET_KEY
    ACCESS_TOKEN_EXPIRE_MINUTES = ACCESS_TOKEN_EXPIRE_MINUTES
    BOOKING_HOLD_MINUTES = BOOKING_HOLD_MINUTES
    BOOKING_FEE_PERCENT = BOOKING_FEE_PERCENT
    TAX_RATE_PERCENT = TAX_RATE_PERCENT
    DEFAULT_CURRENCY = DEFAULT_CURRENCY
    RAZORPAY_KEY_ID = RAZORPAY_KEY_ID
    RAZORPAY_KEY_SECRET = RAZORPAY_KEY_SECRET
    RAZORPAY_WEBHOOK_SECRET = RAZORPAY_WEBHOOK_SECRET
    RAZORPAYX_ACCOUNT_NUMBER = RAZORPAYX_ACCOUNT_NUMBER
    CASHFREE_APP_ID = CASHFREE_APP_ID
    CASHFREE_SECRET_KEY = CASHFREE_SECRET_KEY
    CASHFREE_ENV = CASHFREE_ENV
    CASHFREE_PAYOUT_CLIENT_ID = CASHFREE_PAYOUT_CLIENT_ID
    CASHFREE_PAYOUT_CLIENT_SECRET = CASHFREE_PAYOUT_CLIENT_SECRET
    CASHFREE_PAYOUT_ENV = CASHFREE_PAYOUT_ENV
    CCAVENUE_MERCHANT_ID = CCAVENUE_MERCHANT_ID
    CCAVENUE_ACCESS_CODE = CCAVENUE_ACCESS_CODE
    CCAVENUE_WORKING_KEY = CCAVENUE_WORKING_KEY
    CCAVENUE_ENV = CCAVENUE_ENV
    PAYMENT_GATEWAY = PAYMENT_GATEWAY
    PAYOUT_PROVIDER = PAYOUT_PROVIDER
    PUBLIC_BASE_URL = PUBLIC_BASE_URL
    FRONTEND_URL = FRONTEND_URL
    ALLOWED_ORIGINS = ALLOWED_ORIGINS
    VENDOR_HOLD_DAYS = VENDOR_HOLD_DAYS
    MIN_WITHDRAWAL_AMOUNT = MIN_WITHDRAWAL_AMOUNT
    SCHEDULER_INTERVAL_SECONDS = SCHEDULER_INTERVAL_SECONDS
    SCHEDULER_ENABLED = SCHEDULER_ENABLED
    LOG_LEVEL = LOG_LEVEL
    LOG_FORMAT = LOG_FORMAT
    LOG_FILE = LOG_FILE
    LOG_MAX_BYTES = LOG_MAX_BYTES
    LOG_BACKUP_COUNT = LOG_BACKUP_COUNT


settings = Settings()


# ==========================
# Provider config factories
# ==========================
def razorpay_config():
    from showpass.services.gateways.razorpay_gateway import RazorpayConfig

    return RazorpayConfig(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET or settings.RAZORPAY_KEY_SECRET,
    )


def cashfree_config():
    from showpass.services.gateways.cashfree_gateway import CashfreeConfig

    return CashfreeConfig(
        app_id=settings.CASHFREE_APP_ID,
        secret_key=settings.CASHFREE_SECRET_KEY,
        production=settings.CASHFREE_ENV == "production",
        return_url=f"{settings.FRONTEND_URL}/payment/status?order_id={{order_id}}",
        notify_url=f"{settings.PUBLIC_BASE_URL}/api/bookings/payment/webhook/cashfree",
    )


def ccavenue_config():
    from showpass.services.gateways.ccavenue_gateway import CCAvenueConfig

    return CCAvenueConfig(
        merchant_id=settings.CCAVENUE_MERCHANT_ID,
        access_code=settings.CCAVENUE_ACCESS_CODE,
        working_key=settings.CCAVENUE_WORKING_KEY,
        production=settings.CCAVENUE_ENV == "production",
        redirect_url=f"{settings.PUBLIC_BASE_URL}/api/payment/ccavenue/callback",
        cancel_url=f"{settings.PUBLIC_BASE_URL}/api/payment/ccavenue/callback",
    )


def razorpayx_config():
    from showpass.services.payouts.razorpayx import RazorpayXConfig

    return RazorpayXConfig(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        account_number=settings.RAZORPAYX_ACCOUNT_NUMBER,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
    )


def cashfree_payout_config():
    from showpass.services.payouts.cashfree_payouts import CashfreePayoutConfig

    return CashfreePayoutConfig(
        client_id=settings.CASHFREE_PAYOUT_CLIENT_ID,
        client_secret=settings.CASHFREE_PAYOUT_CLIENT_SECRET,
        production=settings.CASHFREE_PAYOUT_ENV == "PROD",
    )
