from datetime import timedelta
from decimal import Decimal

import pytest

from showpass.core.errors import (
    AlreadyRefunded,
    BusinessRuleError,
    ContentUnavailable,
    GatewayError,
    NotFound,
    RefundWindowClosed,
)
from showpass.database import models
from showpass.database.payment_models import PaymentIssue
from showpass.services import video_service, wallet_service
from showpass.services.reconciliation import ReconciliationService
from tests.factories import NOW, FakeGateway, make_user, make_video

US_PRICING = {"US": {"price": "4.99", "rentalPrice": "1.99", "currency": "USD"}}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def buyer(db):
    return make_user(db, country_code="IN")


def _paid_purchase(db, gateway, user_id, video_id, purchase_type="buy", now=NOW):
    purchase = video_service.start_purchase(db, user_id, video_id, purchase_type, None, now=now)
    service = ReconciliationService(db, gateway)
    _, order = service.create_order("video", purchase.id, now=now)
    payment_id = f"pay_{purchase.id}"
    gateway.pay(order.order_id, payment_id)
    service.verify_and_complete(order.order_id, payment_id, gateway.signature(order.order_id, payment_id),
                                purpose="video", now=now)
    db.refresh(purchase)
    return purchase


class TestPricing:
    def test_base_prices(self, db):
        video = make_video(db)
        assert video_service.price_for_country(video, None, "buy") == (Decimal("99.00"), "INR")
        assert video_service.price_for_country(video, "IN", "rent") == (Decimal("49.00"), "INR")

    def test_country_override(self, db):
        video = make_video(db, country_prices=US_PRICING)
        assert video_service.price_for_country(video, "us", "buy") == (Decimal("4.99"), "USD")
        assert video_service.price_for_country(video, "US", "rent") == (Decimal("1.99"), "USD")

    def test_rent_without_rental_price_uses_price(self, db):
        video = make_video(db, rental_price=None)
        assert video_service.price_for_country(video, None, "rent") == (Decimal("99.00"), "INR")


class TestStartPurchase:
    def test_pending_purchase_at_country_price(self, db, buyer):
        video = make_video(db, country_prices=US_PRICING)
        purchase = video_service.start_purchase(db, buyer.id, video.id, "buy", "us", now=NOW)

        assert purchase.payment_status == "pending"
        assert purchase.amount == Decimal("4.99")
        assert purchase.currency == "USD"
        assert purchase.country_code == "US"
        assert purchase.reference

    def test_free_video_needs_no_purchase(self, db, buyer):
        video = make_video(db, is_free=True)
        with pytest.raises(BusinessRuleError, match="free"):
            video_service.start_purchase(db, buyer.id, video.id, "buy", now=NOW)

    def test_not_yet_visible(self, db, buyer):
        video = make_video(db, visible_from=NOW + timedelta(days=1))
        with pytest.raises(ContentUnavailable) as exc:
            video_service.start_purchase(db, buyer.id, video.id, "buy", now=NOW)
        assert exc.value.status_code == 403

    def test_window_closed(self, db, buyer):
        video = make_video(db, visible_until=NOW - timedelta(minutes=1))
        with pytest.raises(ContentUnavailable) as exc:
            video_service.start_purchase(db, buyer.id, video.id, "buy", now=NOW)
        assert exc.value.status_code == 410

    def test_already_owned(self, db, buyer, gateway):
        video = make_video(db)
        _paid_purchase(db, gateway, buyer.id, video.id)
        with pytest.raises(BusinessRuleError, match="already have access"):
            video_service.start_purchase(db, buyer.id, video.id, "buy", now=NOW)

    def test_bad_purchase_type(self, db, buyer):
        video = make_video(db)
        with pytest.raises(BusinessRuleError):
            video_service.start_purchase(db, buyer.id, video.id, "lease", now=NOW)

    def test_unknown_video(self, db, buyer):
        with pytest.raises(NotFound):
            video_service.start_purchase(db, buyer.id, 404, "buy", now=NOW)


class TestAccess:
    def test_free(self, db, buyer):
        video = make_video(db, is_free=True)
        access = video_service.check_access(db, buyer.id, video.id, now=NOW)
        assert access["hasAccess"] is True
        assert access["accessType"] == "free"

    def test_purchase_required(self, db, buyer):
        video = make_video(db)
        with pytest.raises(ContentUnavailable) as exc:
            video_service.check_access(db, buyer.id, video.id, now=NOW)
        assert exc.value.status_code == 403

    def test_bought_forever(self, db, buyer, gateway):
        video = make_video(db)
        _paid_purchase(db, gateway, buyer.id, video.id, "buy")

        access = video_service.check_access(db, buyer.id, video.id, now=NOW + timedelta(days=365))

        assert access["accessType"] == "buy"
        assert access["expiresAt"] is None

    def test_rental_lapses(self, db, buyer, gateway):
        video = make_video(db)
        _paid_purchase(db, gateway, buyer.id, video.id, "rent")

        access = video_service.check_access(db, buyer.id, video.id, now=NOW + timedelta(days=6))
        assert access["accessType"] == "rent"
        assert access["expiresAt"] == (NOW + timedelta(days=7)).isoformat()

        with pytest.raises(ContentUnavailable) as exc:
            video_service.check_access(db, buyer.id, video.id, now=NOW + timedelta(days=7))
        assert exc.value.status_code == 410


class TestRefund:
    def test_within_window(self, db, buyer, gateway):
        video = make_video(db)
        purchase = _paid_purchase(db, gateway, buyer.id, video.id)

        refunded = video_service.refund_purchase(db, purchase.id, buyer.id, gateway,
                                                 now=NOW + timedelta(hours=23))

        assert refunded.payment_status == "refunded"
        assert gateway.refunds == [f"pay_{purchase.id}"]
        with pytest.raises(ContentUnavailable):
            video_service.check_access(db, buyer.id, video.id, now=NOW + timedelta(hours=23, minutes=1))

    def test_window_closed(self, db, buyer, gateway):
        video = make_video(db)
        purchase = _paid_purchase(db, gateway, buyer.id, video.id)
        with pytest.raises(RefundWindowClosed):
            video_service.refund_purchase(db, purchase.id, buyer.id, gateway, now=NOW + timedelta(hours=25))
        assert gateway.refunds == []

    def test_twice(self, db, buyer, gateway):
        video = make_video(db)
        purchase = _paid_purchase(db, gateway, buyer.id, video.id)
        video_service.refund_purchase(db, purchase.id, buyer.id, gateway, now=NOW)
        with pytest.raises(AlreadyRefunded):
            video_service.refund_purchase(db, purchase.id, buyer.id, gateway, now=NOW)

    def test_other_users_purchase(self, db, buyer, gateway):
        video = make_video(db)
        purchase = _paid_purchase(db, gateway, buyer.id, video.id)
        stranger = make_user(db)
        with pytest.raises(NotFound):
            video_service.refund_purchase(db, purchase.id, stranger.id, gateway, now=NOW)

    def test_provider_failure_is_recorded(self, db, buyer, gateway):
        video = make_video(db)
        purchase = _paid_purchase(db, gateway, buyer.id, video.id)
        gateway.fail_refund = GatewayError("refund_failed", "Refund window closed at provider", gateway="razorpay")

        with pytest.raises(GatewayError):
            video_service.refund_purchase(db, purchase.id, buyer.id, gateway, now=NOW)

        db.refresh(purchase)
        assert purchase.payment_status == "completed"
        assert db.query(PaymentIssue).filter_by(kind="refund_failed", target_id=purchase.id).count() == 1

    def test_refund_reverses_vendor_share(self, db, buyer, gateway):
        vendor = make_user(db, role="vendor")
        video = make_video(db, vendor_id=vendor.id)
        purchase = _paid_purchase(db, gateway, buyer.id, video.id)

        video_service.refund_purchase(db, purchase.id, buyer.id, gateway, now=NOW + timedelta(hours=1))

        wallet = wallet_service.get_wallet(db, vendor.id)
        db.refresh(wallet)
        assert wallet.pending_balance == Decimal("0.00")
        assert wallet.total_earnings == Decimal("0.00")
        reversal = db.query(models.WalletTransaction).filter_by(type="earning_reversal").one()
        assert reversal.amount == Decimal("49.50")
        assert reversal.source_id == purchase.id


class TestSweeps:
    def test_hide_expired_videos(self, db):
        gone = make_video(db, visible_until=NOW - timedelta(hours=1))
        live = make_video(db, visible_until=NOW + timedelta(hours=1))

        assert video_service.hide_expired_videos(db, NOW) == 1

        db.expire_all()
        assert gone.status == "hidden"
        assert live.status == "active"

    def test_abandoned_purchases_fail(self, db, buyer):
        video = make_video(db)
        stale = video_service.start_purchase(db, buyer.id, video.id, "buy", now=NOW - timedelta(days=2))
        other = make_user(db)
        fresh = video_service.start_purchase(db, other.id, video.id, "buy", now=NOW)

        assert video_service.expire_rentals(db, NOW) == 1

        db.expire_all()
        assert stale.payment_status == "failed"
        assert fresh.payment_status == "pending"
        assert db.query(models.VideoPurchase).count() == 2
