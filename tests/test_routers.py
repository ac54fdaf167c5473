from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from showpass.auth import create_access_token
from showpass.core.redis import get_optional_redis
from showpass.database.database import get_db
from showpass.main import app
from showpass.routers import health, payment_common
from tests.factories import FakeGateway, make_showtime, make_user, seat_ids


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_optional_redis] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(payment_common, "build_gateway", lambda name: fake)
    return fake


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


def _booking_body(db, showtime, count=2):
    return {
        "showtimeId": showtime.id,
        "selectedSeats": [{"seatId": seat_id} for seat_id in seat_ids(db, showtime, count)],
        "customerDetails": {"name": "Asha Rao", "email": "asha@example.com", "phone": "9999999999"},
    }


def _guest(created):
    return {"reference": created["reference"], "email": "asha@example.com"}


class TestHealth:
    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_database_up_redis_down(self, client, monkeypatch):
        monkeypatch.setattr(health, "health_check_redis", AsyncMock(return_value={"status": "unhealthy"}))

        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["database"]["status"] == "healthy"
        assert response.json()["redis"]["status"] == "unhealthy"


class TestBookingRoutes:
    def test_guest_booking(self, client, db):
        showtime = make_showtime(db)

        response = client.post("/api/bookings", json=_booking_body(db, showtime))

        assert response.status_code == 201
        body = response.json()
        assert body["reference"].startswith("BK")
        assert body["bookingStatus"] == "confirmed"
        assert body["paymentStatus"] == "pending"
        assert [s["rowLabel"] for s in body["selectedSeats"]] == ["A", "A"]

    def test_seat_conflict_is_a_400(self, client, db):
        showtime = make_showtime(db)
        client.post("/api/bookings", json=_booking_body(db, showtime))

        response = client.post("/api/bookings", json=_booking_body(db, showtime))

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unknown_showtime(self, client, db):
        body = _booking_body(db, make_showtime(db))
        body["showtimeId"] = 404
        assert client.post("/api/bookings", json=body).status_code == 404

    def test_validation_envelope(self, client, db):
        body = _booking_body(db, make_showtime(db))
        body["customerDetails"]["email"] = "not-an-email"

        response = client.post("/api/bookings", json=body)

        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"
        assert response.json()["errors"][0]["field"] == "customerDetails.email"

    def test_account_booking_is_private(self, client, db):
        owner, stranger = make_user(db), make_user(db)
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db)), headers=_auth(owner))
        booking_id = created.json()["id"]

        assert client.get(f"/api/bookings/{booking_id}").status_code == 401
        assert client.get(f"/api/bookings/{booking_id}", headers=_auth(stranger)).status_code == 403
        assert client.get(f"/api/bookings/{booking_id}", headers=_auth(owner)).status_code == 200

    def test_cancel(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()

        response = client.put(f"/api/bookings/{created['id']}/cancel", params=_guest(created))

        assert response.status_code == 200
        assert response.json()["bookingStatus"] == "cancelled"

    def test_guest_booking_needs_reference_and_email(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        path = f"/api/bookings/{created['id']}"

        assert client.get(path).status_code == 404
        assert client.get(path, params={"reference": created["reference"]}).status_code == 404
        assert client.get(path, params={**_guest(created), "email": "someone@example.com"}).status_code == 404
        assert client.get(path, params={**_guest(created), "reference": "BK000000"}).status_code == 404
        assert client.get(path, params=_guest(created)).status_code == 200
        assert client.get(path, headers=_auth(make_user(db, role="admin"))).status_code == 200

    def test_guest_cancel_and_refund_without_credentials(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        client.post(f"/api/bookings/{created['id']}/payment", json={}, headers=_auth(make_user(db, role="admin")))

        assert client.put(f"/api/bookings/{created['id']}/cancel").status_code == 404
        assert client.post(f"/api/bookings/{created['id']}/refund").status_code == 404
        assert client.get(f"/api/bookings/{created['id']}/ticket").status_code == 404

        booking = client.get(f"/api/bookings/{created['id']}", params=_guest(created)).json()
        assert booking["paymentStatus"] == "completed"
        assert booking["bookingStatus"] == "confirmed"

    def test_plain_seat_ids_and_pricing_discount(self, client, db):
        showtime = make_showtime(db)
        body = _booking_body(db, showtime)
        body["selectedSeats"] = [seat["seatId"] for seat in body["selectedSeats"]]
        body["pricing"] = {"discountAmount": "50.00"}

        response = client.post("/api/bookings", json=body)

        assert response.status_code == 201
        assert response.json()["discountAmount"] == "50.00"
        assert len(response.json()["selectedSeats"]) == 2

    def test_manual_payment_needs_admin(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        path = f"/api/bookings/{created['id']}/payment"

        assert client.post(path, json={}, headers=_auth(make_user(db))).status_code == 403

        response = client.post(path, json={"paymentMethod": "cash"}, headers=_auth(make_user(db, role="admin")))
        assert response.status_code == 200
        body = response.json()
        assert body["booking"]["paymentStatus"] == "completed"
        assert body["transaction"]["gateway"] == "cash"
        assert body["transaction"]["status"] == "success"
        assert body["eTicket"]["ticketNumber"].startswith("TK")

    def test_ticket_pdf_after_payment(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        client.post(f"/api/bookings/{created['id']}/payment", json={}, headers=_auth(make_user(db, role="admin")))

        ticket = client.get(f"/api/bookings/{created['id']}/ticket", params=_guest(created))
        pdf = client.get(f"/api/bookings/{created['id']}/ticket/pdf", params=_guest(created))

        assert ticket.json()["ticketNumber"].startswith("TK")
        assert pdf.headers["content-type"] == "application/pdf"
        assert pdf.content.startswith(b"%PDF")

    def test_ticket_redeem_needs_vendor(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        client.post(f"/api/bookings/{created['id']}/payment", json={}, headers=_auth(make_user(db, role="admin")))
        ticket = client.get(f"/api/bookings/{created['id']}/ticket", params=_guest(created))
        number = ticket.json()["ticketNumber"]

        assert client.post(f"/api/tickets/{number}/redeem", headers=_auth(make_user(db))).status_code == 403
        response = client.post(f"/api/tickets/{number}/redeem", headers=_auth(make_user(db, role="vendor")))
        assert response.status_code == 200
        assert response.json()["isUsed"] is True


class TestGatewayCheckout:
    def test_order_then_verify(self, client, db, gateway):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()

        order = client.post("/api/bookings/payment/order", json={"bookingId": created["id"]}).json()
        gateway.pay(order["orderId"], "pay_route")
        response = client.post("/api/bookings/payment/verify", json={
            "orderId": order["orderId"],
            "paymentId": "pay_route",
            "signature": gateway.signature(order["orderId"], "pay_route"),
        })

        assert order["amount"] == created["finalAmount"]
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["ticketNumber"].startswith("TK")

    def test_tampered_signature(self, client, db, gateway):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        order = client.post("/api/bookings/payment/order", json={"bookingId": created["id"]}).json()
        gateway.pay(order["orderId"], "pay_route")

        response = client.post("/api/bookings/payment/verify", json={
            "orderId": order["orderId"], "paymentId": "pay_route", "signature": "forged",
        })

        assert response.status_code == 401

    def test_unsupported_gateway(self, client, db):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        response = client.post("/api/bookings/payment/order", json={"bookingId": created["id"], "gateway": "paypal"})
        assert response.status_code == 400

    def test_webhook_bad_signature(self, client, gateway):
        gateway.webhook_ok = False
        response = client.post("/api/bookings/payment/webhook/razorpay", content=b"order_1:pay_1:success")
        assert response.status_code == 401

    def test_webhook_completes_booking(self, client, db, gateway):
        created = client.post("/api/bookings", json=_booking_body(db, make_showtime(db))).json()
        order = client.post("/api/bookings/payment/order", json={"bookingId": created["id"]}).json()
        gateway.pay(order["orderId"], "pay_hook")

        body = f"{order['orderId']}:pay_hook:success".encode()
        response = client.post("/api/bookings/payment/webhook/razorpay", content=body)

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        booking = client.get(f"/api/bookings/{created['id']}", params=_guest(created))
        assert booking.json()["paymentStatus"] == "completed"


class TestWalletRoutes:
    def test_vendor_only(self, client, db):
        assert client.get("/api/wallet").status_code == 401
        assert client.get("/api/wallet", headers=_auth(make_user(db))).status_code == 403

    def test_wallet_created_on_first_visit(self, client, db):
        vendor = make_user(db, role="vendor")

        response = client.get("/api/wallet", headers=_auth(vendor))

        assert response.status_code == 200
        assert response.json()["vendorId"] == vendor.id
        assert response.json()["availableBalance"] == "0.00"

    def test_bank_details_validated(self, client, db):
        vendor = make_user(db, role="vendor")
        body = {"accountHolderName": "Vendor One", "accountNumber": "123456789012", "ifscCode": "BAD"}

        assert client.put("/api/wallet/bank-details", json=body, headers=_auth(vendor)).status_code == 400

        body["ifscCode"] = "hdfc0001234"
        response = client.put("/api/wallet/bank-details", json=body, headers=_auth(vendor))
        assert response.status_code == 200
        assert response.json()["ifscCode"] == "HDFC0001234"
