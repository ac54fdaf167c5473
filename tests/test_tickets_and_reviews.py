import pytest

from showpass.core.errors import BusinessRuleError, NotFound
from showpass.database import models
from showpass.services import booking_service, review_service
from showpass.services.reconciliation import ReconciliationService
from showpass.services.ticket_pdf import render_ticket_pdf, seat_labels
from tests.factories import NOW, FakeGateway, make_booking, make_showtime, make_user


class TestTicketPdf:
    def test_renders_pdf(self, db):
        showtime = make_showtime(db)
        booking = make_booking(db, showtime, count=2)
        gateway = FakeGateway()
        service = ReconciliationService(db, gateway)
        _, order = service.create_order("booking", booking.id, now=NOW)
        gateway.pay(order.order_id, "pay_pdf")
        service.verify_and_complete(order.order_id, "pay_pdf", gateway.signature(order.order_id, "pay_pdf"), now=NOW)
        db.refresh(booking)

        pdf = render_ticket_pdf(booking, booking_service.get_ticket(db, booking.id))

        assert pdf.startswith(b"%PDF")
        assert seat_labels(booking) == "A1, A2"


class TestReviews:
    def test_average_tracks_reviews(self, db):
        movie = make_showtime(db).movie
        first, second = make_user(db), make_user(db)

        review_service.upsert_review(db, movie.id, first.id, 5, "Loved it")
        review_service.upsert_review(db, movie.id, second.id, 2)
        db.refresh(movie)
        assert float(movie.average_rating) == 3.5
        assert movie.review_count == 2

    def test_second_review_replaces_first(self, db):
        movie = make_showtime(db).movie
        user = make_user(db)

        review_service.upsert_review(db, movie.id, user.id, 1)
        review = review_service.upsert_review(db, movie.id, user.id, 4, "Better on rewatch")

        db.refresh(movie)
        assert review.rating == 4
        assert movie.review_count == 1
        assert db.query(models.Review).count() == 1

    def test_rating_range(self, db):
        movie = make_showtime(db).movie
        with pytest.raises(BusinessRuleError):
            review_service.upsert_review(db, movie.id, make_user(db).id, 6)

    def test_unknown_movie(self, db):
        with pytest.raises(NotFound):
            review_service.upsert_review(db, 404, make_user(db).id, 3)
