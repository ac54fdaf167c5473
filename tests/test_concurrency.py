import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from showpass.core.errors import InsufficientSeats, SeatConflict
from showpass.database import models
from showpass.database.database import Base
from showpass.services import booking_service, inventory
from tests.factories import make_showtime, seat_ids


@pytest.fixture
def file_sessions(tmp_path):
    """Sessions on a real database file, so each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'showpass.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


def _race(session_factory, showtime_id, selections):
    """Start one booker per selection at the same moment. Returns references or ledger errors."""
    barrier = threading.Barrier(len(selections))
    outcomes = [None] * len(selections)

    def book(index, ids):
        session = session_factory()
        try:
            barrier.wait()
            customer = booking_service.Customer(name=f"Guest {index}", email=f"guest{index}@example.com")
            outcomes[index] = booking_service.create_booking(session, showtime_id, ids, customer).reference
        except (SeatConflict, InsufficientSeats) as exc:
            session.rollback()
            outcomes[index] = exc
        finally:
            session.close()

    threads = [threading.Thread(target=book, args=(i, ids)) for i, ids in enumerate(selections)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def _split(outcomes):
    won = [o for o in outcomes if isinstance(o, str)]
    lost = [o for o in outcomes if isinstance(o, (SeatConflict, InsufficientSeats))]
    return won, lost


class TestConcurrentBookers:
    def test_last_seat_goes_to_exactly_one_booker(self, file_sessions):
        setup = file_sessions()
        showtime = make_showtime(setup, rows="A", per_row=1)
        last_seat = seat_ids(setup, showtime, 1)
        showtime_id = showtime.id
        setup.close()

        won, lost = _split(_race(file_sessions, showtime_id, [last_seat, last_seat]))

        assert len(won) == 1
        assert len(lost) == 1
        check = file_sessions()
        showtime = check.get(models.Showtime, showtime_id)
        assert showtime.available_seats == 0
        assert showtime.status == "housefull"
        assert check.query(models.Booking).count() == 1
        assert check.query(models.Booking).one().reference == won[0]
        assert inventory.check_invariant(check, showtime_id)
        check.close()

    def test_overlapping_selections(self, file_sessions):
        setup = file_sessions()
        showtime = make_showtime(setup, rows="A", per_row=3)
        first, second, third = seat_ids(setup, showtime, 3)
        showtime_id = showtime.id
        setup.close()

        won, lost = _split(_race(file_sessions, showtime_id, [[first, second], [second, third]]))

        assert len(won) == 1
        assert len(lost) == 1
        check = file_sessions()
        assert check.get(models.Showtime, showtime_id).available_seats == 1
        assert check.query(models.ShowtimeSeat).count() == 2
        assert inventory.check_invariant(check, showtime_id)
        check.close()

    def test_disjoint_selections_both_hold(self, file_sessions):
        setup = file_sessions()
        showtime = make_showtime(setup, rows="A", per_row=3)
        first, second = seat_ids(setup, showtime, 2)
        showtime_id = showtime.id
        setup.close()

        won, lost = _split(_race(file_sessions, showtime_id, [[first], [second]]))

        assert len(won) == 2
        assert lost == []
        check = file_sessions()
        assert check.get(models.Showtime, showtime_id).available_seats == 1
        check.close()
