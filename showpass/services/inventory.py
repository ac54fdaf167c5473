"""
Seat inventory for showtimes.

``showtimes.available_seats`` and the ``showtime_seats`` rows move together:
every reserve/release changes both inside the caller's transaction, so
``available_seats + held rows == total_seats`` holds after each commit.
Claims use a conditional UPDATE plus the unique (showtime_id, seat_id)
constraint; nothing here reads a count and writes it back.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from showpass.core.errors import BusinessRuleError, InsufficientSeats, NotFound, SeatConflict
from showpass.database import models

logger = logging.getLogger(__name__)


def _normalize_seat_ids(seat_ids: Iterable) -> List[int]:
    try:
        ids = [int(s) for s in seat_ids]
    except (TypeError, ValueError):
        raise BusinessRuleError("Seat ids must be integers")
    if not ids:
        raise BusinessRuleError("At least one seat must be selected")
    if len(set(ids)) != len(ids):
        raise BusinessRuleError("Duplicate seats in selection")
    return ids


def _get_showtime(db: Session, showtime_id: int) -> models.Showtime:
    showtime = db.get(models.Showtime, showtime_id)
    if showtime is None:
        raise NotFound("Showtime not found")
    return showtime


def _held_seat_ids(db: Session, showtime_id: int, seat_ids: List[int]) -> List[int]:
    rows = (
        db.query(models.ShowtimeSeat.seat_id)
        .filter(models.ShowtimeSeat.showtime_id == showtime_id, models.ShowtimeSeat.seat_id.in_(seat_ids))
        .all()
    )
    return sorted(r[0] for r in rows)


def reserve(db: Session, showtime_id: int, seat_ids: Iterable, booking_id: Optional[int] = None) -> List[models.Seat]:
    """
    Claim ``seat_ids`` for a showtime.

    Raises NotFound, InsufficientSeats or SeatConflict. On SeatConflict the
    session is rolled back, so this must be the first write of the unit of
    work. Does not commit.
    """
    ids = _normalize_seat_ids(seat_ids)
    showtime = _get_showtime(db, showtime_id)

    if len(ids) > showtime.available_seats:
        raise InsufficientSeats(len(ids), showtime.available_seats)

    seats = (
        db.query(models.Seat)
        .filter(models.Seat.id.in_(ids), models.Seat.hall_id == showtime.hall_id)
        .all()
    )
    if len(seats) != len(ids):
        unknown = sorted(set(ids) - {s.id for s in seats})
        raise BusinessRuleError(f"Seats not in this hall: {unknown}")

    taken = _held_seat_ids(db, showtime_id, ids)
    if taken:
        raise SeatConflict(taken)

    n = len(ids)
    result = db.execute(
        update(models.Showtime)
        .where(models.Showtime.id == showtime_id, models.Showtime.available_seats >= n)
        .values(
            available_seats=models.Showtime.available_seats - n,
            status=case(
                (models.Showtime.available_seats - n == 0, "housefull"),
                else_=models.Showtime.status,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.expire(showtime)
        raise InsufficientSeats(n, showtime.available_seats)

    for seat_id in ids:
        db.add(models.ShowtimeSeat(showtime_id=showtime_id, seat_id=seat_id, booking_id=booking_id))
    try:
        db.flush()
    except IntegrityError:
        # another booker claimed one of the seats between our check and insert
        db.rollback()
        logger.info("Seat claim lost race on showtime %s for seats %s", showtime_id, ids)
        raise SeatConflict(_held_seat_ids(db, showtime_id, ids) or ids)

    db.expire(showtime)
    return sorted(seats, key=lambda s: ids.index(s.id))


def attach_booking(db: Session, showtime_id: int, seat_ids: Iterable, booking_id: int) -> None:
    (
        db.query(models.ShowtimeSeat)
        .filter(
            models.ShowtimeSeat.showtime_id == showtime_id,
            models.ShowtimeSeat.seat_id.in_(list(seat_ids)),
            models.ShowtimeSeat.booking_id.is_(None),
        )
        .update({models.ShowtimeSeat.booking_id: booking_id}, synchronize_session=False)
    )


def release(db: Session, showtime_id: int, seat_ids: Iterable, booking_id: Optional[int] = None) -> int:
    """
    Return seats to the pool. Seats that are not held (or, when ``booking_id``
    is given, held by another booking) are skipped. Returns the number freed.
    Does not commit.
    """
    ids = [int(s) for s in seat_ids]
    showtime = _get_showtime(db, showtime_id)
    if not ids:
        return 0

    query = db.query(models.ShowtimeSeat).filter(
        models.ShowtimeSeat.showtime_id == showtime_id,
        models.ShowtimeSeat.seat_id.in_(ids),
    )
    if booking_id is not None:
        query = query.filter(models.ShowtimeSeat.booking_id == booking_id)
    freed = query.delete(synchronize_session=False)

    if freed:
        db.execute(
            update(models.Showtime)
            .where(models.Showtime.id == showtime_id)
            .values(
                available_seats=models.Showtime.available_seats + freed,
                status=case(
                    (models.Showtime.status == "housefull", "active"),
                    else_=models.Showtime.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        db.expire(showtime)
    logger.debug("Released %s/%s seats on showtime %s", freed, len(ids), showtime_id)
    return freed


def seat_map(db: Session, showtime_id: int) -> Dict:
    showtime = _get_showtime(db, showtime_id)
    all_seats = (
        db.query(models.Seat)
        .filter(models.Seat.hall_id == showtime.hall_id)
        .order_by(models.Seat.row_label, models.Seat.seat_number)
        .all()
    )
    held = {
        r[0]
        for r in db.query(models.ShowtimeSeat.seat_id).filter(models.ShowtimeSeat.showtime_id == showtime_id).all()
    }
    return {
        "showtime": {
            "id": showtime.id,
            "showDate": showtime.show_date.isoformat(),
            "showTime": showtime.show_time,
            "basePrice": str(showtime.base_price),
        },
        "seats": [
            {
                "seatId": seat.id,
                "rowLabel": seat.row_label,
                "seatNumber": seat.seat_number,
                "seatType": seat.seat_type,
                "isBooked": seat.id in held,
            }
            for seat in all_seats
        ],
        "totalSeats": showtime.total_seats,
        "availableCount": showtime.available_seats,
    }


def check_invariant(db: Session, showtime_id: int) -> bool:
    showtime = _get_showtime(db, showtime_id)
    held = (
        db.query(func.count(models.ShowtimeSeat.id))
        .filter(models.ShowtimeSeat.showtime_id == showtime_id)
        .scalar()
    )
    ok = showtime.available_seats + held == showtime.total_seats
    if not ok:
        logger.error(
            "Seat ledger drift on showtime %s: available=%s held=%s total=%s",
            showtime_id, showtime.available_seats, held, showtime.total_seats,
        )
    return ok
