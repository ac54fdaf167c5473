# showpass/routers/showtime_routes.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from showpass.database.database import get_db
from showpass.services import inventory

router = APIRouter(prefix="/showtimes", tags=["Showtimes"])


@router.get("/{showtime_id}/seats")
def get_seat_map(showtime_id: int, db: Session = Depends(get_db)):
    """Every seat of the showtime's hall with its booked flag."""
    return inventory.seat_map(db, showtime_id)
