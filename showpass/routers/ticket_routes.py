# showpass/routers/ticket_routes.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from showpass.auth import require_role
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.services import booking_service

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/{ticket_number}/redeem", response_model=schemas.ETicketResponse)
def redeem_ticket(
    ticket_number: str,
    db: Session = Depends(get_db),
    staff: models.User = Depends(require_role("vendor")),
):
    """Entrance scan. A ticket redeems once; cancelled tickets never do."""
    return booking_service.redeem_ticket(db, ticket_number)
