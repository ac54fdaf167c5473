# showpass/routers/review_routes.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from showpass.auth import get_current_user
from showpass.database import models, schemas
from showpass.database.database import get_db
from showpass.services import review_service

router = APIRouter(prefix="/movies", tags=["Reviews"])


@router.post("/{movie_id}/reviews", response_model=schemas.ReviewResponse)
def submit_review(
    movie_id: int,
    body: schemas.ReviewIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """One review per user and movie; posting again replaces it."""
    return review_service.upsert_review(db, movie_id, user.id, body.rating, body.comment)
