import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from showpass.core.errors import BusinessRuleError, NotFound
from showpass.database import models
from showpass.utils.ratings import recompute_average_rating

logger = logging.getLogger(__name__)


def upsert_review(db: Session, movie_id: int, user_id: int, rating: int,
                  comment: Optional[str] = None) -> models.Review:
    """Create or replace the user's review of a movie and refresh the movie's average."""
    if not 1 <= rating <= 5:
        raise BusinessRuleError("Rating must be between 1 and 5")
    movie = db.get(models.Movie, movie_id)
    if movie is None:
        raise NotFound("Movie not found")

    review = (
        db.query(models.Review)
        .filter(models.Review.movie_id == movie_id, models.Review.user_id == user_id)
        .first()
    )
    if review is None:
        review = models.Review(movie_id=movie_id, user_id=user_id)
        db.add(review)
    review.rating = rating
    review.comment = comment
    db.flush()

    ratings = [r for (r,) in db.query(models.Review.rating).filter(models.Review.movie_id == movie_id)]
    movie.average_rating = Decimal(str(recompute_average_rating(ratings)))
    movie.review_count = len(ratings)
    db.commit()
    db.refresh(review)
    logger.info("Movie %s rated %s over %s reviews", movie_id, movie.average_rating, movie.review_count)
    return review
