# showpass/routers/health.py
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from showpass.core.redis import health_check_redis
from showpass.database.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(db: Session = Depends(get_db)):
    """
    Database and Redis status. Redis is optional, so only a database failure
    turns the answer into a 503.
    """
    try:
        db.execute(text("SELECT 1"))
        database = {"status": "healthy"}
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        database = {"status": "unhealthy", "error": type(e).__name__}

    redis = await health_check_redis()
    ok = database["status"] == "healthy"
    body = {"ok": ok, "database": database, "redis": redis}
    return JSONResponse(status_code=200 if ok else 503, content=body)
