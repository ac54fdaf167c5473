# showpass/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from showpass.core.config import settings
from showpass.core.errors import register_exception_handlers
from showpass.core.logging import configure_logging
from showpass.core.redis import close_redis, get_redis
from showpass.database import models, payment_models  # noqa: F401  (register tables)
from showpass.database.database import Base, engine
from showpass.routers import (
    booking_payment_routes,
    booking_routes,
    ccavenue_routes,
    health,
    review_routes,
    showtime_routes,
    ticket_routes,
    vendor_routes,
    video_routes,
    wallet_routes,
)
from showpass.services.scheduler import start_scheduler, stop_scheduler

configure_logging()
logger = logging.getLogger(__name__)


# Lifespan events (startup/shutdown)
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Redis init (non-fatal)
    try:
        await get_redis()
    except Exception as e:
        logger.warning("Redis unavailable, webhook de-duplication disabled: %s", e)

    scheduler_task = start_scheduler()

    yield

    await stop_scheduler(scheduler_task)
    try:
        await close_redis()
    except Exception as e:
        logger.error("Error closing Redis: %s", e)
    logger.info("Shutdown complete")


# Build FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Seat booking, pay-per-view and vendor payouts",
    version=settings.VERSION,
    lifespan=lifespan,
)

# Ensure DB models/tables exist
Base.metadata.create_all(bind=engine)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Every router is mounted under /api
for module in (
    health,
    showtime_routes,
    booking_payment_routes,
    booking_routes,
    ticket_routes,
    video_routes,
    vendor_routes,
    ccavenue_routes,
    wallet_routes,
    review_routes,
):
    app.include_router(module.router, prefix="/api")


@app.get("/")
def root():
    return {"message": f"{settings.PROJECT_NAME} is running"}
