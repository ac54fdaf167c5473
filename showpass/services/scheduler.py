"""
Periodic maintenance sweeps, run in-process from the application lifespan.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from showpass.core.config import settings
from showpass.database.database import SessionLocal
from showpass.services import booking_service, video_service, wallet_service

logger = logging.getLogger(__name__)

SWEEPS = (
    ("expire_stale_holds", booking_service.expire_stale_holds),
    ("process_pending_funds", wallet_service.process_pending_funds),
    ("hide_expired_videos", video_service.hide_expired_videos),
    ("expire_rentals", video_service.expire_rentals),
)


def run_sweeps(session_factory: Callable = SessionLocal, now: Optional[datetime] = None) -> dict:
    """Run every sweep once, each in its own session. A failing sweep does not stop the rest."""
    now = now or datetime.utcnow()
    results = {}
    for name, sweep in SWEEPS:
        db = session_factory()
        try:
            results[name] = sweep(db, now)
        except Exception:
            db.rollback()
            logger.exception("Sweep %s failed", name, extra={"event": name})
            results[name] = None
        finally:
            db.close()
    return results


async def run_forever(interval_seconds: Optional[int] = None) -> None:
    interval = interval_seconds or settings.SCHEDULER_INTERVAL_SECONDS
    logger.info("Maintenance scheduler started (every %ss)", interval)
    while True:
        await asyncio.to_thread(run_sweeps)
        await asyncio.sleep(interval)


def start_scheduler() -> Optional[asyncio.Task]:
    if not settings.SCHEDULER_ENABLED:
        logger.info("Maintenance scheduler disabled")
        return None
    return asyncio.create_task(run_forever(), name="showpass-scheduler")


async def stop_scheduler(task: Optional[asyncio.Task]) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    logger.info("Maintenance scheduler stopped")
