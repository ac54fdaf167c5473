"""
Redis gate in front of webhook processing.

A provider retrying an event we already applied is answered without touching
the database. The gate is an optimisation only: with Redis down every event
is processed and the conditional updates in the reconciliation service keep
the outcome correct.
"""
import logging
from typing import Optional

from redis.asyncio import Redis

from showpass.core.config import settings
from showpass.core.redis import key

logger = logging.getLogger(__name__)


def _event_key(gateway: str, event_id: str) -> str:
    return key("webhook", gateway, event_id)


async def claim_event(redis: Optional[Redis], gateway: str, event_id: Optional[str]) -> bool:
    """True when this delivery should be processed, False for a duplicate."""
    if redis is None or not event_id:
        return True
    try:
        ok = await redis.set(_event_key(gateway, event_id), "1", nx=True, ex=settings.WEBHOOK_DEDUP_TTL_SECONDS)
    except Exception:
        logger.warning("Webhook dedup unavailable, processing %s anyway", event_id, exc_info=True,
                       extra={"gateway": gateway})
        return True
    if not ok:
        logger.info("Duplicate %s webhook %s skipped", gateway, event_id, extra={"gateway": gateway})
    return bool(ok)


async def release_event(redis: Optional[Redis], gateway: str, event_id: Optional[str]) -> None:
    """Forget a claim so the provider's retry is processed again."""
    if redis is None or not event_id:
        return
    try:
        await redis.delete(_event_key(gateway, event_id))
    except Exception:
        logger.warning("Could not release webhook claim %s", event_id, exc_info=True, extra={"gateway": gateway})
