"""
Redis client used for webhook de-duplication
"""
import logging
import time
from typing import Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from showpass.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None


async def get_redis() -> Redis:
    """
    Return the singleton async Redis connection, connecting on first use.
    """
    global _redis_client

    if _redis_client is None:
        try:
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=2,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            await _redis_client.ping()
            logger.info("Redis connected: %s", _redacted(settings.REDIS_URL))
        except Exception:
            _redis_client = None
            logger.error("Redis connection failed", exc_info=True)
            raise

    return _redis_client


async def get_optional_redis() -> Optional[Redis]:
    """FastAPI dependency: the client, or None when Redis is down."""
    try:
        return await get_redis()
    except Exception:
        return None


async def close_redis():
    """Close Redis connection on shutdown"""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


async def health_check_redis() -> dict:
    try:
        client = await get_redis()
        start = time.time()
        await client.ping()
        latency_ms = (time.time() - start) * 1000
        return {"status": "healthy", "latency_ms": round(latency_ms, 2), "url": _redacted(settings.REDIS_URL)}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def _redacted(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


def key(*parts) -> str:
    prefix = settings.REDIS_KEY_PREFIX
    body = ":".join(str(p) for p in parts)
    return f"{prefix}:{body}" if prefix else body
