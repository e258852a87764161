"""
Shared asyncio Redis client, created on first use.
"""
import redis.asyncio as aioredis
from typing import Optional

from app.config import get_settings
from app.logging_config import get_logger

settings = get_settings()
logger = get_logger("redis")

_redis: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
        logger.info("redis_client_created")
    return _redis


async def close_redis():
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None
        logger.info("redis_closed")
