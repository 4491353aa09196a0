"""
Fulfillment Service — Redis client singleton

Redis backs the idempotency replay cache only. Order, payment and stock
state live exclusively in the database.
"""
import asyncio

import redis.asyncio as aioredis
from fulfillment.core.config import get_settings

settings = get_settings()

_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
            socket_timeout=settings.HEALTH_CHECK_TIMEOUT,
        )
    return _redis_client


async def ping_redis() -> None:
    """Raise if Redis does not answer within HEALTH_CHECK_TIMEOUT."""
    await asyncio.wait_for(get_redis().ping(), timeout=settings.HEALTH_CHECK_TIMEOUT)


async def close_redis():
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
