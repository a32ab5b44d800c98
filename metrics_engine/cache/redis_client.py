"""
Adaptive Metrics Cache — Redis Client
───────────────────────────────────────
Connection management and key layout for the Redis backend.
If Redis is unreachable the caller falls back to in-memory stores.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis

from metrics_engine.config import REDIS_URL

log = logging.getLogger("amc.redis")

CACHE_PREFIX   = "api_cache:"
HISTORY_PREFIX = "price_history:"


def key_cache(cache_key: str) -> str:
    return f"{CACHE_PREFIX}{cache_key}"


def key_history(token_address: str) -> str:
    return f"{HISTORY_PREFIX}{token_address}"


async def connect_redis(url: str = REDIS_URL) -> Optional[aioredis.Redis]:
    """Open a connection and ping it. Returns None when Redis is down."""
    try:
        client = aioredis.from_url(url, decode_responses=True, socket_timeout=2)
        await client.ping()
        log.info("Redis connected")
        return client
    except Exception as e:
        log.warning(f"Redis unavailable ({e}) - using in-memory stores")
        return None


async def close_redis(client: Optional[aioredis.Redis]) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        log.warning(f"Redis close failed: {e}")
