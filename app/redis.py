"""
Redis access for short-lived third-party credentials.

Only API tokens live here (Shiprocket today). A cache miss or an
unreachable Redis means "log in again", never a failed request.
"""

from typing import Optional
import logging

from redis import asyncio as aioredis
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "tokens:"


class RedisClient:
    """Process-wide async Redis client, created on first use."""

    _client: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Redis:
        if cls._client is None:
            if not settings.redis_url:
                raise RuntimeError("REDIS_URL not configured")

            cls._client = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                health_check_interval=30,
            )
            logger.info("Redis client initialized")

        return cls._client

    @classmethod
    async def close(cls):
        if cls._client:
            await cls._client.aclose()
            cls._client = None
            logger.info("Redis client closed")


async def get_cached_token(name: str) -> Optional[str]:
    """Cached token for `name`, or None on a miss or when Redis is down."""
    try:
        return await RedisClient.get_client().get(f"{TOKEN_KEY_PREFIX}{name}")
    except (RedisError, RuntimeError, OSError) as e:
        logger.warning(f"Token cache unavailable for {name}: {e}")
        return None


async def cache_token(name: str, token: str, ttl_seconds: int) -> bool:
    """Store a token with an expiry. False if it could not be cached."""
    try:
        await RedisClient.get_client().set(f"{TOKEN_KEY_PREFIX}{name}", token, ex=ttl_seconds)
        return True
    except (RedisError, RuntimeError, OSError) as e:
        logger.warning(f"Failed to cache {name} token: {e}")
        return False
