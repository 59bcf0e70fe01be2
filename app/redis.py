"""
Redis client configuration using redis-py (asyncio).
"""

from typing import Optional
import logging

from fastapi import Request
from redis import asyncio as aioredis
from redis.asyncio.client import Redis

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper, one per process."""

    def __init__(self, url: str):
        self.url = url
        self._client: Optional[Redis] = None

    @property
    def client(self) -> Redis:
        """Get or create the connection pool."""
        if self._client is None:
            self._client = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                health_check_interval=30,
            )
            logger.info("Redis client initialized")
        return self._client

    async def close(self) -> None:
        """Close Redis client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis client closed")


async def get_redis(request: Request) -> Optional[Redis]:
    """Dependency for getting redis connection (None when not configured)."""
    wrapper: Optional[RedisClient] = getattr(request.app.state, "redis", None)
    if wrapper is None:
        return None
    return wrapper.client
