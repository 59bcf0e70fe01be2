"""
Idempotency Guard for webhook deliveries.

The database token (last_webhook_event_id on the obligation row) is the
source of truth. Redis only remembers recently committed event ids so
replays can be answered without touching the database.
"""

import logging
from typing import Optional

from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from app.services.obligations import Obligation

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "codrider:webhook:event"


def should_skip(obligation: Obligation, event_id: str) -> bool:
    """True iff this event already mutated the obligation."""
    return obligation.last_webhook_event_id == event_id


class ProcessedEventCache:
    """Fast-path record of committed webhook event ids."""

    def __init__(self, redis: Optional[Redis], ttl_seconds: int = 86400):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(event_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{event_id}"

    async def seen(self, event_id: str) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.exists(self._key(event_id)))
        except RedisError as e:
            logger.warning(f"Redis lookup failed for event {event_id}, using database guard: {e}")
            return False

    async def remember(self, event_id: str) -> None:
        """Call only after the guarded write has committed."""
        if self.redis is None:
            return
        try:
            await self.redis.setex(self._key(event_id), self.ttl_seconds, "1")
        except RedisError as e:
            logger.warning(f"Failed to cache processed event {event_id}: {e}")
