import hmac
from typing import Optional

from fastapi import Depends, Header
from redis.asyncio.client import Redis

from app.config import Settings, get_settings
from app.exceptions import UnauthorizedError
from app.redis import get_redis
from app.services.idempotency import ProcessedEventCache


async def require_admin(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Validate the Admin Key header.
    Returns the key if valid, raises 401 otherwise.
    """
    if not x_admin_key:
        raise UnauthorizedError("Missing admin key")

    valid_key = settings.admin_api_key
    if not valid_key or not hmac.compare_digest(x_admin_key, valid_key):
        raise UnauthorizedError("Invalid admin key")

    return x_admin_key


async def get_event_cache(
    redis: Optional[Redis] = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> ProcessedEventCache:
    """Processed webhook event cache (no-op without Redis)."""
    return ProcessedEventCache(redis, ttl_seconds=settings.processed_event_ttl_seconds)
