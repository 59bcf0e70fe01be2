"""
Offline Action Replay Worker.

Runs every minute to retry rider actions that could not be applied when
they were synced (store unavailable).
"""

import asyncio
import logging

from app.config import settings
from app.database import Database
from app.services.action_queue import ActionQueue
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def replay_batch() -> int:
    database = Database.from_settings(settings)
    try:
        async with database.session() as db:
            queue = ActionQueue(db, max_attempts=settings.action_max_attempts)
            return await queue.replay_pending(limit=settings.action_replay_batch_size)
    finally:
        await database.dispose()


@celery_app.task(bind=True, max_retries=3)
def replay_queued_actions(self):
    """Replay the oldest queued offline actions."""
    try:
        count = asyncio.run(replay_batch())
        logger.info(f"Replayed {count} queued actions")
        return {"success": True, "count": count}
    except Exception as e:
        logger.error(f"Queued action replay failed: {e}")
        raise self.retry(exc=e, countdown=60)
