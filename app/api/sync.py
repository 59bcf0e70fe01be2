"""
Offline action sync.
The rider app posts actions it queued while offline; each is stored once
and replayed immediately.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.schemas import SyncRequest
from app.config import Settings, get_settings
from app.database import get_db
from app.services.action_queue import ActionQueue, action_body

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/actions")
async def sync_actions(
    request: SyncRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    queue = ActionQueue(db, max_attempts=settings.action_max_attempts)

    # Store the whole batch before applying any of it
    action_ids = []
    for item in request.actions:
        queued = await queue.enqueue(
            rider_id=request.rider_id,
            client_action_id=item.client_action_id,
            order_id=item.order_id,
            action=item.action,
            payload=item.payload,
        )
        action_ids.append(queued.id)

    results = []
    for action_id in action_ids:
        results.append(action_body(await queue.replay(action_id)))

    logger.info(f"Synced {len(results)} actions for rider {request.rider_id}")
    return {"success": True, "results": results}


@router.get("/actions")
async def list_pending_actions(
    rider_id: uuid.UUID = Query(..., alias="riderId"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Actions still queued or given up on."""
    queue = ActionQueue(db, max_attempts=settings.action_max_attempts)
    actions = await queue.list_for_rider(rider_id)
    return {"actions": [action_body(a) for a in actions]}
