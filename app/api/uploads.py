"""
Proof-of-delivery upload endpoint.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.schemas import PodUploadRequest
from app.config import Settings, get_settings
from app.database import get_db
from app.fsm.machine import OrderDeliveryMachine
from app.services.storage_service import StorageService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/pod")
async def upload_pod(
    request: PodUploadRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Upload a POD photo for an order assigned to the rider.
    Falls back to an inline data URL when the blob store fails.
    """
    await OrderDeliveryMachine(db).get_rider_order(request.order_id, request.rider_id)
    return await StorageService(settings).upload_pod(request.order_id, request.photo_base64)
