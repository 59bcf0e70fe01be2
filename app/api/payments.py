"""
Payment Endpoints.
QRPH initiation and status polling for orders.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.schemas import QrPaymentRequest
from app.config import Settings, get_settings
from app.database import get_db
from app.services.payment_service import PaymentService

router = APIRouter()


@router.post("/qrph")
async def generate_qrph(
    request: QrPaymentRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Put the order in payment_pending and return the static QR."""
    service = PaymentService(db, settings)
    return await service.initiate_qr_payment(request.order_id, request.rider_id, request.amount)


@router.get("/status")
async def check_payment_status(
    order_id: uuid.UUID = Query(..., alias="orderId"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Polled while the rider waits for the webhook. Read only."""
    return await PaymentService(db, settings).get_payment_status(order_id)
