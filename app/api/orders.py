"""
Order Endpoints.
Listing and creation, the rider delivery workflow, and step resumption.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_admin
from app.api.schemas import (
    CancelRequest,
    CompleteRequest,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    PickupRequest,
    ProgressRequest,
    RiderRequest,
)
from app.database import get_db
from app.fsm.machine import OrderDeliveryMachine
from app.fsm.states import OrderStatus
from app.services.order_service import OrderService, order_body, order_detail_body
from app.services.progress_service import ProgressService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
async def list_orders(
    rider_id: Optional[uuid.UUID] = Query(None, alias="riderId"),
    status: Optional[OrderStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    orders = await OrderService(db).list_orders(rider_id=rider_id, status=status, page=page, limit=limit)
    return {
        "orders": [order_body(o) for o in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "hasMore": len(orders) == limit,
        },
    }


@router.post("")
async def create_order(
    request: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(require_admin),
):
    fields = request.model_dump(exclude={"cod_amount", "package_description"})
    order = await OrderService(db).create_order(
        cod_amount=request.cod_amount,
        package_description=request.package_description,
        **fields,
    )
    return {"order": order_detail_body(order)}


@router.get("/available")
async def list_available_orders(db: AsyncSession = Depends(get_db)):
    """Orders waiting for a rider."""
    orders = await OrderService(db).list_available()
    return {"orders": [order_body(o) for o in orders]}


@router.get("/{order_id}")
async def get_order(order_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    order = await OrderDeliveryMachine(db).get_order(order_id)
    return {"order": order_detail_body(order)}


@router.post("/{order_id}/claim")
async def claim_order(order_id: uuid.UUID, request: RiderRequest, db: AsyncSession = Depends(get_db)):
    order = await OrderDeliveryMachine(db).claim(order_id, request.rider_id)
    return {"success": True, "order": order_body(order)}


@router.post("/{order_id}/pickup")
async def verify_pickup(order_id: uuid.UUID, request: PickupRequest, db: AsyncSession = Depends(get_db)):
    """Barcode scan at the pickup point."""
    order = await OrderDeliveryMachine(db).verify_pickup(order_id, request.rider_id, request.barcode)
    return {"success": True, "order": order_body(order)}


@router.post("/{order_id}/delivering")
async def start_delivering(order_id: uuid.UUID, request: RiderRequest, db: AsyncSession = Depends(get_db)):
    order = await OrderDeliveryMachine(db).start_delivering(order_id, request.rider_id)
    return {"success": True, "order": order_body(order)}


@router.post("/{order_id}/payment-confirmed")
async def confirm_payment(
    order_id: uuid.UUID,
    request: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_db),
):
    order = await OrderDeliveryMachine(db).confirm_payment(
        order_id,
        request.rider_id,
        request.payment_method,
        cash_audit_note=request.cash_audit_note,
        payment_reference=request.payment_reference,
    )
    return {"success": True, "order": order_body(order)}


@router.post("/{order_id}/complete")
async def complete_order(order_id: uuid.UUID, request: CompleteRequest, db: AsyncSession = Depends(get_db)):
    order = await OrderDeliveryMachine(db).complete(
        order_id,
        request.rider_id,
        request.photo_url,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    return {"success": True, "order": order_body(order)}


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: uuid.UUID,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(require_admin),
):
    order = await OrderDeliveryMachine(db).cancel(order_id, request.reason)
    return {"success": True, "order": order_body(order)}


@router.get("/{order_id}/progress")
async def get_progress(
    order_id: uuid.UUID,
    rider_id: uuid.UUID = Query(..., alias="riderId"),
    db: AsyncSession = Depends(get_db),
):
    """Step to resume the delivery flow at."""
    return await ProgressService(db).get_progress(order_id, rider_id)


@router.put("/{order_id}/progress")
async def save_progress(order_id: uuid.UUID, request: ProgressRequest, db: AsyncSession = Depends(get_db)):
    return await ProgressService(db).save_progress(order_id, request.rider_id, request.step)
