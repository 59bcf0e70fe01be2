"""
Settlement Endpoints.
Rider cash remittance initiation, status polling, and the daily summary.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.schemas import SettlementRequest
from app.config import Settings, get_settings
from app.database import get_db
from app.services.settlement_service import SettlementService, parse_day

router = APIRouter()
riders_router = APIRouter()


@router.post("/initiate")
async def initiate_settlement(
    request: SettlementRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    service = SettlementService(db, settings)
    return await service.initiate(request.rider_id, request.date, request.amount)


@router.get("/status")
async def check_settlement_status(
    settlement_id: Optional[uuid.UUID] = Query(None, alias="settlementId"),
    rider_id: Optional[uuid.UUID] = Query(None, alias="riderId"),
    date: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    day = parse_day(date) if date else None
    service = SettlementService(db, settings)
    return await service.get_status(settlement_id=settlement_id, rider_id=rider_id, day=day)


@riders_router.get("/{rider_id}/settlement")
async def rider_daily_settlement(
    rider_id: uuid.UUID,
    date: str = Query("today"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Collections for one rider and day (date=today or YYYY-MM-DD)."""
    service = SettlementService(db, settings)
    return {"settlement": await service.daily_summary(rider_id, parse_day(date))}
