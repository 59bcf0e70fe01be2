"""
Settlement Service - rider daily cash remittance.

A rider collects cash on COD orders during the day and pays it back by QR.
The amount owed is derived from the rider's completed cash orders, never
taken from the client.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
)
from app.fsm.states import OrderStatus, PaymentMethod, SettlementStatus
from app.models.order import Order, utcnow
from app.models.settlement import RiderSettlement
from app.services.obligations import format_peso
from app.services.payment_service import generate_reference, to_amount
from app.services.reconciliation import money

logger = logging.getLogger(__name__)

RECENT_DELIVERIES_LIMIT = 10


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """UTC [start, end) of a calendar date."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def parse_day(value: Optional[str]) -> date:
    """'today' (or nothing) -> current UTC date, else YYYY-MM-DD."""
    if not value or value == "today":
        return utcnow().date()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise BadRequestError("Invalid date, expected YYYY-MM-DD or 'today'")


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SettlementService:
    """Service for rider settlements."""

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings

    async def completed_orders(self, rider_id: uuid.UUID, day: date) -> List[Order]:
        """Rider's completed orders for the day, newest first."""
        start, end = day_bounds(day)
        try:
            result = await self.db.execute(
                select(Order)
                .where(
                    Order.rider_id == rider_id,
                    Order.status == OrderStatus.COMPLETED.value,
                    Order.completed_at >= start,
                    Order.completed_at < end,
                )
                .order_by(desc(Order.completed_at))
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return list(result.scalars().all())

    async def cash_collected(self, rider_id: uuid.UUID, day: date) -> Decimal:
        orders = await self.completed_orders(rider_id, day)
        total = sum(
            (Decimal(o.cod_amount) for o in orders if o.payment_method == PaymentMethod.CASH.value),
            Decimal("0"),
        )
        return to_amount(total)

    async def get_for_day(self, rider_id: uuid.UUID, day: date) -> Optional[RiderSettlement]:
        try:
            result = await self.db.execute(
                select(RiderSettlement)
                .where(RiderSettlement.rider_id == rider_id, RiderSettlement.date == day)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return result.scalar_one_or_none()

    async def get(self, settlement_id: uuid.UUID) -> Optional[RiderSettlement]:
        try:
            result = await self.db.execute(
                select(RiderSettlement)
                .where(RiderSettlement.id == settlement_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return result.scalar_one_or_none()

    async def initiate(
        self,
        rider_id: uuid.UUID,
        day: date,
        amount: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Create or refresh the (rider, date) settlement and put it in pending.

        Re-initiating a pending settlement issues a new reference and keeps
        whatever has already been paid against it.
        """
        expected = await self.cash_collected(rider_id, day)

        if expected <= 0:
            raise BadRequestError("No cash collected for this date")

        if amount is not None and to_amount(amount) != expected:
            raise ConflictError(
                "Settlement amount does not match cash collected",
                details={"expectedAmount": money(expected)},
            )

        reference = generate_reference("SET")
        settlement = await self.get_for_day(rider_id, day)

        if settlement is None:
            settlement = await self._create(rider_id, day, expected, reference)
        else:
            settlement = await self._refresh_pending(settlement, expected, reference)

        logger.info(f"Settlement initiated: {settlement!r} for {expected} ({reference})")

        return {
            "success": True,
            "settlementId": str(settlement.id),
            "settlementReference": reference,
            "staticQrImageUrl": self.settings.static_qrph_image_url,
            "expectedAmount": money(settlement.amount),
            "amountPaid": money(settlement.amount_paid),
            "pollIntervalSeconds": self.settings.status_poll_interval_seconds,
        }

    async def _create(
        self,
        rider_id: uuid.UUID,
        day: date,
        amount: Decimal,
        reference: str,
    ) -> RiderSettlement:
        settlement = RiderSettlement(
            rider_id=rider_id,
            date=day,
            amount=amount,
            amount_paid=Decimal("0"),
            status=SettlementStatus.PENDING.value,
            settlement_reference=reference,
            initiated_at=utcnow(),
        )
        self.db.add(settlement)
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent initiate for the same rider and date
            await self.db.rollback()
            existing = await self.get_for_day(rider_id, day)
            if existing is None:
                raise StoreUnavailableError("Settlement could not be created")
            return await self._refresh_pending(existing, amount, reference)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Failed to initiate settlement") from e
        return settlement

    async def _refresh_pending(
        self,
        settlement: RiderSettlement,
        amount: Decimal,
        reference: str,
    ) -> RiderSettlement:
        if settlement.is_confirmed:
            raise BadRequestError("Settlement already completed for this date")

        now = utcnow()
        try:
            result = await self.db.execute(
                update(RiderSettlement)
                .where(
                    RiderSettlement.id == settlement.id,
                    RiderSettlement.status == SettlementStatus.PENDING.value,
                )
                .values(
                    amount=amount,
                    settlement_reference=reference,
                    initiated_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Failed to initiate settlement") from e

        if result.rowcount != 1:
            # Confirmed by a webhook in the meantime
            raise BadRequestError("Settlement already completed for this date")

        return await self.get(settlement.id)

    async def get_status(
        self,
        settlement_id: Optional[uuid.UUID] = None,
        rider_id: Optional[uuid.UUID] = None,
        day: Optional[date] = None,
    ) -> Dict[str, Any]:
        if settlement_id:
            settlement = await self.get(settlement_id)
        elif rider_id and day:
            settlement = await self.get_for_day(rider_id, day)
        else:
            raise BadRequestError("Settlement ID or (Rider ID + date) is required")

        if settlement is None:
            raise NotFoundError("Settlement not found")

        return settlement_status_body(settlement)

    async def daily_summary(self, rider_id: uuid.UUID, day: date) -> Dict[str, Any]:
        """Collections for the rider settlement screen."""
        orders = await self.completed_orders(rider_id, day)
        qrph_orders = [o for o in orders if o.payment_method == PaymentMethod.QRPH.value]
        cash_orders = [o for o in orders if o.payment_method == PaymentMethod.CASH.value]

        def total(items: List[Order]) -> Decimal:
            return sum((Decimal(o.cod_amount) for o in items), Decimal("0"))

        settlement = await self.get_for_day(rider_id, day)

        return {
            "date": day.isoformat(),
            "riderId": str(rider_id),
            "totalDeliveries": len(orders),
            "completedDeliveries": len(orders),
            "qrphAmount": money(total(qrph_orders)),
            "qrphCount": len(qrph_orders),
            "cashAmount": money(total(cash_orders)),
            "cashCount": len(cash_orders),
            "totalCollected": money(total(orders)),
            "recentDeliveries": [
                {
                    "id": str(o.id),
                    "orderNumber": o.order_number,
                    "customerName": o.delivery_contact_name,
                    "amount": money(o.cod_amount),
                    "paymentMethod": o.payment_method,
                    "completedAt": isoformat(o.completed_at),
                }
                for o in orders[:RECENT_DELIVERIES_LIMIT]
            ],
            "settlement": settlement_status_body(settlement) if settlement else None,
        }


def settlement_status_body(settlement: RiderSettlement) -> Dict[str, Any]:
    return {
        "settlementId": str(settlement.id),
        "riderId": str(settlement.rider_id),
        "date": settlement.date.isoformat(),
        "status": settlement.status,
        "expectedAmount": money(settlement.amount),
        "amountPaid": money(settlement.amount_paid),
        "remainingAmount": money(settlement.remaining_amount),
        "isSettlementComplete": settlement.is_confirmed,
        "isPaymentComplete": settlement.is_confirmed,
        "isInsufficient": settlement.is_insufficient,
        "paymentError": settlement_payment_error(settlement),
        "settlementReference": settlement.settlement_reference,
        "settledAt": isoformat(settlement.settled_at),
    }


def settlement_payment_error(settlement: RiderSettlement) -> Optional[str]:
    if not settlement.is_insufficient:
        return None
    return (
        f"Insufficient payment. Paid: {format_peso(settlement.amount_paid)}, "
        f"Need: {format_peso(settlement.remaining_amount)} more"
    )
