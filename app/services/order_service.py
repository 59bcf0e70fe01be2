"""
Order Service - order creation and listing.
State changes go through OrderDeliveryMachine, not here.
"""

import logging
import secrets
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import BadRequestError, StoreUnavailableError
from app.fsm.states import OrderStatus
from app.models.order import Order, utcnow
from app.services.payment_service import REFERENCE_ALPHABET
from app.services.reconciliation import money

logger = logging.getLogger(__name__)


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def generate_order_number() -> str:
    """ORD-YYMMDD-XXXX"""
    return f"ORD-{utcnow().strftime('%y%m%d')}-{_random_suffix(4)}"


def generate_barcode() -> str:
    """PKGYYMMDDXXXXXXXX, printed on the package label."""
    return f"PKG{utcnow().strftime('%y%m%d')}{_random_suffix(8)}"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def order_body(order: Order) -> Dict[str, Any]:
    """Order as returned to riders and admins (POD photo omitted from lists)."""
    return {
        "id": str(order.id),
        "orderNumber": order.order_number,
        "packageDescription": order.package_description,
        "codAmount": money(order.cod_amount),
        "barcode": order.barcode,
        "pickupAddress": order.pickup_address,
        "pickupLatitude": order.pickup_latitude,
        "pickupLongitude": order.pickup_longitude,
        "pickupContactName": order.pickup_contact_name,
        "pickupContactPhone": order.pickup_contact_phone,
        "deliveryAddress": order.delivery_address,
        "deliveryLatitude": order.delivery_latitude,
        "deliveryLongitude": order.delivery_longitude,
        "deliveryContactName": order.delivery_contact_name,
        "deliveryContactPhone": order.delivery_contact_phone,
        "status": order.status,
        "paymentMethod": order.payment_method,
        "riderId": str(order.rider_id) if order.rider_id else None,
        "amountPaid": money(order.amount_paid),
        "paymentError": order.payment_error,
        "paymentReference": order.payment_reference,
        "acceptedAt": _iso(order.accepted_at),
        "pickedUpAt": _iso(order.picked_up_at),
        "deliveringAt": _iso(order.delivering_at),
        "paymentConfirmedAt": _iso(order.payment_confirmed_at),
        "completedAt": _iso(order.completed_at),
        "failedAt": _iso(order.failed_at),
        "failureReason": order.failure_reason,
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
    }


def order_detail_body(order: Order) -> Dict[str, Any]:
    body = order_body(order)
    body.update(
        {
            "podPhotoUrl": order.pod_photo_url,
            "podLatitude": order.pod_latitude,
            "podLongitude": order.pod_longitude,
            "cashAuditNote": order.cash_audit_note,
        }
    )
    return body


class OrderService:
    """Service for order CRUD."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_order(
        self,
        cod_amount: Decimal,
        package_description: str = "Package",
        **fields: Any,
    ) -> Order:
        if Decimal(cod_amount) <= 0:
            raise BadRequestError("COD amount must be greater than zero")

        order = Order(
            order_number=generate_order_number(),
            barcode=generate_barcode(),
            cod_amount=Decimal(cod_amount),
            package_description=package_description or "Package",
            status=OrderStatus.PENDING.value,
            amount_paid=Decimal("0"),
            **fields,
        )
        self.db.add(order)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Order number collision on create: {e}")
            raise StoreUnavailableError("Failed to create order") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Failed to create order") from e

        logger.info(f"Order created: {order.order_number} ({order.cod_amount})")
        return order

    async def list_orders(
        self,
        rider_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> List[Order]:
        query = select(Order).order_by(desc(Order.created_at))
        if rider_id:
            query = query.where(Order.rider_id == rider_id)
        if status:
            query = query.where(Order.status == OrderStatus(status).value)
        query = query.offset((page - 1) * limit).limit(limit)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return list(result.scalars().all())

    async def list_available(self, limit: int = 50) -> List[Order]:
        """Pending orders no rider has claimed, oldest first."""
        try:
            result = await self.db.execute(
                select(Order)
                .where(Order.status == OrderStatus.PENDING.value, Order.rider_id.is_(None))
                .order_by(Order.created_at)
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return list(result.scalars().all())
