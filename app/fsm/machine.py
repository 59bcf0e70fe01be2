"""
FSM Machine - Order delivery state machine with strict transitions.

Every transition is one conditional UPDATE on the expected prior status
(and, for rider actions, the assigned rider). Zero rows means someone else
moved the order first; the row is re-read only to explain why.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    BadRequestError,
    BarcodeMismatchError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
)
from app.fsm.states import TRANSITIONS, OrderStatus, PaymentMethod, PaymentSource
from app.models.order import Order, utcnow
from app.models.payment_transaction import PaymentTransaction

logger = logging.getLogger(__name__)


def normalize_barcode(value: Optional[str]) -> str:
    return (value or "").strip().upper()


class OrderDeliveryMachine:
    """
    Finite State Machine for the rider delivery workflow.

    pending -> accepted -> picked_up -> delivering
            -> payment_pending (QR only) -> payment_confirmed -> completed
    Any non-terminal state -> failed (admin cancel).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_order(self, order_id: uuid.UUID) -> Order:
        """Fresh read of an order, 404 if missing."""
        try:
            result = await self.db.execute(
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def get_rider_order(self, order_id: uuid.UUID, rider_id: uuid.UUID) -> Order:
        order = await self.get_order(order_id)
        if order.rider_id != rider_id:
            raise ForbiddenError("This order is not assigned to you")
        return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def claim(self, order_id: uuid.UUID, rider_id: uuid.UUID) -> Order:
        """First rider to claim a pending, unassigned order wins."""
        now = utcnow()
        updated = await self._conditional_update(
            order_id,
            OrderStatus.ACCEPTED,
            {"rider_id": rider_id, "accepted_at": now},
            Order.rider_id.is_(None),
        )
        if not updated:
            order = await self.get_order(order_id)
            logger.info(f"Claim of {order!r} by rider {rider_id} lost")
            raise InvalidTransitionError("Order is no longer available", order.status)

        await self._commit()
        logger.info(f"Order {order_id} claimed by rider {rider_id}")
        return await self.get_order(order_id)

    async def verify_pickup(self, order_id: uuid.UUID, rider_id: uuid.UUID, barcode: str) -> Order:
        order = await self.get_rider_order(order_id, rider_id)

        if normalize_barcode(barcode) != normalize_barcode(order.barcode):
            logger.info(f"Barcode mismatch on {order!r}")
            raise BarcodeMismatchError()

        return await self._rider_transition(
            order_id,
            rider_id,
            OrderStatus.PICKED_UP,
            {"picked_up_at": utcnow()},
        )

    async def start_delivering(self, order_id: uuid.UUID, rider_id: uuid.UUID) -> Order:
        return await self._rider_transition(
            order_id,
            rider_id,
            OrderStatus.DELIVERING,
            {"delivering_at": utcnow()},
        )

    async def initiate_qr_payment(
        self,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        payment_reference: str,
    ) -> Order:
        """
        Put the order in payment_pending with a fresh reference.
        Accumulated amount_paid is kept when re-initiating.
        """
        return await self._rider_transition(
            order_id,
            rider_id,
            OrderStatus.PAYMENT_PENDING,
            {
                "payment_method": PaymentMethod.QRPH.value,
                "payment_reference": payment_reference,
                "payment_initiated_at": utcnow(),
            },
        )

    async def confirm_payment(
        self,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        method: PaymentMethod,
        cash_audit_note: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> Order:
        """Rider-asserted payment (cash handed over, or QR seen on the customer's phone)."""
        method = PaymentMethod(method)
        now = utcnow()
        values: Dict[str, Any] = {
            "payment_method": method.value,
            "payment_confirmed_at": now,
            "payment_error": None,
        }
        if method == PaymentMethod.CASH and cash_audit_note:
            values["cash_audit_note"] = cash_audit_note
        if method == PaymentMethod.QRPH and payment_reference:
            values["payment_reference"] = payment_reference

        updated = await self._conditional_update(
            order_id,
            OrderStatus.PAYMENT_CONFIRMED,
            values,
            Order.rider_id == rider_id,
        )
        if not updated:
            order = await self.get_rider_order(order_id, rider_id)
            if order.status == OrderStatus.PAYMENT_CONFIRMED.value:
                # Webhook got there first
                logger.info(f"{order!r} already payment_confirmed, rider confirmation ignored")
                return order
            raise self._invalid(order, OrderStatus.PAYMENT_CONFIRMED)

        order = await self.get_order(order_id)
        self.db.add(
            PaymentTransaction(
                order_id=order.id,
                payment_method=method.value,
                amount=Decimal(order.cod_amount),
                status="confirmed",
                source=PaymentSource.RIDER.value,
                reference=order.payment_reference,
                confirmed_at=now,
            )
        )
        await self._commit()
        logger.info(f"Payment for {order!r} confirmed by rider ({method.value})")
        return await self.get_order(order_id)

    async def complete(
        self,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        pod_photo_url: Optional[str],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Order:
        if not pod_photo_url:
            raise BadRequestError("Proof of delivery photo is required")

        return await self._rider_transition(
            order_id,
            rider_id,
            OrderStatus.COMPLETED,
            {
                "completed_at": utcnow(),
                "pod_photo_url": pod_photo_url,
                "pod_latitude": latitude,
                "pod_longitude": longitude,
            },
        )

    async def cancel(self, order_id: uuid.UUID, reason: Optional[str] = None) -> Order:
        """Admin cancel. Irreversible."""
        updated = await self._conditional_update(
            order_id,
            OrderStatus.FAILED,
            {"failed_at": utcnow(), "failure_reason": reason},
        )
        if not updated:
            order = await self.get_order(order_id)
            raise self._invalid(order, OrderStatus.FAILED)

        await self._commit()
        logger.info(f"Order {order_id} cancelled: {reason}")
        return await self.get_order(order_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _rider_transition(
        self,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        target: OrderStatus,
        values: Dict[str, Any],
    ) -> Order:
        updated = await self._conditional_update(
            order_id,
            target,
            values,
            Order.rider_id == rider_id,
        )
        if not updated:
            order = await self.get_rider_order(order_id, rider_id)
            raise self._invalid(order, target)

        await self._commit()
        logger.info(f"Order {order_id} -> {target.value}")
        return await self.get_order(order_id)

    async def _conditional_update(
        self,
        order_id: uuid.UUID,
        target: OrderStatus,
        values: Dict[str, Any],
        *conditions: Any,
    ) -> bool:
        allowed = [status.value for status in TRANSITIONS[target]]
        try:
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.in_(allowed), *conditions)
                .values(status=target.value, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to move order {order_id} to {target.value}: {e}")
            raise StoreUnavailableError("Update failed") from e

        if result.rowcount != 1:
            await self.db.rollback()
            return False
        return True

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Update failed") from e

    @staticmethod
    def _invalid(order: Order, target: OrderStatus) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"Cannot move order from {order.status} to {target.value}",
            order.status,
        )
