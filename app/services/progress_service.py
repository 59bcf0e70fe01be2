"""
Delivery Progress Service - lets a rider resume the delivery flow.

The saved step is a hint from the device. The order status is the
authority: resume never lands behind the step the status implies, and
never ahead of what the status allows.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import BadRequestError, StoreUnavailableError
from app.fsm.machine import OrderDeliveryMachine
from app.fsm.states import DeliveryStep, OrderStatus
from app.models.delivery_progress import DeliveryProgress
from app.models.order import Order, utcnow

logger = logging.getLogger(__name__)

# Orders a rider is still working on
_RESUMABLE = {
    OrderStatus.ACCEPTED.value,
    OrderStatus.PICKED_UP.value,
    OrderStatus.DELIVERING.value,
    OrderStatus.PAYMENT_PENDING.value,
    OrderStatus.PAYMENT_CONFIRMED.value,
}


def resolve_step(order_status: str, saved: Optional[DeliveryStep]) -> Optional[DeliveryStep]:
    """Further-advanced of the saved step and the server-derived step."""
    derived = DeliveryStep.from_order_status(order_status)
    if derived is None:
        # pending or failed: nothing to resume
        return None
    if saved is None:
        return derived

    ceiling = DeliveryStep.furthest_for_order_status(order_status)
    if ceiling is not None and saved.rank > ceiling.rank:
        saved = ceiling
    return saved if saved.rank > derived.rank else derived


class ProgressService:
    """Reads and writes the rider-side step for an order."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.machine = OrderDeliveryMachine(db)

    async def _get(self, order_id: uuid.UUID) -> Optional[DeliveryProgress]:
        try:
            result = await self.db.execute(
                select(DeliveryProgress)
                .where(DeliveryProgress.order_id == order_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return result.scalar_one_or_none()

    async def get_progress(self, order_id: uuid.UUID, rider_id: uuid.UUID) -> Dict[str, Any]:
        order = await self.machine.get_rider_order(order_id, rider_id)
        progress = await self._get(order_id)
        saved = DeliveryStep(progress.step) if progress else None
        return self._body(order, saved)

    async def save_progress(
        self,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        step: DeliveryStep,
    ) -> Dict[str, Any]:
        order = await self.machine.get_rider_order(order_id, rider_id)
        if order.status not in _RESUMABLE:
            raise BadRequestError(f"Order is {order.status}, progress cannot be saved")

        step = DeliveryStep(step)
        progress = await self._get(order_id)
        if progress is None:
            self.db.add(DeliveryProgress(order_id=order_id, rider_id=rider_id, step=step.value))
        else:
            progress.step = step.value
            progress.rider_id = rider_id
            progress.updated_at = utcnow()

        try:
            await self.db.commit()
        except IntegrityError:
            # Another save created the row first
            await self.db.rollback()
            progress = await self._get(order_id)
            progress.step = step.value
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Failed to save progress") from e

        logger.debug(f"Progress for order {order_id}: {step.value}")
        return self._body(order, step)

    @staticmethod
    def _body(order: Order, saved: Optional[DeliveryStep]) -> Dict[str, Any]:
        derived = DeliveryStep.from_order_status(order.status)
        resumed = resolve_step(order.status, saved)
        return {
            "orderId": str(order.id),
            "orderStatus": order.status,
            "savedStep": saved.value if saved else None,
            "derivedStep": derived.value if derived else None,
            "step": resumed.value if resumed else None,
        }

