"""
Offline Action Queue - rider mutations captured while the device was offline.

Actions are stored first (deduplicated on the device-generated
client_action_id) and then replayed through the same conditional writes
the online endpoints use. A replay whose precondition no longer holds is
rejected and never retried; store failures are retried up to a limit.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AppError, StoreUnavailableError
from app.fsm.machine import OrderDeliveryMachine
from app.fsm.states import ActionStatus, ActionType, PaymentMethod
from app.models.order import utcnow
from app.models.queued_action import QueuedAction

logger = logging.getLogger(__name__)


def action_body(action: QueuedAction) -> Dict[str, Any]:
    return {
        "id": str(action.id),
        "clientActionId": action.client_action_id,
        "orderId": str(action.order_id),
        "action": action.action,
        "status": action.status,
        "attempts": action.attempts,
        "error": action.last_error,
    }


class ActionQueue:
    """Durable queue of rider actions, replayed through OrderDeliveryMachine."""

    def __init__(self, db: AsyncSession, max_attempts: int = 5):
        self.db = db
        self.max_attempts = max_attempts
        self.machine = OrderDeliveryMachine(db)

    async def get_by_client_id(self, client_action_id: str) -> Optional[QueuedAction]:
        try:
            result = await self.db.execute(
                select(QueuedAction)
                .where(QueuedAction.client_action_id == client_action_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return result.scalar_one_or_none()

    async def enqueue(
        self,
        rider_id: uuid.UUID,
        client_action_id: str,
        order_id: uuid.UUID,
        action: ActionType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> QueuedAction:
        """Store an action once. Re-sending the same client_action_id returns the stored row."""
        existing = await self.get_by_client_id(client_action_id)
        if existing:
            logger.info(f"Action {client_action_id} already queued ({existing.status})")
            return existing

        queued = QueuedAction(
            client_action_id=client_action_id,
            rider_id=rider_id,
            order_id=order_id,
            action=ActionType(action).value,
            payload=payload or {},
            status=ActionStatus.QUEUED.value,
            attempts=0,
        )
        self.db.add(queued)
        try:
            await self.db.commit()
        except IntegrityError:
            # Same batch re-sent concurrently
            await self.db.rollback()
            existing = await self.get_by_client_id(client_action_id)
            if existing is None:
                raise StoreUnavailableError("Failed to queue action")
            return existing
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Failed to queue action") from e

        logger.info(f"Queued {queued!r} ({client_action_id})")
        return queued

    async def get(self, action_id: uuid.UUID) -> QueuedAction:
        try:
            result = await self.db.execute(
                select(QueuedAction)
                .where(QueuedAction.id == action_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return result.scalar_one()

    async def replay(self, action_id: uuid.UUID) -> QueuedAction:
        """
        Apply one queued action. Already processed actions are returned as is.

        Takes the id rather than the instance: a failed transition rolls the
        session back, which expires every loaded instance.
        """
        action = await self.get(action_id)
        if action.status != ActionStatus.QUEUED.value:
            return action

        attempts = action.attempts + 1
        action_type = action.action
        order_id = action.order_id
        rider_id = action.rider_id
        payload = dict(action.payload or {})

        try:
            await self._dispatch(action_type, order_id, rider_id, payload)
        except StoreUnavailableError as e:
            status = ActionStatus.FAILED if attempts >= self.max_attempts else ActionStatus.QUEUED
            logger.warning(f"Replay of action {action_id} failed (attempt {attempts}): {e.message}")
            return await self._finish(action_id, status, attempts, e.message)
        except AppError as e:
            logger.info(f"Replay of action {action_id} rejected: {e.message}")
            return await self._finish(action_id, ActionStatus.REJECTED, attempts, e.message)
        except (KeyError, ValueError) as e:
            logger.info(f"Replay of action {action_id} rejected, bad payload: {e}")
            return await self._finish(action_id, ActionStatus.REJECTED, attempts, f"Invalid payload: {e}")

        logger.info(f"Replayed action {action_id}: {action_type} on order {order_id}")
        return await self._finish(action_id, ActionStatus.APPLIED, attempts, None)

    async def replay_pending(self, limit: int = 100) -> int:
        """Replay the oldest queued actions. Returns how many were attempted."""
        try:
            result = await self.db.execute(
                select(QueuedAction.id)
                .where(QueuedAction.status == ActionStatus.QUEUED.value)
                .order_by(QueuedAction.created_at)
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e

        action_ids = list(result.scalars().all())
        for action_id in action_ids:
            await self.replay(action_id)
        return len(action_ids)

    async def list_for_rider(
        self,
        rider_id: uuid.UUID,
        statuses: Iterable[ActionStatus] = (ActionStatus.QUEUED, ActionStatus.FAILED),
    ) -> List[QueuedAction]:
        try:
            result = await self.db.execute(
                select(QueuedAction)
                .where(
                    QueuedAction.rider_id == rider_id,
                    QueuedAction.status.in_([s.value for s in statuses]),
                )
                .order_by(QueuedAction.created_at)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return list(result.scalars().all())

    async def _dispatch(
        self,
        action_type: str,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        payload: Dict[str, Any],
    ) -> None:
        action_type = ActionType(action_type)

        if action_type == ActionType.CLAIM:
            await self.machine.claim(order_id, rider_id)
        elif action_type == ActionType.PICKUP:
            await self.machine.verify_pickup(order_id, rider_id, payload["barcode"])
        elif action_type == ActionType.START_DELIVERING:
            await self.machine.start_delivering(order_id, rider_id)
        elif action_type == ActionType.CONFIRM_PAYMENT:
            await self.machine.confirm_payment(
                order_id,
                rider_id,
                PaymentMethod(payload.get("paymentMethod", PaymentMethod.CASH.value)),
                cash_audit_note=payload.get("cashAuditNote"),
                payment_reference=payload.get("paymentReference"),
            )
        elif action_type == ActionType.COMPLETE:
            await self.machine.complete(
                order_id,
                rider_id,
                payload.get("photoUrl"),
                latitude=payload.get("latitude"),
                longitude=payload.get("longitude"),
            )

    async def _finish(
        self,
        action_id: uuid.UUID,
        status: ActionStatus,
        attempts: int,
        error: Optional[str],
    ) -> QueuedAction:
        values: Dict[str, Any] = {
            "status": status.value,
            "attempts": attempts,
            "last_error": error,
        }
        if status != ActionStatus.QUEUED:
            values["processed_at"] = utcnow()

        try:
            await self.db.execute(
                update(QueuedAction)
                .where(QueuedAction.id == action_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError("Failed to record action result") from e
        return await self.get(action_id)
