"""
Obligation Store - amounts owed that payment events are applied against.

Orders (awaiting a QR payment) and rider settlements (awaiting a cash
remittance) share one interface so the accumulator treats them alike.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, Optional, Type, Union

from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import Base
from app.exceptions import StoreUnavailableError
from app.fsm.states import ObligationKind, OrderStatus, PaymentMethod, SettlementStatus
from app.models.order import Order
from app.models.settlement import RiderSettlement

logger = logging.getLogger(__name__)


def format_peso(amount: Decimal) -> str:
    return f"₱{Decimal(amount):,.2f}"


class Obligation(ABC):
    """A pending amount owed, wrapping the row that stores it."""

    kind: ClassVar[ObligationKind]
    model: ClassVar[Type[Base]]
    pending_status: ClassVar[str]
    confirmed_status: ClassVar[str]
    # Payment method recorded on the confirmation transaction
    payment_method: ClassVar[str]

    def __init__(self, record: Union[Order, RiderSettlement]):
        self.record = record

    @property
    def id(self) -> uuid.UUID:
        return self.record.id

    @property
    def amount_paid(self) -> Decimal:
        return Decimal(self.record.amount_paid or 0)

    @property
    def last_webhook_event_id(self) -> Optional[str]:
        return self.record.last_webhook_event_id

    @property
    def updated_at(self) -> datetime:
        return self.record.updated_at

    @property
    def status(self) -> str:
        return self.record.status

    @property
    def is_pending(self) -> bool:
        return self.record.status == self.pending_status

    @property
    @abstractmethod
    def amount_expected(self) -> Decimal:
        """Amount that confirms the obligation."""

    @property
    @abstractmethod
    def reference(self) -> Optional[str]:
        """Reference handed to the payer at initiation."""

    @abstractmethod
    def confirmed_values(self, total_paid: Decimal, event_id: str, now: datetime) -> Dict[str, Any]:
        """Columns written when the obligation is satisfied."""

    @abstractmethod
    def partial_values(self, total_paid: Decimal, event_id: str) -> Dict[str, Any]:
        """Columns written when more is still owed."""

    def remaining(self, total_paid: Decimal) -> Decimal:
        return max(Decimal("0"), self.amount_expected - total_paid)

    def describe(self) -> Dict[str, Any]:
        """Identifying fields for webhook responses."""
        return {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id} status={self.status}>"


class OrderObligation(Obligation):
    """COD amount of an order sitting in payment_pending."""

    kind = ObligationKind.ORDER
    model = Order
    pending_status = OrderStatus.PAYMENT_PENDING.value
    confirmed_status = OrderStatus.PAYMENT_CONFIRMED.value
    payment_method = PaymentMethod.QRPH.value

    @property
    def amount_expected(self) -> Decimal:
        return Decimal(self.record.cod_amount)

    @property
    def reference(self) -> Optional[str]:
        return self.record.payment_reference

    def confirmed_values(self, total_paid: Decimal, event_id: str, now: datetime) -> Dict[str, Any]:
        return {
            "status": self.confirmed_status,
            "payment_confirmed_at": now,
            "amount_paid": total_paid,
            "payment_error": None,
            "last_webhook_event_id": event_id,
            "updated_at": now,
        }

    def partial_values(self, total_paid: Decimal, event_id: str) -> Dict[str, Any]:
        shortfall = self.remaining(total_paid)
        return {
            "amount_paid": total_paid,
            "payment_error": (
                f"Insufficient payment. Paid: {format_peso(total_paid)}, "
                f"Need: {format_peso(shortfall)} more"
            ),
            "last_webhook_event_id": event_id,
        }

    def describe(self) -> Dict[str, Any]:
        return {"orderId": str(self.id), "orderNumber": self.record.order_number}


class SettlementObligation(Obligation):
    """A rider's pending daily cash remittance."""

    kind = ObligationKind.SETTLEMENT
    model = RiderSettlement
    pending_status = SettlementStatus.PENDING.value
    confirmed_status = SettlementStatus.CONFIRMED.value
    payment_method = PaymentMethod.QRPH.value

    @property
    def amount_expected(self) -> Decimal:
        return Decimal(self.record.amount)

    @property
    def reference(self) -> Optional[str]:
        return self.record.settlement_reference

    def confirmed_values(self, total_paid: Decimal, event_id: str, now: datetime) -> Dict[str, Any]:
        return {
            "status": self.confirmed_status,
            "settled_at": now,
            "amount_paid": total_paid,
            "last_webhook_event_id": event_id,
            "updated_at": now,
        }

    def partial_values(self, total_paid: Decimal, event_id: str) -> Dict[str, Any]:
        return {
            "amount_paid": total_paid,
            "last_webhook_event_id": event_id,
        }

    def describe(self) -> Dict[str, Any]:
        return {"settlementId": str(self.id), "riderId": str(self.record.rider_id)}


OBLIGATION_TYPES: Dict[ObligationKind, Type[Obligation]] = {
    ObligationKind.ORDER: OrderObligation,
    ObligationKind.SETTLEMENT: SettlementObligation,
}


def wrap(record: Union[Order, RiderSettlement]) -> Obligation:
    if isinstance(record, Order):
        return OrderObligation(record)
    return SettlementObligation(record)


class ObligationStore:
    """Reads and conditional writes over obligation rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def latest_pending(self, kind: ObligationKind) -> Optional[Obligation]:
        """Most recently updated pending obligation of one kind."""
        obligation_type = OBLIGATION_TYPES[kind]
        model = obligation_type.model
        try:
            result = await self.db.execute(
                select(model)
                .where(model.status == obligation_type.pending_status)
                .order_by(desc(model.updated_at), desc(model.id))
                .limit(1)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch pending {kind.value} obligations: {e}")
            raise StoreUnavailableError("Database error") from e
        record = result.scalar_one_or_none()
        return obligation_type(record) if record else None

    async def get(self, kind: ObligationKind, obligation_id: uuid.UUID) -> Optional[Obligation]:
        """Fresh snapshot of one obligation."""
        obligation_type = OBLIGATION_TYPES[kind]
        model = obligation_type.model
        try:
            result = await self.db.execute(
                select(model)
                .where(model.id == obligation_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        record = result.scalar_one_or_none()
        return obligation_type(record) if record else None

    async def compare_and_set(self, obligation: Obligation, values: Dict[str, Any]) -> bool:
        """
        Write values only if the row is still pending and no other webhook
        has touched it since the snapshot was read.

        Returns False (zero rows) when either predicate no longer holds.
        """
        model = obligation.model
        token = obligation.last_webhook_event_id
        token_clause = (
            model.last_webhook_event_id.is_(None)
            if token is None
            else model.last_webhook_event_id == token
        )
        try:
            result = await self.db.execute(
                update(model)
                .where(
                    model.id == obligation.id,
                    model.status == obligation.pending_status,
                    token_clause,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to update {obligation!r}: {e}")
            raise StoreUnavailableError("Update failed") from e
        return result.rowcount == 1
