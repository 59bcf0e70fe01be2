"""Delivery progress model - last workflow step a rider reached on an order."""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import DeliveryStep
from app.models.order import utcnow


class DeliveryProgress(Base):
    """
    Persisted rider-side step, keyed by order.
    Read on resume and reconciled against the order status.
    """

    __tablename__ = "delivery_progress"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        primary_key=True,
    )

    rider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    step: Mapped[str] = mapped_column(
        String(30),
        default=DeliveryStep.EN_ROUTE_PICKUP.value,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DeliveryProgress order={self.order_id} step={self.step}>"
