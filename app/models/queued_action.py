"""Queued action model - rider mutations captured while offline."""

import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import String, DateTime, Integer, Text, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import ActionStatus
from app.models.order import utcnow


class QueuedAction(Base):
    """
    Durable intent to run one rider mutation.

    client_action_id is generated on the device and is unique, so a batch
    re-sent after a dropped response is stored (and applied) once.
    """

    __tablename__ = "queued_actions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    client_action_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )

    rider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # ActionType value
    action: Mapped[str] = mapped_column(String(30), nullable=False)

    # Action arguments, e.g. {"barcode": "..."} or {"paymentMethod": "cash"}
    payload: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=ActionStatus.QUEUED.value,
        nullable=False,
        index=True,
    )

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<QueuedAction {self.action} order={self.order_id} status={self.status}>"
