"""Rider settlement model - daily cash remittance owed by a rider."""

import uuid
from datetime import datetime, date as date_type
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Date, Numeric, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import SettlementStatus
from app.models.order import utcnow


class RiderSettlement(Base):
    """
    One settlement per rider per calendar date.
    Created by an explicit initiate action, confirmed by the payment webhook.
    """

    __tablename__ = "rider_settlements"
    __table_args__ = (
        UniqueConstraint("rider_id", "date", name="uq_rider_settlements_rider_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    rider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    date: Mapped[date_type] = mapped_column(Date, nullable=False)

    # Cash collected that day, fixed when the settlement is (re)initiated
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=SettlementStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    settlement_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Idempotency token of the last webhook that mutated this row
    last_webhook_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    initiated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<RiderSettlement rider={self.rider_id} date={self.date} status={self.status}>"

    @property
    def remaining_amount(self) -> Decimal:
        return max(Decimal("0"), Decimal(self.amount) - Decimal(self.amount_paid or 0))

    @property
    def is_confirmed(self) -> bool:
        return self.status == SettlementStatus.CONFIRMED.value

    @property
    def is_insufficient(self) -> bool:
        paid = Decimal(self.amount_paid or 0)
        return Decimal("0") < paid < Decimal(self.amount)
