"""Payment transaction model - append-only record of confirmed payments."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.order import utcnow


class PaymentTransaction(Base):
    """
    Ledger of applied payments.

    Every webhook event that moved money onto an obligation gets a row
    (status "partial" or "confirmed"), written in the same transaction as
    the obligation update. Rider confirmations get a row with no event_id.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Exactly one of order_id / settlement_id is set
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    settlement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("rider_settlements.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    payment_method: Mapped[str] = mapped_column(String(10), nullable=False)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # partial | confirmed
    status: Mapped[str] = mapped_column(String(20), default="confirmed", nullable=False)

    # rider | webhook
    source: Mapped[str] = mapped_column(String(20), nullable=False)

    # Webhook event id (unique for idempotency; None for rider confirmations)
    event_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )

    # Payment / settlement reference shown to the payer
    reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    confirmed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        target = self.order_id or self.settlement_id
        return f"<PaymentTransaction {self.source} {self.amount} -> {target}>"
