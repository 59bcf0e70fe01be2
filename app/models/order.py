"""Order model - COD delivery order and its embedded payment obligation."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric, Float, Text, Uuid, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import OrderStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """
    COD order moved through the delivery workflow by its rider.

    The payment columns (amount_paid, payment_error, payment_reference,
    last_webhook_event_id) are written both by the rider path and by the
    webhook path; both go through conditional updates keyed on status.
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("cod_amount > 0", name="ck_orders_cod_amount_positive"),
        CheckConstraint("amount_paid >= 0", name="ck_orders_amount_paid_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Human readable number shown to riders and customers
    order_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
    )

    # Package
    package_description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    cod_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    # Pickup location
    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    pickup_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pickup_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pickup_contact_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    pickup_contact_phone: Mapped[str] = mapped_column(String(30), nullable=False, default="")

    # Delivery location
    delivery_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    delivery_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    delivery_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    delivery_contact_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    delivery_contact_phone: Mapped[str] = mapped_column(String(30), nullable=False, default="")

    # Workflow
    status: Mapped[str] = mapped_column(
        String(30),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Assignment
    rider_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)

    # Step timestamps
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivering_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_initiated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Proof of delivery
    pod_photo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pod_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pod_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Audit for cash payments
    cash_audit_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # QR payment tracking
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )
    payment_error: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_webhook_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Record timestamps
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
        return f"<Order {self.order_number} status={self.status}>"

    @property
    def remaining_amount(self) -> Decimal:
        return max(Decimal("0"), Decimal(self.cod_amount) - Decimal(self.amount_paid or 0))

    @property
    def is_payment_complete(self) -> bool:
        return self.status in (
            OrderStatus.PAYMENT_CONFIRMED.value,
            OrderStatus.COMPLETED.value,
        )

    @property
    def is_insufficient(self) -> bool:
        paid = Decimal(self.amount_paid or 0)
        return Decimal("0") < paid < Decimal(self.cod_amount)
