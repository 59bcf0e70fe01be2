"""
Payment Service - QRPH payment initiation and status polling for orders.
"""

import logging
import secrets
import string
import time
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.exceptions import BadRequestError, ConflictError
from app.fsm.machine import OrderDeliveryMachine
from app.models.order import Order
from app.services.reconciliation import money

logger = logging.getLogger(__name__)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference(prefix: str) -> str:
    """<prefix>-<epoch ms>-<4 upper alnum>, e.g. ORD-1718000000000-K3ZQ."""
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(4))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def to_amount(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


class PaymentService:
    """Service for order QR payments."""

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings
        self.machine = OrderDeliveryMachine(db)

    async def initiate_qr_payment(
        self,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
        amount: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Hand the rider a static QR and a fresh reference.

        The expected amount is always the order's COD amount; a client
        amount is only checked against it.
        """
        order = await self.machine.get_rider_order(order_id, rider_id)

        if order.is_payment_complete:
            raise ConflictError("Payment already confirmed for this order")

        if amount is not None and to_amount(amount) != to_amount(order.cod_amount):
            raise BadRequestError(
                "Amount does not match the order's COD amount",
                details={"expectedAmount": money(order.cod_amount)},
            )

        reference = generate_reference("ORD")
        order = await self.machine.initiate_qr_payment(order_id, rider_id, reference)

        logger.info(f"QRPH payment initiated for {order!r} ({reference})")

        return {
            "success": True,
            "orderId": str(order.id),
            "paymentReference": reference,
            "staticQrImageUrl": self.settings.static_qrph_image_url,
            "expectedAmount": money(order.cod_amount),
            "amountPaid": money(order.amount_paid),
            "pollIntervalSeconds": self.settings.status_poll_interval_seconds,
        }

    async def get_payment_status(self, order_id: uuid.UUID) -> Dict[str, Any]:
        """Polled by the rider app while waiting for the webhook."""
        order = await self.machine.get_order(order_id)
        return payment_status_body(order)


def payment_status_body(order: Order) -> Dict[str, Any]:
    return {
        "orderId": str(order.id),
        "orderNumber": order.order_number,
        "status": order.status,
        "expectedAmount": money(order.cod_amount),
        "amountPaid": money(order.amount_paid),
        "remainingAmount": money(order.remaining_amount),
        "isPaymentComplete": order.is_payment_complete,
        "isInsufficient": order.is_insufficient,
        "paymentError": order.payment_error,
    }
