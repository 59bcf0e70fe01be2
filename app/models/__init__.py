"""Models package for database models."""

from app.models.order import Order
from app.models.settlement import RiderSettlement
from app.models.payment_transaction import PaymentTransaction
from app.models.delivery_progress import DeliveryProgress
from app.models.queued_action import QueuedAction

__all__ = [
    "Order",
    "RiderSettlement",
    "PaymentTransaction",
    "DeliveryProgress",
    "QueuedAction",
]
