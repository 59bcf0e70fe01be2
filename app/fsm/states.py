"""
FSM State Definitions.
Order delivery states, payment methods, settlement states and rider-side steps.
"""

from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    """
    Order lifecycle.
    Linear; the only way backwards is out (FAILED, via admin cancel).
    """

    PENDING = "pending"                        # No rider has accepted yet
    ACCEPTED = "accepted"                      # Rider accepted, heading to pickup
    PICKED_UP = "picked_up"                    # Barcode verified at pickup
    DELIVERING = "delivering"                  # On route to customer
    PAYMENT_PENDING = "payment_pending"        # Waiting for QR payment webhook
    PAYMENT_CONFIRMED = "payment_confirmed"    # Cash received or QR settled
    COMPLETED = "completed"                    # POD captured
    FAILED = "failed"                          # Cancelled by admin

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position along the happy path; FAILED sorts last."""
        return list(OrderStatus).index(self)


# Allowed prior states for each transition
TRANSITIONS = {
    OrderStatus.ACCEPTED: (OrderStatus.PENDING,),
    OrderStatus.PICKED_UP: (OrderStatus.ACCEPTED,),
    OrderStatus.DELIVERING: (OrderStatus.PICKED_UP,),
    OrderStatus.PAYMENT_PENDING: (OrderStatus.DELIVERING, OrderStatus.PAYMENT_PENDING),
    OrderStatus.PAYMENT_CONFIRMED: (OrderStatus.DELIVERING, OrderStatus.PAYMENT_PENDING),
    OrderStatus.COMPLETED: (OrderStatus.PAYMENT_CONFIRMED,),
    OrderStatus.FAILED: (
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.PICKED_UP,
        OrderStatus.DELIVERING,
        OrderStatus.PAYMENT_PENDING,
        OrderStatus.PAYMENT_CONFIRMED,
    ),
}


class PaymentMethod(str, Enum):
    """How the customer paid the COD amount."""

    CASH = "cash"
    QRPH = "qrph"


class SettlementStatus(str, Enum):
    """Rider cash remittance states. CONFIRMED is terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class ObligationKind(str, Enum):
    """Which record a payment event is applied against."""

    ORDER = "order"
    SETTLEMENT = "settlement"


class DeliveryStep(str, Enum):
    """
    Rider-side workflow steps.
    Finer grained than OrderStatus: EN_ROUTE_PICKUP/AT_PICKUP both sit on ACCEPTED.
    """

    EN_ROUTE_PICKUP = "en_route_pickup"
    AT_PICKUP = "at_pickup"
    DELIVERING = "delivering"
    PAYMENT = "payment"
    PROOF = "proof"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return list(DeliveryStep).index(self)

    @classmethod
    def from_order_status(cls, status: str) -> Optional["DeliveryStep"]:
        """Step implied by the authoritative order status (None for pending/failed)."""
        mapping = {
            OrderStatus.ACCEPTED.value: cls.EN_ROUTE_PICKUP,
            OrderStatus.PICKED_UP.value: cls.DELIVERING,
            OrderStatus.DELIVERING.value: cls.DELIVERING,
            OrderStatus.PAYMENT_PENDING.value: cls.PAYMENT,
            OrderStatus.PAYMENT_CONFIRMED.value: cls.PROOF,
            OrderStatus.COMPLETED.value: cls.COMPLETED,
        }
        return mapping.get(status)

    @classmethod
    def furthest_for_order_status(cls, status: str) -> Optional["DeliveryStep"]:
        """Furthest step a rider can have reached without the order moving on."""
        mapping = {
            OrderStatus.ACCEPTED.value: cls.AT_PICKUP,
            OrderStatus.PICKED_UP.value: cls.DELIVERING,
            OrderStatus.DELIVERING.value: cls.PAYMENT,
            OrderStatus.PAYMENT_PENDING.value: cls.PAYMENT,
            OrderStatus.PAYMENT_CONFIRMED.value: cls.PROOF,
            OrderStatus.COMPLETED.value: cls.COMPLETED,
        }
        return mapping.get(status)


class PaymentSource(str, Enum):
    """Who asserted a payment confirmation."""

    RIDER = "rider"
    WEBHOOK = "webhook"


class ActionType(str, Enum):
    """Rider mutations that may be queued while offline."""

    CLAIM = "claim"
    PICKUP = "pickup"
    START_DELIVERING = "start_delivering"
    CONFIRM_PAYMENT = "confirm_payment"
    COMPLETE = "complete"


class ActionStatus(str, Enum):
    """Lifecycle of a queued offline action."""

    QUEUED = "queued"        # Stored, not yet applied (or transient failure)
    APPLIED = "applied"      # Went through the conditional write
    REJECTED = "rejected"    # Precondition no longer holds; will never apply
    FAILED = "failed"        # Gave up after max attempts
