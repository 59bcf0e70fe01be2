"""FSM package for order delivery state management."""

from app.fsm.states import (
    ActionStatus,
    ActionType,
    DeliveryStep,
    ObligationKind,
    OrderStatus,
    PaymentMethod,
    PaymentSource,
    SettlementStatus,
)

__all__ = [
    "ActionStatus",
    "ActionType",
    "DeliveryStep",
    "ObligationKind",
    "OrderStatus",
    "PaymentMethod",
    "PaymentSource",
    "SettlementStatus",
]
