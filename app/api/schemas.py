"""
Request bodies for the rider and admin endpoints.
Clients send camelCase; attributes stay snake_case.
"""

import uuid
from datetime import date as date_type
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.fsm.states import ActionType, DeliveryStep, PaymentMethod


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiderRequest(CamelModel):
    """Body of a rider action that needs nothing but the rider."""
    rider_id: uuid.UUID


class PickupRequest(RiderRequest):
    barcode: str


class ConfirmPaymentRequest(RiderRequest):
    payment_method: PaymentMethod
    cash_audit_note: Optional[str] = None
    payment_reference: Optional[str] = None


class CompleteRequest(RiderRequest):
    photo_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CancelRequest(CamelModel):
    reason: Optional[str] = None


class CreateOrderRequest(CamelModel):
    cod_amount: Decimal = Field(gt=0)
    package_description: str = "Package"
    pickup_address: str = ""
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    pickup_contact_name: str = ""
    pickup_contact_phone: str = ""
    delivery_address: str = ""
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    delivery_contact_name: str = ""
    delivery_contact_phone: str = ""


class ProgressRequest(RiderRequest):
    step: DeliveryStep


class QrPaymentRequest(CamelModel):
    order_id: uuid.UUID
    rider_id: uuid.UUID
    amount: Optional[Decimal] = None


class SettlementRequest(CamelModel):
    rider_id: uuid.UUID
    date: date_type
    amount: Optional[Decimal] = None


class PodUploadRequest(CamelModel):
    order_id: uuid.UUID
    rider_id: uuid.UUID
    photo_base64: str


class QueuedActionRequest(CamelModel):
    client_action_id: str = Field(min_length=1, max_length=100)
    order_id: uuid.UUID
    action: ActionType
    payload: Dict[str, Any] = Field(default_factory=dict)


class SyncRequest(CamelModel):
    rider_id: uuid.UUID
    actions: List[QueuedActionRequest]
