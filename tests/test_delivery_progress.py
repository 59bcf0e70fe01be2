"""
Tests for delivery step resumption.
"""

import uuid

import pytest
from sqlalchemy import update

from app.fsm.states import DeliveryStep, OrderStatus
from app.models.order import Order
from app.services.progress_service import resolve_step


class TestResolveStep:

    def test_derived_step_without_saved(self):
        assert resolve_step("picked_up", None) == DeliveryStep.DELIVERING

    def test_saved_step_within_status(self):
        assert resolve_step("accepted", DeliveryStep.AT_PICKUP) == DeliveryStep.AT_PICKUP

    def test_status_moved_past_saved_step(self):
        assert resolve_step("payment_confirmed", DeliveryStep.EN_ROUTE_PICKUP) == DeliveryStep.PROOF

    def test_saved_step_capped_by_status(self):
        assert resolve_step("accepted", DeliveryStep.COMPLETED) == DeliveryStep.AT_PICKUP
        assert resolve_step("delivering", DeliveryStep.PROOF) == DeliveryStep.PAYMENT

    def test_nothing_to_resume(self):
        assert resolve_step("pending", DeliveryStep.AT_PICKUP) is None
        assert resolve_step("failed", DeliveryStep.PROOF) is None


@pytest.mark.asyncio
async def test_save_and_resume(client, db, make_order, rider_id):
    order = await make_order(status=OrderStatus.ACCEPTED, rider_id=rider_id)
    order_id = order.id
    url = f"/orders/{order_id}/progress"

    response = await client.put(url, json={"riderId": str(rider_id), "step": "at_pickup"})
    assert response.status_code == 200
    assert response.json()["step"] == "at_pickup"

    data = (await client.get(url, params={"riderId": str(rider_id)})).json()
    assert data == {
        "orderId": str(order_id),
        "orderStatus": "accepted",
        "savedStep": "at_pickup",
        "derivedStep": "en_route_pickup",
        "step": "at_pickup",
    }

    # Payment confirmed from another device
    await db.execute(
        update(Order).where(Order.id == order_id).values(status=OrderStatus.PAYMENT_CONFIRMED.value)
    )
    await db.commit()

    data = (await client.get(url, params={"riderId": str(rider_id)})).json()
    assert data["savedStep"] == "at_pickup"
    assert data["step"] == "proof"


@pytest.mark.asyncio
async def test_overwrite_saved_step(client, make_order, rider_id):
    order = await make_order(status=OrderStatus.DELIVERING, rider_id=rider_id)
    url = f"/orders/{order.id}/progress"

    await client.put(url, json={"riderId": str(rider_id), "step": "delivering"})
    await client.put(url, json={"riderId": str(rider_id), "step": "payment"})

    data = (await client.get(url, params={"riderId": str(rider_id)})).json()
    assert data["savedStep"] == "payment"
    assert data["step"] == "payment"


@pytest.mark.asyncio
async def test_progress_for_other_rider_is_403(client, make_order, rider_id):
    order = await make_order(status=OrderStatus.ACCEPTED, rider_id=rider_id)

    response = await client.put(
        f"/orders/{order.id}/progress", json={"riderId": str(uuid.uuid4()), "step": "at_pickup"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_finished_order_progress_not_saved(client, make_order, rider_id):
    order = await make_order(status=OrderStatus.COMPLETED, rider_id=rider_id)

    response = await client.put(
        f"/orders/{order.id}/progress", json={"riderId": str(rider_id), "step": "proof"}
    )
    assert response.status_code == 400

    data = (await client.get(f"/orders/{order.id}/progress", params={"riderId": str(rider_id)})).json()
    assert data["step"] == "completed"
    assert data["savedStep"] is None
