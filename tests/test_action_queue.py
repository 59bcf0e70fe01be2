"""
Tests for offline action queueing and replay.
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from app.exceptions import StoreUnavailableError
from app.fsm.machine import OrderDeliveryMachine
from app.fsm.states import ActionStatus, ActionType, OrderStatus
from app.models.order import Order
from app.services.action_queue import ActionQueue


def action(client_action_id, order_id, kind, **payload):
    return {
        "clientActionId": client_action_id,
        "orderId": str(order_id),
        "action": kind,
        "payload": payload,
    }


class TestSyncEndpoint:

    @pytest.mark.asyncio
    async def test_batch_applied_in_order(self, client, make_order, rider_id, reload):
        order = await make_order()
        order_id = order.id
        batch = {
            "riderId": str(rider_id),
            "actions": [
                action("a-1", order_id, "claim"),
                action("a-2", order_id, "pickup", barcode="pkg240101abcd1234"),
                action("a-3", order_id, "start_delivering"),
            ],
        }

        response = await client.post("/sync/actions", json=batch)

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["status"] for r in results] == ["applied"] * 3
        assert [r["clientActionId"] for r in results] == ["a-1", "a-2", "a-3"]
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.DELIVERING.value
        assert order.rider_id == rider_id

    @pytest.mark.asyncio
    async def test_resent_batch_is_not_reapplied(self, client, make_order, rider_id, reload):
        order = await make_order()
        order_id = order.id
        batch = {"riderId": str(rider_id), "actions": [action("a-1", order_id, "claim")]}

        first = (await client.post("/sync/actions", json=batch)).json()["results"][0]
        second = (await client.post("/sync/actions", json=batch)).json()["results"][0]

        assert first["id"] == second["id"]
        assert second["status"] == "applied"
        assert second["attempts"] == 1

    @pytest.mark.asyncio
    async def test_stale_action_rejected(self, client, make_order, rider_id, reload):
        order = await make_order(status=OrderStatus.DELIVERING, rider_id=rider_id)
        order_id = order.id
        batch = {
            "riderId": str(rider_id),
            "actions": [action("a-1", order_id, "pickup", barcode="PKG240101ABCD1234")],
        }

        result = (await client.post("/sync/actions", json=batch)).json()["results"][0]

        assert result["status"] == "rejected"
        assert "picked_up" in result["error"]
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.DELIVERING.value

    @pytest.mark.asyncio
    async def test_claim_taken_while_offline(self, client, make_order, rider_id):
        order = await make_order(status=OrderStatus.ACCEPTED, rider_id=uuid.uuid4())
        batch = {"riderId": str(rider_id), "actions": [action("a-1", order.id, "claim")]}

        result = (await client.post("/sync/actions", json=batch)).json()["results"][0]

        assert result["status"] == "rejected"
        assert result["error"] == "Order is no longer available"

    @pytest.mark.asyncio
    async def test_missing_payload_field_rejected(self, client, make_order, rider_id):
        order = await make_order(status=OrderStatus.ACCEPTED, rider_id=rider_id)
        batch = {"riderId": str(rider_id), "actions": [action("a-1", order.id, "pickup")]}

        result = (await client.post("/sync/actions", json=batch)).json()["results"][0]

        assert result["status"] == "rejected"
        assert result["error"].startswith("Invalid payload")

    @pytest.mark.asyncio
    async def test_unknown_action_is_400(self, client, rider_id):
        batch = {"riderId": str(rider_id), "actions": [action("a-1", uuid.uuid4(), "teleport")]}

        response = await client.post("/sync/actions", json=batch)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_pending(self, client, make_order, rider_id):
        order = await make_order(status=OrderStatus.PICKED_UP, rider_id=rider_id)
        batch = {"riderId": str(rider_id), "actions": [action("a-1", order.id, "start_delivering")]}

        with patch.object(
            OrderDeliveryMachine,
            "start_delivering",
            AsyncMock(side_effect=StoreUnavailableError("Update failed")),
        ):
            result = (await client.post("/sync/actions", json=batch)).json()["results"][0]
        assert result["status"] == "queued"

        response = await client.get("/sync/actions", params={"riderId": str(rider_id)})
        actions = response.json()["actions"]
        assert [a["clientActionId"] for a in actions] == ["a-1"]
        assert actions[0]["attempts"] == 1


class TestActionQueue:

    @pytest.mark.asyncio
    async def test_store_failures_retry_then_fail(self, db, make_order, rider_id):
        order = await make_order(status=OrderStatus.PICKED_UP, rider_id=rider_id)
        queue = ActionQueue(db, max_attempts=2)
        queued = await queue.enqueue(rider_id, "a-1", order.id, ActionType.START_DELIVERING)
        action_id = queued.id

        with patch.object(
            OrderDeliveryMachine,
            "start_delivering",
            AsyncMock(side_effect=StoreUnavailableError("Update failed")),
        ):
            first = await queue.replay(action_id)
            assert first.status == ActionStatus.QUEUED.value
            assert first.attempts == 1
            assert first.processed_at is None

            second = await queue.replay(action_id)
            assert second.status == ActionStatus.FAILED.value
            assert second.attempts == 2
            assert second.last_error == "Update failed"

        # Given up on; not picked up again
        assert await queue.replay_pending() == 0

    @pytest.mark.asyncio
    async def test_replay_pending_applies_oldest(self, db, make_order, rider_id, reload):
        order = await make_order(status=OrderStatus.PAYMENT_CONFIRMED, rider_id=rider_id)
        order_id = order.id
        queue = ActionQueue(db)
        await queue.enqueue(
            rider_id,
            "a-1",
            order_id,
            ActionType.COMPLETE,
            {"photoUrl": "https://res.cloudinary.com/demo/pod.jpg", "latitude": 14.5},
        )

        assert await queue.replay_pending() == 1

        order = await reload(Order, order_id)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.pod_latitude == 14.5
        assert (await queue.get_by_client_id("a-1")).status == ActionStatus.APPLIED.value

    @pytest.mark.asyncio
    async def test_confirm_payment_payload(self, db, make_order, rider_id, reload):
        order = await make_order(status=OrderStatus.DELIVERING, rider_id=rider_id)
        order_id = order.id
        queue = ActionQueue(db)
        queued = await queue.enqueue(
            rider_id,
            "a-1",
            order_id,
            ActionType.CONFIRM_PAYMENT,
            {"paymentMethod": "cash", "cashAuditNote": "Collected offline"},
        )

        result = await queue.replay(queued.id)

        assert result.status == ActionStatus.APPLIED.value
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.PAYMENT_CONFIRMED.value
        assert order.cash_audit_note == "Collected offline"

    @pytest.mark.asyncio
    async def test_worker_replays_batch(self, store, db, make_order, rider_id, reload):
        from app.workers import action_replay

        order = await make_order(status=OrderStatus.PICKED_UP, rider_id=rider_id)
        order_id = order.id
        await ActionQueue(db).enqueue(rider_id, "a-1", order_id, ActionType.START_DELIVERING)

        with patch.object(action_replay, "Database") as database:
            database.from_settings.return_value = store
            count = await action_replay.replay_batch()

        assert count == 1
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.DELIVERING.value
