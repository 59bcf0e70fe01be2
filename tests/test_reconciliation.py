"""
Tests for webhook payment reconciliation.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select, update

from app.exceptions import StoreUnavailableError
from app.fsm.states import ObligationKind, OrderStatus, SettlementStatus
from app.models.order import Order, utcnow
from app.models.payment_transaction import PaymentTransaction
from app.models.settlement import RiderSettlement
from app.services.idempotency import ProcessedEventCache
from app.services.obligations import ObligationStore
from app.services.payment_events import PaymentEvent
from app.services.reconciliation import (
    ApplyOutcome,
    PaymentAccumulator,
    ReconciliationService,
)


async def count_transactions(db) -> int:
    result = await db.execute(select(func.count()).select_from(PaymentTransaction))
    return result.scalar_one()


class TestPaymentAccumulator:

    @pytest.mark.asyncio
    async def test_exact_payment_confirms(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id

        obligation = await ObligationStore(db).latest_pending(ObligationKind.ORDER)
        result = await PaymentAccumulator(db).apply(obligation, "evt_1", Decimal("500.00"))
        await db.commit()

        assert result.outcome == ApplyOutcome.CONFIRMED
        assert result.status == OrderStatus.PAYMENT_CONFIRMED.value
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.PAYMENT_CONFIRMED.value
        assert order.amount_paid == Decimal("500.00")
        assert order.last_webhook_event_id == "evt_1"
        assert order.payment_confirmed_at is not None

    @pytest.mark.asyncio
    async def test_same_event_token_is_skipped(self, db, make_order):
        await make_order(status=OrderStatus.PAYMENT_PENDING, last_webhook_event_id="evt_1")

        obligation = await ObligationStore(db).latest_pending(ObligationKind.ORDER)
        result = await PaymentAccumulator(db).apply(obligation, "evt_1", Decimal("100.00"))

        assert result.outcome == ApplyOutcome.DUPLICATE
        assert await count_transactions(db) == 0

    @pytest.mark.asyncio
    async def test_stale_snapshot_does_not_lose_update(self, store, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id
        obligation = await ObligationStore(db).latest_pending(ObligationKind.ORDER)

        # A concurrent delivery lands between our read and our write
        async with store.session() as other:
            await other.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(amount_paid=Decimal("100.00"), last_webhook_event_id="evt_a")
            )
            await other.commit()

        result = await PaymentAccumulator(db).apply(obligation, "evt_b", Decimal("150.00"))
        await db.commit()

        assert result.outcome == ApplyOutcome.INSUFFICIENT
        assert result.amount_paid == Decimal("250.00")
        order = await reload(Order, order_id)
        assert order.amount_paid == Decimal("250.00")
        assert order.last_webhook_event_id == "evt_b"

    @pytest.mark.asyncio
    async def test_confirmed_elsewhere_is_already_settled(self, store, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id
        obligation = await ObligationStore(db).latest_pending(ObligationKind.ORDER)

        async with store.session() as other:
            await other.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(status=OrderStatus.PAYMENT_CONFIRMED.value, payment_method="cash")
            )
            await other.commit()

        result = await PaymentAccumulator(db).apply(obligation, "evt_late", Decimal("500.00"))

        assert result.outcome == ApplyOutcome.ALREADY_SETTLED
        order = await reload(Order, order_id)
        assert order.amount_paid == Decimal("0")
        assert order.last_webhook_event_id is None

    @pytest.mark.asyncio
    async def test_persistent_contention_raises(self, db, make_order):
        await make_order(status=OrderStatus.PAYMENT_PENDING)
        real_store = ObligationStore(db)
        obligation = await real_store.latest_pending(ObligationKind.ORDER)

        store = MagicMock()
        store.compare_and_set = AsyncMock(return_value=False)
        store.get = AsyncMock(return_value=obligation)

        with pytest.raises(StoreUnavailableError):
            await PaymentAccumulator(db, store).apply(obligation, "evt_1", Decimal("10.00"))
        assert store.compare_and_set.await_count == PaymentAccumulator.MAX_ATTEMPTS


class TestReconciliationService:

    @pytest.mark.asyncio
    async def test_partial_then_remaining_payment(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id
        service = ReconciliationService(db)

        body = await service.process(PaymentEvent("evt_1", Decimal("300.00")))
        assert body["status"] == "insufficient"
        assert body["amountPaid"] == 300.0
        assert body["remainingAmount"] == 200.0
        assert body["orderId"] == str(order_id)

        order = await reload(Order, order_id)
        assert order.status == OrderStatus.PAYMENT_PENDING.value
        assert order.is_insufficient
        assert order.payment_error == "Insufficient payment. Paid: ₱300.00, Need: ₱200.00 more"

        body = await service.process(PaymentEvent("evt_2", Decimal("200.00")))
        assert body["status"] == "payment_confirmed"
        assert body["amountPaid"] == 500.0
        assert "remainingAmount" not in body

        order = await reload(Order, order_id)
        assert order.status == OrderStatus.PAYMENT_CONFIRMED.value
        assert order.payment_error is None
        assert await count_transactions(db) == 2

    @pytest.mark.asyncio
    async def test_replayed_event_is_duplicate(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id
        service = ReconciliationService(db)

        await service.process(PaymentEvent("evt_1", Decimal("300.00")))
        body = await service.process(PaymentEvent("evt_1", Decimal("300.00")))

        assert body == {
            "received": True,
            "status": "duplicate",
            "message": "Event already processed",
            "eventId": "evt_1",
        }
        order = await reload(Order, order_id)
        assert order.amount_paid == Decimal("300.00")
        assert await count_transactions(db) == 1

    @pytest.mark.asyncio
    async def test_overpayment_confirms(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id

        body = await ReconciliationService(db).process(PaymentEvent("evt_1", Decimal("600.00")))

        assert body["status"] == "payment_confirmed"
        assert body["amountPaid"] == 600.0
        order = await reload(Order, order_id)
        assert order.amount_paid == Decimal("600.00")

    @pytest.mark.asyncio
    async def test_no_pending_obligation(self, db, make_order):
        await make_order(status=OrderStatus.DELIVERING)

        body = await ReconciliationService(db).process(PaymentEvent("evt_1", Decimal("500.00")))

        assert body == {
            "received": True,
            "warning": "No pending order or settlement found",
            "eventId": "evt_1",
        }
        assert await count_transactions(db) == 0

    @pytest.mark.asyncio
    async def test_settlement_takes_priority(self, db, make_order, make_settlement, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        settlement = await make_settlement(amount="1000.00")
        order_id, settlement_id = order.id, settlement.id
        service = ReconciliationService(db)

        body = await service.process(PaymentEvent("evt_1", Decimal("400.00")))
        assert body["status"] == "settlement_insufficient"
        assert body["settlementId"] == str(settlement_id)
        assert body["remainingAmount"] == 600.0

        body = await service.process(PaymentEvent("evt_2", Decimal("600.00")))
        assert body["status"] == "settlement_confirmed"

        settlement = await reload(RiderSettlement, settlement_id)
        assert settlement.status == SettlementStatus.CONFIRMED.value
        assert settlement.amount_paid == Decimal("1000.00")
        assert settlement.settled_at is not None

        order = await reload(Order, order_id)
        assert order.amount_paid == Decimal("0")

        # Settlement is done, so the next payment goes to the order
        body = await service.process(PaymentEvent("evt_3", Decimal("500.00")))
        assert body["status"] == "payment_confirmed"
        assert body["orderId"] == str(order_id)

    @pytest.mark.asyncio
    async def test_equal_timestamps_match_deterministically(self, db, make_order):
        stamp = utcnow()
        first = await make_order(
            status=OrderStatus.PAYMENT_PENDING, barcode="PKG240101AAAA0001", updated_at=stamp
        )
        second = await make_order(
            status=OrderStatus.PAYMENT_PENDING, barcode="PKG240101AAAA0002", updated_at=stamp
        )
        expected = max(first.id, second.id)
        store = ObligationStore(db)

        assert (await store.latest_pending(ObligationKind.ORDER)).id == expected
        assert (await store.latest_pending(ObligationKind.ORDER)).id == expected

    @pytest.mark.asyncio
    async def test_event_after_completion_is_duplicate(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="750.00")
        order_id = order.id
        service = ReconciliationService(db)
        await service.process(PaymentEvent("evt_1", Decimal("750.00")))

        await db.execute(
            update(Order).where(Order.id == order_id).values(status=OrderStatus.COMPLETED.value)
        )
        await db.commit()

        body = await service.process(PaymentEvent("evt_1", Decimal("750.00")))
        assert body["status"] == "duplicate"
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.amount_paid == Decimal("750.00")

    @pytest.mark.asyncio
    async def test_generated_ids_always_apply(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING, cod_amount="500.00")
        order_id = order.id
        cache = ProcessedEventCache(None)
        cache.seen = AsyncMock(return_value=True)
        cache.remember = AsyncMock()

        event = PaymentEvent("evt_1700000000000_abc123", Decimal("100.00"), generated_id=True)
        body = await ReconciliationService(db, cache).process(event)

        assert body["status"] == "insufficient"
        cache.seen.assert_not_awaited()
        cache.remember.assert_not_awaited()
        order = await reload(Order, order_id)
        assert order.amount_paid == Decimal("100.00")


class TestProcessedEventCache:

    @pytest.mark.asyncio
    async def test_cache_hit_short_circuits(self, db, make_order, reload):
        order = await make_order(status=OrderStatus.PAYMENT_PENDING)
        order_id = order.id
        redis = AsyncMock()
        redis.exists.return_value = 1

        body = await ReconciliationService(db, ProcessedEventCache(redis)).process(
            PaymentEvent("evt_1", Decimal("500.00"))
        )

        assert body["status"] == "duplicate"
        redis.exists.assert_awaited_once_with("codrider:webhook:event:evt_1")
        order = await reload(Order, order_id)
        assert order.status == OrderStatus.PAYMENT_PENDING.value

    @pytest.mark.asyncio
    async def test_remembered_after_commit(self, db, make_order):
        await make_order(status=OrderStatus.PAYMENT_PENDING)
        redis = AsyncMock()
        redis.exists.return_value = 0

        await ReconciliationService(db, ProcessedEventCache(redis, ttl_seconds=60)).process(
            PaymentEvent("evt_1", Decimal("500.00"))
        )

        redis.setex.assert_awaited_once_with("codrider:webhook:event:evt_1", 60, "1")

    @pytest.mark.asyncio
    async def test_redis_errors_fall_back_to_database(self):
        from redis.exceptions import ConnectionError as RedisConnectionError

        redis = AsyncMock()
        redis.exists.side_effect = RedisConnectionError("down")
        redis.setex.side_effect = RedisConnectionError("down")
        cache = ProcessedEventCache(redis)

        assert await cache.seen("evt_1") is False
        await cache.remember("evt_1")

    @pytest.mark.asyncio
    async def test_no_redis(self):
        cache = ProcessedEventCache(None)
        assert await cache.seen("evt_1") is False
        await cache.remember("evt_1")
