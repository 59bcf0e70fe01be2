"""
Payment reconciliation - applies webhook payments to obligations.

Flow per delivery: processed-event lookup -> matcher -> accumulator -> commit.
Every write is conditional on the obligation still being pending and
untouched since it was read; losing that race is not an error.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import StoreUnavailableError
from app.fsm.states import ObligationKind, PaymentSource
from app.models.order import utcnow
from app.models.payment_transaction import PaymentTransaction
from app.services.idempotency import ProcessedEventCache, should_skip
from app.services.matcher import ObligationMatcher
from app.services.obligations import Obligation, ObligationStore
from app.services.payment_events import PaymentEvent

logger = logging.getLogger(__name__)


def money(amount: Decimal) -> float:
    """JSON-friendly amount."""
    return float(Decimal(amount).quantize(Decimal("0.01")))


class ApplyOutcome(str, Enum):
    DUPLICATE = "duplicate"
    CONFIRMED = "confirmed"
    INSUFFICIENT = "insufficient"
    # Another actor confirmed it between our read and our write
    ALREADY_SETTLED = "already_settled"


@dataclass
class ApplyResult:
    outcome: ApplyOutcome
    obligation: Obligation
    status: str
    amount_paid: Decimal
    amount_expected: Decimal

    @property
    def remaining(self) -> Decimal:
        return max(Decimal("0"), self.amount_expected - self.amount_paid)


class PaymentAccumulator:
    """
    Adds a payment to an obligation and confirms it once fully paid.

    pending --apply--> pending    (amount_paid + amount <  expected)
    pending --apply--> confirmed  (amount_paid + amount >= expected)
    """

    # Re-reads allowed after losing a race to another webhook
    MAX_ATTEMPTS = 3

    def __init__(self, db: AsyncSession, store: Optional[ObligationStore] = None):
        self.db = db
        self.store = store or ObligationStore(db)

    async def apply(self, obligation: Obligation, event_id: str, amount: Decimal) -> ApplyResult:
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            if should_skip(obligation, event_id):
                logger.info(f"Duplicate webhook {event_id} for {obligation!r} - skipping")
                return self._result(ApplyOutcome.DUPLICATE, obligation, obligation.amount_paid)

            if not obligation.is_pending:
                logger.info(f"{obligation!r} already settled, event {event_id} not applied")
                return self._result(ApplyOutcome.ALREADY_SETTLED, obligation, obligation.amount_paid)

            expected = obligation.amount_expected
            previously_paid = obligation.amount_paid
            total_paid = previously_paid + amount
            confirms = total_paid >= expected

            logger.info(
                f"{obligation!r}: expected {expected}, previously paid {previously_paid}, "
                f"new payment {amount}, total {total_paid}"
            )

            if confirms:
                values = obligation.confirmed_values(total_paid, event_id, utcnow())
            else:
                values = obligation.partial_values(total_paid, event_id)

            if await self.store.compare_and_set(obligation, values):
                self._record_transaction(obligation, event_id, amount, confirmed=confirms)
                if confirms:
                    return self._result(
                        ApplyOutcome.CONFIRMED,
                        obligation,
                        total_paid,
                        status=obligation.confirmed_status,
                    )
                return self._result(ApplyOutcome.INSUFFICIENT, obligation, total_paid)

            # Zero rows: status moved on or another event got in first
            logger.info(f"Lost update race on {obligation!r} (attempt {attempt}), re-reading")
            fresh = await self.store.get(obligation.kind, obligation.id)
            if fresh is None:
                return self._result(ApplyOutcome.ALREADY_SETTLED, obligation, obligation.amount_paid)
            obligation = fresh

        raise StoreUnavailableError("Obligation is being updated concurrently")

    def _record_transaction(
        self,
        obligation: Obligation,
        event_id: str,
        amount: Decimal,
        confirmed: bool,
    ) -> None:
        transaction = PaymentTransaction(
            payment_method=obligation.payment_method,
            amount=amount,
            status="confirmed" if confirmed else "partial",
            source=PaymentSource.WEBHOOK.value,
            event_id=event_id,
            reference=obligation.reference,
        )
        if obligation.kind == ObligationKind.ORDER:
            transaction.order_id = obligation.id
        else:
            transaction.settlement_id = obligation.id
        self.db.add(transaction)

    @staticmethod
    def _result(
        outcome: ApplyOutcome,
        obligation: Obligation,
        amount_paid: Decimal,
        status: Optional[str] = None,
    ) -> ApplyResult:
        return ApplyResult(
            outcome=outcome,
            obligation=obligation,
            status=status or obligation.status,
            amount_paid=amount_paid,
            amount_expected=obligation.amount_expected,
        )


class ReconciliationService:
    """Runs one normalized webhook event through the reconciliation engine."""

    def __init__(self, db: AsyncSession, cache: Optional[ProcessedEventCache] = None):
        self.db = db
        self.cache = cache or ProcessedEventCache(None)
        self.store = ObligationStore(db)
        self.matcher = ObligationMatcher(db, self.store)
        self.accumulator = PaymentAccumulator(db, self.store)

    async def is_processed_event(self, event_id: str) -> bool:
        """Check if this event has already been applied anywhere."""
        if await self.cache.seen(event_id):
            return True
        try:
            result = await self.db.execute(
                select(PaymentTransaction.id).where(PaymentTransaction.event_id == event_id).limit(1)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Database error") from e
        return result.scalar_one_or_none() is not None

    async def process(self, event: PaymentEvent) -> Dict[str, Any]:
        started = time.perf_counter()
        logger.info(f"Processing event: {event.event_id}")

        # Generated ids are fresh by construction
        if not event.generated_id and await self.is_processed_event(event.event_id):
            logger.info(f"Duplicate webhook detected: {event.event_id} - skipping")
            return duplicate_body(event.event_id)

        obligation = await self.matcher.match()
        if obligation is None:
            logger.warning(
                f"No pending order or settlement found for event {event.event_id} "
                f"({event.amount}) - needs manual reconciliation"
            )
            await self.db.rollback()
            return {
                "received": True,
                "warning": "No pending order or settlement found",
                "eventId": event.event_id,
            }

        result = await self.accumulator.apply(obligation, event.event_id, event.amount)

        if result.outcome in (ApplyOutcome.CONFIRMED, ApplyOutcome.INSUFFICIENT):
            try:
                await self.db.commit()
            except IntegrityError:
                # Same event id committed by a concurrent delivery
                await self.db.rollback()
                logger.info(f"Duplicate webhook {event.event_id} lost commit race - skipping")
                return duplicate_body(event.event_id)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Failed to commit event {event.event_id} (will retry): {e}")
                raise StoreUnavailableError("Update failed") from e
            if not event.generated_id:
                await self.cache.remember(event.event_id)
        else:
            await self.db.rollback()

        if result.outcome == ApplyOutcome.DUPLICATE:
            return duplicate_body(event.event_id)

        if result.outcome == ApplyOutcome.ALREADY_SETTLED:
            logger.warning(
                f"Payment {event.event_id} ({event.amount}) arrived for already settled "
                f"{result.obligation!r} - needs manual reconciliation"
            )

        duration_ms = round((time.perf_counter() - started) * 1000)
        body = build_result_body(result, event.event_id)
        body["processingTimeMs"] = duration_ms
        logger.info(
            f"Webhook {event.event_id} -> {body['status']} ({duration_ms}ms)",
            extra={"context": {"eventId": event.event_id, "status": body["status"], "durationMs": duration_ms}},
        )
        return body


def duplicate_body(event_id: str) -> Dict[str, Any]:
    return {
        "received": True,
        "status": "duplicate",
        "message": "Event already processed",
        "eventId": event_id,
    }


def build_result_body(result: ApplyResult, event_id: str) -> Dict[str, Any]:
    """Response body for a confirmed / insufficient / already settled outcome."""
    is_settlement = result.obligation.kind == ObligationKind.SETTLEMENT
    satisfied = result.outcome in (ApplyOutcome.CONFIRMED, ApplyOutcome.ALREADY_SETTLED)

    if is_settlement:
        status = "settlement_confirmed" if satisfied else "settlement_insufficient"
    else:
        status = "payment_confirmed" if satisfied else "insufficient"

    body: Dict[str, Any] = {"received": True, "status": status}
    body.update(result.obligation.describe())
    body["amountPaid"] = money(result.amount_paid)
    body["expectedAmount"] = money(result.amount_expected)
    if not satisfied:
        body["remainingAmount"] = money(result.remaining)
    if result.outcome == ApplyOutcome.ALREADY_SETTLED:
        body["alreadySettled"] = True
    body["eventId"] = event_id
    return body
