"""
PayRex Webhook Handler.
Verifies signatures and reconciles payment events against pending obligations.

Response contract (the provider retries on non-2xx):
- 200  processed, duplicate, or unattributed (warning)
- 400  malformed payload
- 401  invalid signature
- 500  transient store failure, {"retryable": true}
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_event_cache
from app.config import Settings, get_settings
from app.database import get_db
from app.exceptions import NormalizationError, StoreUnavailableError
from app.models.order import utcnow
from app.services.idempotency import ProcessedEventCache
from app.services.payment_events import normalize
from app.services.reconciliation import ReconciliationService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/payrex")
async def payrex_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: ProcessedEventCache = Depends(get_event_cache),
    settings: Settings = Depends(get_settings),
):
    """
    Handle PayRex payment events for static QRPH payments.

    The payment is applied to the most recent pending settlement, else the
    most recent order awaiting payment.
    """
    # Raw body for signature verification
    body = await request.body()

    try:
        event = normalize(body, request.headers, settings.payrex_webhook_secret or None)
    except NormalizationError as e:
        if e.reason == NormalizationError.INVALID_SIGNATURE:
            logger.error("Invalid PayRex webhook signature")
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})
        logger.error(f"Rejected PayRex webhook: {e.message}")
        return JSONResponse(status_code=400, content={"error": e.message})

    try:
        return await ReconciliationService(db, cache).process(event)
    except StoreUnavailableError as e:
        logger.error(f"Error processing PayRex webhook {event.event_id}: {e.message}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": e.message, "retryable": True},
        )


@router.get("/payrex")
async def payrex_webhook_status(settings: Settings = Depends(get_settings)):
    """Readiness probe for the webhook endpoint."""
    return {
        "status": "active",
        "message": "PayRex webhook endpoint is ready for Static QRPH payments",
        "features": {
            "signatureVerification": bool(settings.payrex_webhook_secret),
            "idempotency": True,
            "retryLogic": True,
        },
        "timestamp": utcnow().isoformat(),
    }
