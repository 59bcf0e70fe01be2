"""Services package."""

from app.services.action_queue import ActionQueue
from app.services.payment_service import PaymentService
from app.services.progress_service import ProgressService
from app.services.reconciliation import PaymentAccumulator, ReconciliationService
from app.services.settlement_service import SettlementService
from app.services.storage_service import StorageService

__all__ = [
    "ActionQueue",
    "PaymentAccumulator",
    "PaymentService",
    "ProgressService",
    "ReconciliationService",
    "SettlementService",
    "StorageService",
]
