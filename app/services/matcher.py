"""
Obligation Matcher.

Picks the single obligation an unattributed payment is applied to:
the most recently updated pending settlement, else the most recently
updated order awaiting payment.

Known limitation: only one candidate is ever considered. If two
obligations of the same kind are pending at once, a payment meant for
the older one lands on the newer one. The payment reference handed out
at initiation is not echoed back by the static QR flow, so there is
nothing better to match on yet.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.states import ObligationKind
from app.services.obligations import Obligation, ObligationStore

logger = logging.getLogger(__name__)

# Settlements win over orders
MATCH_PRIORITY = (ObligationKind.SETTLEMENT, ObligationKind.ORDER)


class ObligationMatcher:
    """Selects the obligation a payment event belongs to."""

    def __init__(self, db: AsyncSession, store: Optional[ObligationStore] = None):
        self.store = store or ObligationStore(db)

    async def match(self) -> Optional[Obligation]:
        for kind in MATCH_PRIORITY:
            candidate = await self.store.latest_pending(kind)
            if candidate:
                logger.info(f"Matched payment to {candidate!r}")
                return candidate
        return None
