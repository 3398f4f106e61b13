"""
Withdrawal Reconciliation Job
Settles withdrawals that stayed pending after the request that created them
"""

import asyncio
import logging
from typing import Dict

from config import Config
from database import managed_session
from services.payment_service import payment_service
from services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def _reconcile() -> Dict[str, int]:
    stripe_service = StripeService()
    if not stripe_service.is_configured:
        return {"completed": 0, "reversed": 0, "errors": 0}
    with managed_session() as session:
        return payment_service.reconcile_pending_withdrawals(
            session, stripe_service, older_than_minutes=Config.WITHDRAWAL_RECONCILE_MINUTES
        )


async def run_withdrawal_reconciliation() -> Dict[str, int]:
    results = await asyncio.to_thread(_reconcile)
    if any(results.values()):
        logger.info(
            f"🏦 WITHDRAWAL_RECONCILIATION: completed={results['completed']} "
            f"reversed={results['reversed']} errors={results['errors']}"
        )
    return results
