"""
Bounty Expiry Job
Refunds bounties left active past the expiry window, one batch per run.
The sweep itself is synchronous database work, so it runs in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict

from services.bounty_expiry_service import bounty_expiry_service

logger = logging.getLogger(__name__)


async def run_bounty_expiry_sweep() -> Dict[str, Any]:
    results = await asyncio.to_thread(bounty_expiry_service.process_expired_bounties)

    if results["processed"] or results["errors"]:
        logger.info(
            f"⏰ EXPIRY_SWEEP_COMPLETE: refunded={results['processed']} errors={len(results['errors'])}"
        )
    else:
        logger.debug("EXPIRY_SWEEP_COMPLETE: nothing to expire")
    return results
