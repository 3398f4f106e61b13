"""
Bounty Expiry Service - fee-deducting auto-refund of unclaimed escrow
Each bounty is claimed with a conditional status update before it is
settled, so concurrent or repeated sweeps refund a bounty at most once
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config import Config
from database import managed_session
from models import ActivityType, Bounty, BountyStatus, RevenueSource, TransactionType
from services.ledger_service import ledger
from services.wallet_service import wallet_service
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import days_ago, ensure_naive_datetime, get_naive_utc_now
from utils.fee_calculator import FeeCalculator, get_fee_calculator
from utils.serializers import money

logger = logging.getLogger(__name__)


class BountyExpiryService:
    """Finds active bounties past the expiry cutoff and refunds their authors"""

    def __init__(self, batch_size: Optional[int] = None, expiry_days: Optional[int] = None,
                 fee_calculator: Optional[FeeCalculator] = None):
        self.batch_size = batch_size or Config.BOUNTY_EXPIRY_BATCH_SIZE
        self._expiry_days = expiry_days
        self._fee_calculator = fee_calculator

    @property
    def expiry_days(self) -> int:
        return self._expiry_days if self._expiry_days is not None else Config.BOUNTY_EXPIRY_DAYS

    @property
    def fee_calculator(self) -> FeeCalculator:
        return self._fee_calculator or get_fee_calculator()

    def find_expired_bounty_ids(self, session: Session, now: Optional[datetime] = None) -> List[int]:
        cutoff = days_ago(self.expiry_days, now)
        stmt = (
            select(Bounty.id)
            .where(Bounty.status == BountyStatus.ACTIVE.value, Bounty.created_at < cutoff)
            .order_by(Bounty.created_at.asc())
            .limit(self.batch_size)
        )
        return list(session.execute(stmt).scalars().all())

    def expire_bounty(self, session: Session, bounty_id: int,
                      now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Settle one expired bounty.

        Returns the settlement, or None when the bounty was not active and
        past the cutoff (already settled by another sweep or a completion).
        """
        now = ensure_naive_datetime(now) or get_naive_utc_now()
        cutoff = days_ago(self.expiry_days, now)

        with atomic_transaction(session):
            claim = session.execute(
                update(Bounty)
                .where(
                    Bounty.id == bounty_id,
                    Bounty.status == BountyStatus.ACTIVE.value,
                    Bounty.created_at < cutoff,
                )
                .values(status=BountyStatus.EXPIRED.value, expired_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != 1:
                logger.info(f"⏭️ EXPIRY_SKIPPED: bounty #{bounty_id} already settled or not yet expired")
                return None

            bounty = session.get(Bounty, bounty_id, populate_existing=True)
            split = self.fee_calculator.calculate_platform_fee(bounty.reward)
            rate = self.fee_calculator.describe_rate()

            wallet_service.credit(session, bounty.author_id, split["netAmount"])
            refund = ledger.record_transaction(
                session,
                user_id=bounty.author_id,
                transaction_type=TransactionType.REFUND,
                amount=split["netAmount"],
                description=f"Refund for expired bounty: {bounty.title} (minus {rate} platform fee)",
                bounty_id=bounty.id,
            )
            ledger.record_revenue(
                session,
                amount=split["fee"],
                source=RevenueSource.EXPIRED_BOUNTY_FEE,
                description=f"Expiry fee for bounty: {bounty.title}",
                bounty_id=bounty.id,
                transaction_id=refund.id,
            )
            ledger.record_activity(
                session,
                user_id=bounty.author_id,
                activity_type=ActivityType.BOUNTY_EXPIRED,
                description=(
                    f"Bounty expired: {bounty.title}. Refunded ${money(split['netAmount'])} "
                    f"(${money(split['fee'])} fee)"
                ),
                metadata={
                    "bountyId": bounty.id,
                    "refundAmount": money(split["netAmount"]),
                    "fee": money(split["fee"]),
                },
            )

        logger.info(
            f"⏰ BOUNTY_EXPIRED: #{bounty_id} author={bounty.author_id} "
            f"refund=${split['netAmount']} fee=${split['fee']}"
        )
        return {
            "bountyId": bounty_id,
            "authorId": bounty.author_id,
            "refundAmount": split["netAmount"],
            "fee": split["fee"],
        }

    def process_expired_bounties(self, session: Optional[Session] = None,
                                 now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Sweep one batch of expired bounties.

        A failure on one bounty rolls back only that bounty and is reported
        in `errors`; the rest of the batch is still processed.
        """
        if session is None:
            with managed_session() as new_session:
                return self._process_with_session(new_session, now)
        return self._process_with_session(session, now)

    def _process_with_session(self, session: Session, now: Optional[datetime]) -> Dict[str, Any]:
        results = {
            "processed": 0,
            "expired_bounties": [],
            "errors": [],
        }

        bounty_ids = self.find_expired_bounty_ids(session, now)
        if bounty_ids:
            logger.info(f"🔍 EXPIRY_SWEEP: Found {len(bounty_ids)} bounties past the {self.expiry_days}-day cutoff")

        for bounty_id in bounty_ids:
            try:
                settlement = self.expire_bounty(session, bounty_id, now)
            except Exception as e:
                logger.error(f"❌ EXPIRY_SWEEP_ERROR: bounty #{bounty_id}: {e}", exc_info=True)
                results["errors"].append({"bountyId": bounty_id, "error": str(e)})
                continue

            if settlement:
                results["processed"] += 1
                results["expired_bounties"].append(settlement)

        return results


bounty_expiry_service = BountyExpiryService()
