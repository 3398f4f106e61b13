"""
Ledger Service - append-only records for every money movement
Writes the user-facing transaction, the activity feed entry and the
platform revenue row that together explain a balance change
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from models import (
    Activity, ActivityType, PlatformRevenue, RevenueSource,
    Transaction, TransactionStatus, TransactionType,
)
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)


def _enum_value(value) -> str:
    return getattr(value, "value", value)


class LedgerService:
    """Recorder used inside an open atomic_transaction; never commits on its own"""

    @staticmethod
    def record_transaction(
        session: Session,
        user_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str,
        bounty_id: Optional[int] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        reference: Optional[str] = None,
        fee: Decimal = Decimal("0.00"),
    ) -> Transaction:
        transaction = Transaction(
            user_id=user_id,
            bounty_id=bounty_id,
            type=_enum_value(transaction_type),
            amount=MonetaryDecimal.quantize_usd(amount),
            fee=MonetaryDecimal.quantize_usd(fee),
            status=_enum_value(status),
            description=description,
            reference=reference,
        )
        session.add(transaction)
        session.flush()
        logger.debug(
            f"LEDGER_TRANSACTION: #{transaction.id} {transaction.type} "
            f"${transaction.amount} user={user_id} status={transaction.status}"
        )
        return transaction

    @staticmethod
    def record_activity(
        session: Session,
        user_id: str,
        activity_type: ActivityType,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Activity:
        activity = Activity(
            user_id=user_id,
            type=_enum_value(activity_type),
            description=description,
            activity_metadata=metadata,
        )
        session.add(activity)
        return activity

    @staticmethod
    def record_revenue(
        session: Session,
        amount: Decimal,
        source: RevenueSource,
        description: str,
        bounty_id: Optional[int] = None,
        transaction_id: Optional[int] = None,
        payment_id: Optional[int] = None,
    ) -> Optional[PlatformRevenue]:
        """Zero-fee movements (0% configured rate) produce no revenue row"""
        amount = MonetaryDecimal.quantize_usd(amount)
        if amount <= 0:
            return None

        revenue = PlatformRevenue(
            amount=amount,
            source=_enum_value(source),
            bounty_id=bounty_id,
            transaction_id=transaction_id,
            payment_id=payment_id,
            description=description,
        )
        session.add(revenue)
        logger.info(f"💰 PLATFORM_REVENUE: ${amount} from {revenue.source} (bounty={bounty_id})")
        return revenue


ledger = LedgerService()
