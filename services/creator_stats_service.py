"""
Creator Stats Service - platform dashboard aggregates
Access is limited to configured creator ids and admin users
"""

import logging
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import Config
from models import Activity, Bounty, BountyStatus, PlatformRevenue, Transaction, TransactionType, User
from utils.datetime_helpers import days_ago, isoformat_or_none
from utils.exception_handler import PermissionDeniedError
from utils.serializers import money

logger = logging.getLogger(__name__)

GROWTH_WINDOW_DAYS = 30
RECENT_ACTIVITY_LIMIT = 20


class CreatorStatsService:

    @staticmethod
    def is_creator(user: User) -> bool:
        return user.is_admin or user.id in Config.CREATOR_USER_IDS

    def require_creator(self, user: User) -> None:
        if not self.is_creator(user):
            logger.warning(f"⚠️ CREATOR_STATS_DENIED: {user.id}")
            raise PermissionDeniedError("Creator access required")

    def get_stats(self, session: Session, user: User) -> Dict[str, Any]:
        self.require_creator(user)
        since = days_ago(GROWTH_WINDOW_DAYS)

        def scalar(stmt, default=0):
            value = session.execute(stmt).scalar()
            return value if value is not None else default

        revenue_by_source = {
            source: money(total)
            for source, total in session.execute(
                select(PlatformRevenue.source, func.sum(PlatformRevenue.amount)).group_by(PlatformRevenue.source)
            ).all()
        }
        bounties_by_status = dict(session.execute(
            select(Bounty.status, func.count(Bounty.id)).group_by(Bounty.status)
        ).all())
        transactions_by_type = {
            tx_type: {"count": count, "total": money(total)}
            for tx_type, count, total in session.execute(
                select(Transaction.type, func.count(Transaction.id), func.sum(Transaction.amount))
                .group_by(Transaction.type)
            ).all()
        }

        recent_activity = session.execute(
            select(Activity).order_by(Activity.created_at.desc(), Activity.id.desc()).limit(RECENT_ACTIVITY_LIMIT)
        ).scalars().all()

        return {
            "revenue": {
                "total": money(scalar(select(func.sum(PlatformRevenue.amount)), Decimal("0"))),
                "last30Days": money(scalar(
                    select(func.sum(PlatformRevenue.amount)).where(PlatformRevenue.created_at >= since),
                    Decimal("0"),
                )),
                "bySource": revenue_by_source,
            },
            "users": {
                "total": scalar(select(func.count(User.id))),
                "newLast30Days": scalar(select(func.count(User.id)).where(User.created_at >= since)),
                "online": scalar(select(func.count(User.id)).where(User.is_online.is_(True))),
            },
            "bounties": {
                "total": sum(bounties_by_status.values()),
                "active": bounties_by_status.get(BountyStatus.ACTIVE.value, 0),
                "completed": bounties_by_status.get(BountyStatus.COMPLETED.value, 0),
                "expired": bounties_by_status.get(BountyStatus.EXPIRED.value, 0),
                "escrowHeld": money(scalar(
                    select(func.sum(Bounty.reward)).where(Bounty.status == BountyStatus.ACTIVE.value),
                    Decimal("0"),
                )),
                "newLast30Days": scalar(select(func.count(Bounty.id)).where(Bounty.created_at >= since)),
            },
            "transactions": {
                "total": sum(entry["count"] for entry in transactions_by_type.values()),
                "byType": transactions_by_type,
            },
            "spending": {
                "deposits": transactions_by_type.get(TransactionType.DEPOSIT.value, {}).get("total", "0.00"),
                "withdrawals": transactions_by_type.get(TransactionType.WITHDRAWAL.value, {}).get("total", "0.00"),
                "pointPurchases": transactions_by_type.get(TransactionType.POINT_PURCHASE.value, {}).get("total", "0.00"),
            },
            "recentActivity": [
                {
                    "type": activity.type,
                    "userId": activity.user_id,
                    "description": activity.description,
                    "createdAt": isoformat_or_none(activity.created_at),
                }
                for activity in recent_activity
            ],
        }


creator_stats_service = CreatorStatsService()
