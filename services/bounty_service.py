"""
Bounty Service - posting, applications, claiming and completion
Posting holds the reward in escrow; completion splits it between the
worker and the platform. Expiry lives in bounty_expiry_service.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from config import Config
from models import (
    ActivityType, ApplicationStatus, Bounty, BountyApplication, BountyStatus,
    RevenueSource, TransactionType,
)
from schemas import BountyCreate
from services.ledger_service import ledger
from services.wallet_service import wallet_service
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import (
    ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from utils.fee_calculator import FeeCalculator, get_fee_calculator
from utils.financial_operation_locker import simple_locker
from utils.serializers import application_dict, bounty_dict, money

logger = logging.getLogger(__name__)


class BountyService:
    """Bounty lifecycle: active -> completed | expired"""

    def __init__(self, fee_calculator: Optional[FeeCalculator] = None):
        self._fee_calculator = fee_calculator

    @property
    def fee_calculator(self) -> FeeCalculator:
        return self._fee_calculator or get_fee_calculator()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_active_bounties(self, session: Session, category: Optional[str] = None,
                             search: Optional[str] = None) -> List[Dict[str, Any]]:
        if Config.EXPIRY_SWEEP_ON_LIST:
            from services.bounty_expiry_service import bounty_expiry_service
            bounty_expiry_service.process_expired_bounties(session)

        stmt = (
            select(Bounty)
            .options(selectinload(Bounty.author))
            .where(Bounty.status == BountyStatus.ACTIVE.value)
            .order_by(Bounty.created_at.desc(), Bounty.id.desc())
        )
        if category and category.lower() != "all":
            stmt = stmt.where(Bounty.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Bounty.title.ilike(pattern), Bounty.description.ilike(pattern)))

        return [bounty_dict(bounty) for bounty in session.execute(stmt).scalars().all()]

    def get_bounty(self, session: Session, bounty_id: int) -> Bounty:
        bounty = session.get(Bounty, bounty_id)
        if not bounty:
            raise NotFoundError("Bounty not found")
        return bounty

    def list_user_bounties(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        """Bounties the user authored or is working on"""
        stmt = (
            select(Bounty)
            .options(selectinload(Bounty.author))
            .where(or_(Bounty.author_id == user_id, Bounty.claimed_by == user_id))
            .order_by(Bounty.created_at.desc(), Bounty.id.desc())
        )
        return [bounty_dict(bounty) for bounty in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Posting (escrow hold)
    # ------------------------------------------------------------------

    def post_bounty(self, session: Session, author_id: str, data: BountyCreate) -> Dict[str, Any]:
        """
        Create a bounty and hold its reward in escrow.

        Balance debit, points deduction, bounty row, escrow_hold transaction
        and activity commit together or not at all.
        """
        reward = MonetaryDecimal.quantize_usd(data.reward)
        if reward < Config.MIN_BOUNTY_REWARD:
            raise ValidationError(
                f"Minimum bounty reward is ${MonetaryDecimal.format_usd(Config.MIN_BOUNTY_REWARD)}"
            )

        calculator = self.fee_calculator
        terms = calculator.calculate_platform_fee(reward)
        rate = calculator.describe_rate()
        expiry_days = Config.BOUNTY_EXPIRY_DAYS

        with atomic_transaction(session):
            wallet_service.debit(
                session,
                author_id,
                reward,
                insufficient_message=(
                    f"Insufficient balance. Need ${MonetaryDecimal.format_usd(reward)} "
                    f"(held in escrow until completed or auto-refunded after {expiry_days} days "
                    f"minus {rate} fee)"
                ),
            )
            wallet_service.spend_points(
                session, author_id, Config.BOUNTY_POSTING_POINTS_COST, "Posting a bounty"
            )

            bounty = Bounty(
                title=data.title,
                description=data.description,
                category=data.category,
                reward=reward,
                tags=data.tags,
                duration=data.duration,
                status=BountyStatus.ACTIVE.value,
                author_id=author_id,
            )
            session.add(bounty)
            session.flush()

            ledger.record_transaction(
                session,
                user_id=author_id,
                transaction_type=TransactionType.ESCROW_HOLD,
                amount=reward,
                description=(
                    f"Posted bounty: {bounty.title} (held in escrow, auto-refunds in "
                    f"{expiry_days} days minus {rate} fee if unclaimed)"
                ),
                bounty_id=bounty.id,
            )
            ledger.record_activity(
                session,
                user_id=author_id,
                activity_type=ActivityType.BOUNTY_POSTED,
                description=f"Posted bounty: {bounty.title}",
                metadata={"bountyId": bounty.id, "reward": money(reward)},
            )

        logger.info(f"✅ BOUNTY_POSTED: #{bounty.id} by {author_id} reward=${reward} (escrowed)")
        return {
            "bounty": bounty_dict(bounty, include_author=False),
            "totalCost": money(reward),
            "pointsSpent": Config.BOUNTY_POSTING_POINTS_COST,
            "escrow": {
                "amount": money(reward),
                "expiresInDays": expiry_days,
                "refundIfExpired": money(terms["netAmount"]),
                "feeIfExpired": money(terms["fee"]),
            },
        }

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def apply(self, session: Session, bounty_id: int, user_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        bounty = self.get_bounty(session, bounty_id)
        if bounty.author_id == user_id:
            raise ValidationError("You cannot apply to your own bounty")
        if bounty.status != BountyStatus.ACTIVE.value or bounty.claimed_by:
            raise InvalidStateError("This bounty is no longer accepting applications")

        existing = session.execute(
            select(BountyApplication).where(
                BountyApplication.bounty_id == bounty_id,
                BountyApplication.user_id == user_id,
            )
        ).scalar_one_or_none()
        if existing:
            raise ConflictError("You have already applied to this bounty")

        try:
            with atomic_transaction(session):
                application = BountyApplication(bounty_id=bounty_id, user_id=user_id, message=message)
                session.add(application)
                ledger.record_activity(
                    session,
                    user_id=user_id,
                    activity_type=ActivityType.BOUNTY_APPLIED,
                    description=f"Applied to bounty: {bounty.title}",
                    metadata={"bountyId": bounty_id},
                )
        except IntegrityError:
            raise ConflictError("You have already applied to this bounty")

        logger.info(f"📝 BOUNTY_APPLIED: user={user_id} bounty=#{bounty_id}")
        return application_dict(application)

    def list_applications(self, session: Session, bounty_id: int, user_id: str) -> List[Dict[str, Any]]:
        bounty = self.get_bounty(session, bounty_id)
        if bounty.author_id != user_id:
            raise PermissionDeniedError("Only the bounty author can view applications")

        applications = session.execute(
            select(BountyApplication)
            .options(selectinload(BountyApplication.applicant))
            .where(BountyApplication.bounty_id == bounty_id)
            .order_by(BountyApplication.created_at.asc(), BountyApplication.id.asc())
        ).scalars().all()
        return [application_dict(application) for application in applications]

    def accept_application(self, session: Session, bounty_id: int, application_id: int,
                           user_id: str) -> Dict[str, Any]:
        """Assign the bounty to an applicant; other pending applications are rejected"""
        with atomic_transaction(session):
            bounty = simple_locker.lock_bounty(session, bounty_id)
            if bounty.author_id != user_id:
                raise PermissionDeniedError("Only the bounty author can accept applications")
            if bounty.status != BountyStatus.ACTIVE.value:
                raise InvalidStateError(f"Bounty is already {bounty.status}")
            if bounty.claimed_by:
                raise InvalidStateError("Bounty has already been claimed")

            application = session.get(BountyApplication, application_id)
            if not application or application.bounty_id != bounty_id:
                raise NotFoundError("Application not found")

            application.status = ApplicationStatus.ACCEPTED.value
            bounty.claimed_by = application.user_id
            session.execute(
                update(BountyApplication)
                .where(
                    BountyApplication.bounty_id == bounty_id,
                    BountyApplication.id != application_id,
                    BountyApplication.status == ApplicationStatus.PENDING.value,
                )
                .values(status=ApplicationStatus.REJECTED.value)
                .execution_options(synchronize_session=False)
            )
            ledger.record_activity(
                session,
                user_id=application.user_id,
                activity_type=ActivityType.APPLICATION_ACCEPTED,
                description=f"Your application was accepted: {bounty.title}",
                metadata={"bountyId": bounty_id},
            )

        logger.info(f"🤝 BOUNTY_CLAIMED: #{bounty_id} assigned to {application.user_id}")
        return bounty_dict(bounty)

    # ------------------------------------------------------------------
    # Completion (split payout)
    # ------------------------------------------------------------------

    def complete_bounty(self, session: Session, bounty_id: int, user_id: str) -> Dict[str, Any]:
        """
        Pay the claimant reward minus platform fee and close the bounty.

        The bounty row is locked first so completion and the expiry sweep
        cannot both settle the same bounty.
        """
        with atomic_transaction(session):
            bounty = simple_locker.lock_bounty(session, bounty_id)
            if bounty.author_id != user_id:
                raise PermissionDeniedError("Only the bounty author can complete this bounty")
            if bounty.status != BountyStatus.ACTIVE.value:
                raise InvalidStateError(f"Bounty is already {bounty.status}")
            if not bounty.claimed_by:
                raise InvalidStateError("Bounty must be claimed to complete")

            split = self.fee_calculator.calculate_platform_fee(bounty.reward)
            worker_id = bounty.claimed_by

            bounty.status = BountyStatus.COMPLETED.value
            bounty.completed_at = get_naive_utc_now()

            wallet_service.credit(session, worker_id, split["netAmount"], count_as_earning=True)
            earning = ledger.record_transaction(
                session,
                user_id=worker_id,
                transaction_type=TransactionType.EARNING,
                amount=split["netAmount"],
                description=f"Completed bounty: {bounty.title}",
                bounty_id=bounty.id,
            )
            ledger.record_revenue(
                session,
                amount=split["fee"],
                source=RevenueSource.BOUNTY_COMPLETION,
                description=f"Platform fee for completed bounty: {bounty.title}",
                bounty_id=bounty.id,
                transaction_id=earning.id,
            )
            ledger.record_activity(
                session,
                user_id=worker_id,
                activity_type=ActivityType.BOUNTY_COMPLETED,
                description=f"Earned ${money(split['netAmount'])} for completing: {bounty.title}",
                metadata={"bountyId": bounty.id, "earned": money(split["netAmount"]), "fee": money(split["fee"])},
            )
            ledger.record_activity(
                session,
                user_id=bounty.author_id,
                activity_type=ActivityType.BOUNTY_COMPLETED,
                description=f"Bounty completed: {bounty.title}",
                metadata={"bountyId": bounty.id, "workerId": worker_id},
            )

        logger.info(
            f"✅ BOUNTY_COMPLETED: #{bounty_id} worker={worker_id} "
            f"earned=${split['netAmount']} fee=${split['fee']}"
        )
        return {
            "success": True,
            "workerEarned": money(split["netAmount"]),
            "platformFee": money(split["fee"]),
            "originalReward": money(split["grossAmount"]),
        }


bounty_service = BountyService()
