"""
Points Service - package purchases, mini-game awards and referral rewards
"""

import logging
import secrets
import string
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from models import (
    ActivityType, Payment, PaymentStatus, PaymentType, RevenueSource,
    TransactionType, User,
)
from services.ledger_service import ledger
from services.payment_error_classifier import PaymentErrorClassifier
from services.stripe_service import StripeService
from services.wallet_service import wallet_service
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import (
    ConflictError, InvalidStateError, NotFoundError, PaymentNotConfiguredError,
    PermissionDeniedError, ValidationError,
)
from utils.serializers import money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointPackage:
    id: str
    name: str
    points: int
    price: Decimal
    popular: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "points": self.points,
            "price": money(self.price),
            "popular": self.popular,
        }


POINT_PACKAGES: List[PointPackage] = [
    PointPackage("test", "Test Pack", 25, Decimal("0.50")),
    PointPackage("starter", "Starter Pack", 50, Decimal("0.99")),
    PointPackage("basic", "Basic Pack", 100, Decimal("1.99")),
    PointPackage("popular", "Popular Pack", 250, Decimal("4.99"), popular=True),
    PointPackage("premium", "Premium Pack", 500, Decimal("9.99")),
    PointPackage("mega", "Mega Pack", 1000, Decimal("19.99")),
    PointPackage("ultimate", "Ultimate Pack", 2500, Decimal("49.99")),
    PointPackage("supreme", "Supreme Pack", 5000, Decimal("99.99")),
]

PACKAGES_BY_ID = {package.id: package for package in POINT_PACKAGES}

# referrals reached -> points awarded to the referrer
REFERRAL_MILESTONES = [
    (1, 10),
    (5, 50),
    (10, 100),
    (20, 200),
]

REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


class PointsService:

    # ------------------------------------------------------------------
    # Package purchases
    # ------------------------------------------------------------------

    def list_packages(self) -> List[Dict[str, Any]]:
        return [package.to_dict() for package in POINT_PACKAGES]

    def get_package(self, package_id: str) -> PointPackage:
        package = PACKAGES_BY_ID.get(package_id)
        if not package:
            raise ValidationError("Invalid package")
        return package

    def create_purchase(self, session: Session, user_id: str, package_id: str,
                        stripe_service: StripeService) -> Dict[str, Any]:
        """PaymentIntent for a package; points are awarded on confirmation"""
        package = self.get_package(package_id)
        if not stripe_service.is_configured:
            raise PaymentNotConfiguredError("Payment processing is not configured")

        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")

        try:
            intent = stripe_service.create_payment_intent(
                package.price,
                customer_id=user.stripe_customer_id,
                description=f"{package.name} - {package.points} points",
                metadata={
                    "userId": user_id,
                    "packageId": package.id,
                    "points": str(package.points),
                    "type": PaymentType.POINT_PURCHASE.value,
                },
            )
        except stripe.StripeError as e:
            raise PaymentErrorClassifier.classify_deposit_error(e)

        logger.info(f"🎯 POINTS_PURCHASE_STARTED: user={user_id} package={package.id} intent={intent.id}")
        return {
            "clientSecret": intent.client_secret,
            "paymentIntentId": intent.id,
            "package": package.to_dict(),
        }

    def confirm_purchase(self, session: Session, user_id: str, payment_intent_id: str,
                         stripe_service: StripeService) -> Dict[str, Any]:
        """
        Award a purchased package once per PaymentIntent.

        The Payment row keyed by the intent id is the idempotency record:
        a second confirmation finds it and returns without awarding again.
        """
        existing = session.execute(
            select(Payment).where(Payment.stripe_payment_intent_id == payment_intent_id)
        ).scalar_one_or_none()
        if existing:
            if existing.user_id != user_id:
                raise PermissionDeniedError("Payment does not belong to you")
            user = session.get(User, user_id)
            return {
                "success": True,
                "alreadyProcessed": True,
                "pointsAwarded": 0,
                "newPointsTotal": user.points,
            }

        intent = stripe_service.retrieve_payment_intent(payment_intent_id)
        metadata = dict(intent.metadata or {})
        if intent.status != "succeeded":
            raise InvalidStateError("Payment has not succeeded")
        if metadata.get("userId") != user_id:
            raise PermissionDeniedError("Payment does not belong to you")
        if metadata.get("type") != PaymentType.POINT_PURCHASE.value:
            raise ValidationError("Payment is not a point purchase")

        package = PACKAGES_BY_ID.get(metadata.get("packageId"))
        points = int(metadata.get("points") or (package.points if package else 0))
        price = package.price if package else Decimal(intent.amount) / 100
        package_name = package.name if package else "Points package"

        try:
            with atomic_transaction(session):
                payment = Payment(
                    user_id=user_id,
                    stripe_payment_intent_id=payment_intent_id,
                    amount=price,
                    platform_fee=price,
                    net_amount=Decimal("0.00"),
                    status=PaymentStatus.SUCCEEDED.value,
                    type=PaymentType.POINT_PURCHASE.value,
                    description=f"{package_name} - {points} points",
                    payment_metadata={"packageId": metadata.get("packageId"), "points": points},
                    credited_at=get_naive_utc_now(),
                )
                session.add(payment)
                session.flush()

                user = wallet_service.award_points(session, user_id, points)
                purchase = ledger.record_transaction(
                    session,
                    user_id=user_id,
                    transaction_type=TransactionType.POINT_PURCHASE,
                    amount=price,
                    description=f"Purchased {points} points ({package_name})",
                    reference=payment_intent_id,
                )
                ledger.record_activity(
                    session,
                    user_id=user_id,
                    activity_type=ActivityType.POINTS_PURCHASED,
                    description=f"Purchased {points} points",
                    metadata={"points": points, "packageId": metadata.get("packageId"), "price": money(price)},
                )
                ledger.record_revenue(
                    session,
                    amount=price,
                    source=RevenueSource.POINT_PURCHASE,
                    description=f"Point purchase: {package_name}",
                    transaction_id=purchase.id,
                    payment_id=payment.id,
                )
        except IntegrityError:
            # Concurrent confirmation inserted the Payment row first
            logger.info(f"⏭️ POINTS_PURCHASE_DUPLICATE: intent={payment_intent_id}")
            user = session.get(User, user_id)
            return {"success": True, "alreadyProcessed": True, "pointsAwarded": 0, "newPointsTotal": user.points}

        logger.info(f"✅ POINTS_PURCHASED: user={user_id} +{points} points intent={payment_intent_id}")
        return {
            "success": True,
            "alreadyProcessed": False,
            "pointsAwarded": points,
            "newPointsTotal": user.points,
        }

    # ------------------------------------------------------------------
    # Mini-game awards
    # ------------------------------------------------------------------

    def award_game_points(self, session: Session, user_id: str, points: int,
                          game: Optional[str] = None) -> Dict[str, Any]:
        if points <= 0:
            raise ValidationError("Points must be positive")
        if points > Config.MAX_GAME_POINTS_AWARD:
            raise ValidationError(f"At most {Config.MAX_GAME_POINTS_AWARD} points can be awarded at once")

        with atomic_transaction(session):
            user = wallet_service.award_points(session, user_id, points)
            ledger.record_activity(
                session,
                user_id=user_id,
                activity_type=ActivityType.POINTS_EARNED,
                description=f"Earned {points} points" + (f" playing {game}" if game else ""),
                metadata={"points": points, "game": game},
            )
        return {"success": True, "points": user.points}

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------

    def get_or_create_referral_code(self, session: Session, user_id: str) -> str:
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.referral_code:
            return user.referral_code

        for _ in range(5):
            code = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
            taken = session.execute(select(User.id).where(User.referral_code == code)).first()
            if taken:
                continue
            try:
                with atomic_transaction(session):
                    user.referral_code = code
                return code
            except IntegrityError:
                session.refresh(user)
                if user.referral_code:
                    return user.referral_code
        raise ConflictError("Could not allocate a referral code, please retry")

    def referral_share_url(self, code: str) -> str:
        return f"{Config.PUBLIC_BASE_URL}/signup?ref={code}"

    def referral_stats(self, session: Session, user_id: str) -> Dict[str, Any]:
        code = self.get_or_create_referral_code(session, user_id)
        user = session.get(User, user_id)
        referrals = session.execute(
            select(User).where(User.referred_by_id == user_id).order_by(User.created_at.desc())
        ).scalars().all()

        milestones = []
        next_milestone = None
        for threshold, reward in REFERRAL_MILESTONES:
            reached = user.referral_count >= threshold
            milestones.append({"referrals": threshold, "points": reward, "reached": reached})
            if not reached and next_milestone is None:
                next_milestone = {"referrals": threshold, "points": reward,
                                  "remaining": threshold - user.referral_count}

        return {
            "referralCode": code,
            "shareUrl": self.referral_share_url(code),
            "referralCount": user.referral_count,
            "referrals": [
                {"id": referred.id, "name": referred.display_name, "joinedAt": referred.created_at.isoformat()}
                for referred in referrals
            ],
            "milestones": milestones,
            "nextMilestone": next_milestone,
        }

    def apply_referral(self, session: Session, user_id: str, referral_code: str) -> Dict[str, Any]:
        """Link a new user to their referrer and pay any milestone reached"""
        code = referral_code.strip().upper()
        with atomic_transaction(session):
            user = session.get(User, user_id)
            if not user:
                raise NotFoundError("User not found")
            if user.referred_by_id:
                raise ConflictError("A referral code has already been applied")

            referrer = session.execute(
                select(User).where(User.referral_code == code)
            ).scalar_one_or_none()
            if not referrer:
                raise NotFoundError("Invalid referral code")
            if referrer.id == user_id:
                raise ValidationError("You cannot use your own referral code")

            user.referred_by_id = referrer.id
            session.execute(
                update(User)
                .where(User.id == referrer.id)
                .values(referral_count=User.referral_count + 1)
                .execution_options(synchronize_session=False)
            )
            new_count = session.execute(
                select(User.referral_count).where(User.id == referrer.id)
            ).scalar_one()

            milestone_points = dict(REFERRAL_MILESTONES).get(new_count, 0)
            if milestone_points:
                wallet_service.award_points(session, referrer.id, milestone_points)
                ledger.record_activity(
                    session,
                    user_id=referrer.id,
                    activity_type=ActivityType.REFERRAL_MILESTONE,
                    description=f"Referral milestone reached: {new_count} referrals (+{milestone_points} points)",
                    metadata={"referrals": new_count, "points": milestone_points},
                )

        logger.info(f"🔗 REFERRAL_APPLIED: {user_id} referred by {referrer.id} (count={new_count})")
        return {"success": True, "referrerId": referrer.id, "milestonePointsAwarded": milestone_points}


points_service = PointsService()
