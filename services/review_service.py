"""
Review Service - rate the other party of a completed bounty
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import ActivityType, Bounty, BountyStatus, Review, User
from services.ledger_service import ledger
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import (
    ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from utils.serializers import review_dict

logger = logging.getLogger(__name__)

RATING_PRECISION = Decimal("0.01")


class ReviewService:

    def create_review(self, session: Session, reviewer_id: str, bounty_id: int, reviewee_id: str,
                      rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        bounty = session.get(Bounty, bounty_id)
        if not bounty:
            raise NotFoundError("Bounty not found")
        if bounty.status != BountyStatus.COMPLETED.value:
            raise InvalidStateError("Only completed bounties can be reviewed")

        participants = {bounty.author_id, bounty.claimed_by}
        if reviewer_id not in participants:
            raise PermissionDeniedError("Only bounty participants can leave reviews")
        if reviewee_id == reviewer_id or reviewee_id not in participants:
            raise ValidationError("You can only review the other participant of this bounty")

        try:
            with atomic_transaction(session):
                review = Review(
                    bounty_id=bounty_id,
                    reviewer_id=reviewer_id,
                    reviewee_id=reviewee_id,
                    rating=rating,
                    comment=comment,
                )
                session.add(review)
                session.flush()
                self._recompute_rating(session, reviewee_id)
                ledger.record_activity(
                    session,
                    user_id=reviewee_id,
                    activity_type=ActivityType.REVIEW_RECEIVED,
                    description=f"You received a {rating}-star review for: {bounty.title}",
                    metadata={"bountyId": bounty_id, "rating": rating},
                )
        except IntegrityError:
            raise ConflictError("You have already reviewed this bounty")

        logger.info(f"⭐ REVIEW_CREATED: {reviewer_id} -> {reviewee_id} {rating}/5 bounty=#{bounty_id}")
        return review_dict(review)

    @staticmethod
    def _recompute_rating(session: Session, user_id: str) -> None:
        average, count = session.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.reviewee_id == user_id)
        ).one()
        user = session.get(User, user_id)
        user.review_count = count or 0
        user.rating = (
            Decimal(str(average)).quantize(RATING_PRECISION, rounding=ROUND_HALF_UP)
            if average is not None else Decimal("0.00")
        )


review_service = ReviewService()
