"""
User Service - identity upsert, profile, ledger and activity queries
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Activity, Review, Transaction, User
from schemas import ProfileUpdate
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import ConflictError, NotFoundError
from utils.serializers import activity_dict, public_user, review_dict, transaction_dict

logger = logging.getLogger(__name__)

ACTIVITY_FEED_LIMIT = 50
SEARCH_RESULT_LIMIT = 20
LAST_SEEN_RESOLUTION = timedelta(minutes=5)


class UserService:

    def upsert_from_claims(self, session: Session, claims: Dict[str, Any]) -> User:
        """Create the user on first sight of a token and refresh profile claims afterwards"""
        user_id = str(claims["sub"])
        user = session.get(User, user_id)
        now = get_naive_utc_now()

        profile = {
            "email": claims.get("email"),
            "first_name": claims.get("first_name") or claims.get("given_name"),
            "last_name": claims.get("last_name") or claims.get("family_name"),
            "profile_image_url": claims.get("profile_image_url") or claims.get("picture"),
        }
        profile = {field: value for field, value in profile.items() if value}

        stale = user is None or user.last_seen is None or now - user.last_seen > LAST_SEEN_RESOLUTION
        changed = user is None or any(getattr(user, field) != value for field, value in profile.items())
        if not (stale or changed):
            return user

        try:
            with atomic_transaction(session):
                if user is None:
                    user = User(id=user_id)
                    session.add(user)
                    logger.info(f"👤 USER_CREATED: {user_id}")
                for field, value in profile.items():
                    setattr(user, field, value)
                user.last_seen = now
        except IntegrityError:
            # First requests of a new user raced; the other one created the row
            user = session.get(User, user_id)
            if user is None:
                raise
        return user

    def get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def update_profile(self, session: Session, user_id: str, data: ProfileUpdate) -> User:
        changes = data.model_dump(exclude_unset=True)
        user = self.get_user(session, user_id)

        if changes.get("handle"):
            taken = session.execute(
                select(User.id).where(User.handle == changes["handle"], User.id != user_id)
            ).first()
            if taken:
                raise ConflictError("Handle is already taken")

        try:
            with atomic_transaction(session):
                for field, value in changes.items():
                    setattr(user, field, value)
        except IntegrityError:
            raise ConflictError("Handle is already taken")

        logger.info(f"✏️ PROFILE_UPDATED: {user_id} fields={sorted(changes)}")
        return user

    def search_users(self, session: Session, term: str, exclude_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        term = (term or "").strip()
        if len(term) < 2:
            return []
        pattern = f"%{term}%"
        stmt = (
            select(User)
            .where(or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.handle.ilike(pattern),
                User.email.ilike(pattern),
            ))
            .order_by(User.handle.asc())
            .limit(SEARCH_RESULT_LIMIT)
        )
        if exclude_user_id:
            stmt = stmt.where(User.id != exclude_user_id)
        return [public_user(user) for user in session.execute(stmt).scalars().all()]

    def list_transactions(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        transactions = session.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).scalars().all()
        return [transaction_dict(transaction) for transaction in transactions]

    def list_activities(self, session: Session, user_id: str, limit: int = ACTIVITY_FEED_LIMIT) -> List[Dict[str, Any]]:
        activities = session.execute(
            select(Activity)
            .where(Activity.user_id == user_id)
            .order_by(Activity.created_at.desc(), Activity.id.desc())
            .limit(limit)
        ).scalars().all()
        return [activity_dict(activity) for activity in activities]

    def list_reviews(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        reviews = session.execute(
            select(Review).where(Review.reviewee_id == user_id).order_by(Review.created_at.desc())
        ).scalars().all()
        return [review_dict(review) for review in reviews]


user_service = UserService()
