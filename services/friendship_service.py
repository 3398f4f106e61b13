"""
Friendship Service - request, accept/decline, list
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models import ActivityType, Friendship, FriendshipStatus, User
from services.ledger_service import ledger
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import (
    ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from utils.serializers import friendship_dict

logger = logging.getLogger(__name__)


class FriendshipService:

    def _pair_filter(self, user_a: str, user_b: str):
        return or_(
            and_(Friendship.requester_id == user_a, Friendship.addressee_id == user_b),
            and_(Friendship.requester_id == user_b, Friendship.addressee_id == user_a),
        )

    def send_request(self, session: Session, requester_id: str, addressee_id: str) -> Dict[str, Any]:
        if requester_id == addressee_id:
            raise ValidationError("You cannot send a friend request to yourself")
        if not session.get(User, addressee_id):
            raise NotFoundError("User not found")

        existing = session.execute(
            select(Friendship).where(self._pair_filter(requester_id, addressee_id))
        ).scalar_one_or_none()
        if existing and existing.status != FriendshipStatus.DECLINED.value:
            raise ConflictError(
                "You are already friends" if existing.status == FriendshipStatus.ACCEPTED.value
                else "A friend request is already pending"
            )

        try:
            with atomic_transaction(session):
                if existing:
                    # A declined request can be re-sent by either side
                    existing.requester_id = requester_id
                    existing.addressee_id = addressee_id
                    existing.status = FriendshipStatus.PENDING.value
                    friendship = existing
                else:
                    friendship = Friendship(requester_id=requester_id, addressee_id=addressee_id)
                    session.add(friendship)
        except IntegrityError:
            raise ConflictError("A friend request is already pending")

        logger.info(f"🤝 FRIEND_REQUEST: {requester_id} -> {addressee_id}")
        return friendship_dict(friendship, requester_id)

    def respond(self, session: Session, friendship_id: int, user_id: str, status: str) -> Dict[str, Any]:
        new_status = FriendshipStatus(status)
        if new_status == FriendshipStatus.PENDING:
            raise ValidationError("Status must be accepted or declined")

        with atomic_transaction(session):
            friendship = session.get(Friendship, friendship_id)
            if not friendship:
                raise NotFoundError("Friend request not found")
            if friendship.addressee_id != user_id:
                raise PermissionDeniedError("Only the recipient can respond to this request")
            if friendship.status != FriendshipStatus.PENDING.value:
                raise InvalidStateError(f"Friend request is already {friendship.status}")

            friendship.status = new_status.value
            if new_status == FriendshipStatus.ACCEPTED:
                for owner_id, friend in (
                    (friendship.requester_id, friendship.addressee),
                    (friendship.addressee_id, friendship.requester),
                ):
                    ledger.record_activity(
                        session,
                        user_id=owner_id,
                        activity_type=ActivityType.FRIEND_ADDED,
                        description=f"You are now friends with {friend.display_name}",
                        metadata={"friendId": friend.id},
                    )

        logger.info(f"🤝 FRIEND_REQUEST_{new_status.value.upper()}: #{friendship_id}")
        return friendship_dict(friendship, user_id)

    def list_friends(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        friendships = session.execute(
            select(Friendship)
            .options(selectinload(Friendship.requester), selectinload(Friendship.addressee))
            .where(
                Friendship.status == FriendshipStatus.ACCEPTED.value,
                or_(Friendship.requester_id == user_id, Friendship.addressee_id == user_id),
            )
            .order_by(Friendship.updated_at.desc())
        ).scalars().all()
        return [friendship_dict(friendship, user_id) for friendship in friendships]

    def list_pending_requests(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        friendships = session.execute(
            select(Friendship)
            .options(selectinload(Friendship.requester))
            .where(
                Friendship.status == FriendshipStatus.PENDING.value,
                Friendship.addressee_id == user_id,
            )
            .order_by(Friendship.created_at.desc())
        ).scalars().all()
        return [friendship_dict(friendship, user_id) for friendship in friendships]


friendship_service = FriendshipService()
