"""
Messaging Service - one thread per user pair, messages and read receipts
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Message, MessageThread, User
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import NotFoundError, PermissionDeniedError, ValidationError
from utils.serializers import message_dict, thread_dict

logger = logging.getLogger(__name__)


def _ordered_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class MessagingService:

    def get_or_create_thread(self, session: Session, user_id: str, other_user_id: str) -> MessageThread:
        if user_id == other_user_id:
            raise ValidationError("You cannot message yourself")
        if not session.get(User, other_user_id):
            raise NotFoundError("Recipient not found")

        user1_id, user2_id = _ordered_pair(user_id, other_user_id)
        stmt = select(MessageThread).where(
            MessageThread.user1_id == user1_id, MessageThread.user2_id == user2_id
        )
        thread = session.execute(stmt).scalar_one_or_none()
        if thread:
            return thread

        try:
            with atomic_transaction(session):
                thread = MessageThread(user1_id=user1_id, user2_id=user2_id)
                session.add(thread)
        except IntegrityError:
            # Created concurrently by the other participant
            thread = session.execute(stmt).scalar_one()
        return thread

    def get_thread_for_participant(self, session: Session, thread_id: int, user_id: str) -> MessageThread:
        thread = session.get(MessageThread, thread_id)
        if not thread:
            raise NotFoundError("Thread not found")
        if not thread.has_participant(user_id):
            raise PermissionDeniedError("You are not a participant in this thread")
        return thread

    def list_threads(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        threads = session.execute(
            select(MessageThread)
            .where(or_(MessageThread.user1_id == user_id, MessageThread.user2_id == user_id))
            .order_by(MessageThread.last_message_at.desc())
        ).scalars().all()

        results = []
        for thread in threads:
            last_message = session.execute(
                select(Message)
                .where(Message.thread_id == thread.id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            unread = session.execute(
                select(func.count(Message.id)).where(and_(
                    Message.thread_id == thread.id,
                    Message.sender_id != user_id,
                    Message.read_at.is_(None),
                ))
            ).scalar() or 0
            other_user = session.get(User, thread.other_participant(user_id))
            results.append(thread_dict(thread, other_user, last_message, unread))
        return results

    def list_messages(self, session: Session, thread_id: int, user_id: str) -> List[Dict[str, Any]]:
        self.get_thread_for_participant(session, thread_id, user_id)
        messages = session.execute(
            select(Message)
            .where(Message.thread_id == thread_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        ).scalars().all()
        return [message_dict(message) for message in messages]

    def send_message(self, session: Session, sender_id: str, content: str,
                     thread_id: Optional[int] = None, recipient_id: Optional[str] = None) -> Tuple[Dict[str, Any], str]:
        """Store a message; returns it with the recipient id for real-time delivery"""
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty")

        if thread_id is not None:
            thread = self.get_thread_for_participant(session, thread_id, sender_id)
        elif recipient_id:
            thread = self.get_or_create_thread(session, sender_id, recipient_id)
        else:
            raise ValidationError("Either threadId or recipientId is required")

        with atomic_transaction(session):
            message = Message(thread_id=thread.id, sender_id=sender_id, content=content)
            session.add(message)
            thread.last_message_at = get_naive_utc_now()

        logger.info(f"💬 MESSAGE_SENT: thread=#{thread.id} sender={sender_id}")
        return message_dict(message), thread.other_participant(sender_id)

    def mark_read(self, session: Session, message_id: int, user_id: str) -> Dict[str, Any]:
        message = session.get(Message, message_id)
        if not message:
            raise NotFoundError("Message not found")
        thread = self.get_thread_for_participant(session, message.thread_id, user_id)
        if message.sender_id == user_id:
            raise ValidationError("You cannot mark your own message as read")

        if message.read_at is None:
            with atomic_transaction(session):
                message.read_at = get_naive_utc_now()
        logger.debug(f"MESSAGE_READ: #{message_id} in thread #{thread.id}")
        return message_dict(message)


messaging_service = MessagingService()
