"""
Financial Operation Locker
Row locking with standard database SELECT FOR UPDATE, used inside an
atomic_transaction so the lock is held until that unit of work commits
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import User, Bounty
from utils.exception_handler import NotFoundError

logger = logging.getLogger(__name__)


class SimpleFinancialLocker:
    """
    Locks the rows a money movement reads before it writes.

    The user row holds the balance, so it is locked before every balance
    check; the bounty row is locked before a settlement decision. On SQLite
    FOR UPDATE is a no-op and the database-level write lock serializes instead.
    """

    def lock_user(self, session: Session, user_id: str) -> User:
        """Lock a user's balance row for the rest of the current transaction"""
        session.flush()
        user = session.execute(
            select(User).where(User.id == user_id).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if not user:
            raise NotFoundError("User not found")

        logger.debug(f"USER_LOCKED: {user_id}")
        return user

    def lock_bounty(self, session: Session, bounty_id: int) -> Bounty:
        """Lock a bounty for a status transition"""
        session.flush()
        bounty = session.execute(
            select(Bounty).where(Bounty.id == bounty_id).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if not bounty:
            raise NotFoundError("Bounty not found")

        logger.debug(f"BOUNTY_LOCKED: {bounty_id}")
        return bounty


# Global instance for easy import
simple_locker = SimpleFinancialLocker()
