"""Atomic transaction utilities for money-moving operations"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.orm import Session

from database import SessionLocal

logger = logging.getLogger(__name__)


@contextmanager
def atomic_transaction(session: Optional[Session] = None) -> Generator[Session, None, None]:
    """
    Context manager for atomic database transactions with proper rollback.

    Every balance mutation and the ledger rows that explain it must be
    written inside one of these blocks. Nested blocks on the same session
    join the outermost one: only the outermost commits, and any error
    rolls back the whole unit of work and is re-raised.
    """
    if session is None:
        session = SessionLocal()
        logger.debug("Created new session for atomic transaction")
        try:
            yield session
            session.commit()
            logger.debug("Atomic transaction committed successfully")
        except Exception as e:
            session.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise
        finally:
            session.close()
        return

    transaction_depth = getattr(session, '_atomic_transaction_depth', 0)
    try:
        setattr(session, '_atomic_transaction_depth', transaction_depth + 1)

        if transaction_depth > 0:
            logger.debug(f"Nested transaction detected (depth: {transaction_depth + 1})")

        yield session

        # For nested transactions, let the outermost handle commit
        if transaction_depth == 0:
            session.commit()
            logger.debug("Outermost transaction committed successfully")

    except Exception as e:
        # Always rollback on error, regardless of nesting
        if transaction_depth == 0:
            session.rollback()
            logger.warning(f"Transaction rolled back due to error: {e}")
        raise
    finally:
        current_depth = getattr(session, '_atomic_transaction_depth', 1)
        setattr(session, '_atomic_transaction_depth', max(0, current_depth - 1))

