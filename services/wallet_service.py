"""
Wallet Service - balance mutations on a locked user row
Callers wrap these in atomic_transaction together with the ledger rows
"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from models import User
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import InsufficientBalanceError, InsufficientPointsError
from utils.financial_operation_locker import simple_locker

logger = logging.getLogger(__name__)


class WalletService:

    @staticmethod
    def debit(session: Session, user_id: str, amount: Decimal, insufficient_message: str = None) -> User:
        """Lock the user, check the balance, then subtract `amount`"""
        amount = MonetaryDecimal.quantize_usd(amount)
        user = simple_locker.lock_user(session, user_id)
        balance = MonetaryDecimal.quantize_usd(user.balance)

        if balance < amount:
            logger.warning(f"⚠️ INSUFFICIENT_BALANCE: user={user_id} balance=${balance} needed=${amount}")
            raise InsufficientBalanceError(
                insufficient_message or f"Insufficient balance. Need ${MonetaryDecimal.format_usd(amount)}",
                required=MonetaryDecimal.format_usd(amount),
                balance=MonetaryDecimal.format_usd(balance),
            )

        user.balance = balance - amount
        logger.info(f"💸 WALLET_DEBIT: user={user_id} -${amount} -> ${user.balance}")
        return user

    @staticmethod
    def credit(session: Session, user_id: str, amount: Decimal, count_as_earning: bool = False) -> User:
        """Lock the user and add `amount`; earnings also raise lifetime_earned"""
        amount = MonetaryDecimal.quantize_usd(amount)
        user = simple_locker.lock_user(session, user_id)
        user.balance = MonetaryDecimal.quantize_usd(user.balance) + amount
        if count_as_earning:
            user.lifetime_earned = MonetaryDecimal.quantize_usd(user.lifetime_earned) + amount
        logger.info(f"💵 WALLET_CREDIT: user={user_id} +${amount} -> ${user.balance}")
        return user

    @staticmethod
    def spend_points(session: Session, user_id: str, points: int, reason: str) -> User:
        user = simple_locker.lock_user(session, user_id)
        if user.points < points:
            raise InsufficientPointsError(
                f"Insufficient points. {reason} requires {points} points, you have {user.points}",
                required=points,
                points=user.points,
            )
        user.points -= points
        return user

    @staticmethod
    def award_points(session: Session, user_id: str, points: int) -> User:
        user = simple_locker.lock_user(session, user_id)
        user.points += points
        return user


wallet_service = WalletService()
