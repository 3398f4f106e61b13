"""
Payment Error Classification Service
Turns Stripe failures into user-facing messages and tells technical
(provider/network) failures apart from user errors (declines, bad accounts)
"""

import logging
import re
from typing import Optional, Tuple

import stripe

from utils.exception_handler import PaymentDeclinedError

logger = logging.getLogger(__name__)


class PaymentErrorClassifier:
    """Classifies Stripe errors for deposits, point purchases and withdrawals"""

    DEPOSIT_DECLINE_MESSAGES = {
        "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
        "card_declined": "Your card was declined. Please try a different card or contact your bank.",
        "expired_card": "Your card has expired. Please update your payment method.",
        "incorrect_cvc": "Your card's security code is incorrect.",
        "processing_error": "An error occurred while processing your card. Please try again.",
    }

    WITHDRAWAL_ERROR_MESSAGES = {
        "insufficient_funds": "Withdrawals are temporarily unavailable. Please try again later.",
        "account_invalid": "Your payout account is invalid. Please update your payout details.",
    }

    # Message patterns for errors that carry no code
    TECHNICAL_ERROR_PATTERNS = {
        r"timeout|timed.*out": "provider_timeout",
        r"connection.*error|network.*error|ssl": "network_error",
        r"rate.*limit|too.*many.*requests|429": "rate_limited",
        r"service.*unavailable|502|503|504": "service_unavailable",
    }

    @classmethod
    def _error_code(cls, error: Exception) -> Optional[str]:
        if isinstance(error, stripe.StripeError):
            decline_code = getattr(error, "decline_code", None)
            if not decline_code and getattr(error, "error", None) is not None:
                decline_code = getattr(error.error, "decline_code", None)
            return decline_code or error.code
        return None

    @classmethod
    def is_technical_error(cls, error: Exception) -> Tuple[bool, Optional[str]]:
        """Provider/network failure rather than a problem with the user's card or account"""
        if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)):
            return True, type(error).__name__
        if isinstance(error, stripe.APIError):
            return True, "api_error"

        message = str(error).lower()
        for pattern, code in cls.TECHNICAL_ERROR_PATTERNS.items():
            if re.search(pattern, message):
                return True, code
        return False, None

    @classmethod
    def classify_deposit_error(cls, error: Exception) -> PaymentDeclinedError:
        code = cls._error_code(error)
        message = cls.DEPOSIT_DECLINE_MESSAGES.get(code)
        if message is None:
            message = getattr(error, "user_message", None) or "Payment failed. Please try again."
        logger.warning(f"⚠️ DEPOSIT_DECLINED: code={code} type={type(error).__name__}: {error}")
        return PaymentDeclinedError(message, decline_code=code)

    @classmethod
    def classify_withdrawal_error(cls, error: Exception) -> PaymentDeclinedError:
        code = cls._error_code(error)
        message = cls.WITHDRAWAL_ERROR_MESSAGES.get(code)
        if message is None:
            message = getattr(error, "user_message", None) or "Withdrawal failed. Your balance has not been charged."
        logger.warning(f"⚠️ WITHDRAWAL_REJECTED: code={code} type={type(error).__name__}: {error}")
        return PaymentDeclinedError(message, decline_code=code)
