"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all monetary operations
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28

Numeric = Union[str, int, float, Decimal]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    USD_PRECISION = Decimal("0.01")  # 2 decimal places for USD
    ZERO = Decimal("0.00")

    @classmethod
    def to_decimal(cls, value: Numeric, context: str = "monetary") -> Decimal:
        """Convert a numeric value to Decimal, raising ValueError when it is not a finite number"""
        if value is None:
            return Decimal("0")

        if isinstance(value, Decimal):
            decimal_value = value
        else:
            try:
                # Convert to string first to avoid float precision issues
                decimal_value = Decimal(str(value).strip())
            except (InvalidOperation, ValueError) as e:
                logger.warning(f"Failed to convert {value!r} to Decimal in context {context}: {e}")
                raise ValueError(f"Invalid amount for {context}: {value!r}") from e

        if not decimal_value.is_finite():
            raise ValueError(f"Invalid amount for {context}: {value!r}")

        if abs(decimal_value) > Decimal("999999999999"):
            logger.warning(f"Unusually large monetary value: {decimal_value} in context: {context}")

        return decimal_value

    @classmethod
    def quantize_usd(cls, amount: Numeric) -> Decimal:
        """Quantize amount to USD precision (2 decimal places)"""
        decimal_amount = cls.to_decimal(amount, "USD")
        return decimal_amount.quantize(cls.USD_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def percentage_of(cls, amount: Numeric, percentage: Numeric) -> Decimal:
        """`percentage` percent of `amount`, rounded half-up to cents"""
        decimal_amount = cls.to_decimal(amount, "percentage_base")
        rate = cls.to_decimal(percentage, "percentage") / Decimal("100")
        return cls.quantize_usd(decimal_amount * rate)

    @classmethod
    def to_cents(cls, amount: Numeric) -> int:
        """Convert a USD amount to integer cents for the payment provider"""
        return int(cls.quantize_usd(amount) * 100)

    @classmethod
    def from_cents(cls, cents: int) -> Decimal:
        return cls.quantize_usd(Decimal(cents) / Decimal(100))

    @classmethod
    def format_usd(cls, amount: Numeric) -> str:
        """Format as a string with exactly two decimals, e.g. '95.00'"""
        return f"{cls.quantize_usd(amount):.2f}"
