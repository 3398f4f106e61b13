"""Fee calculation utilities for bounty payouts, refunds, deposits and withdrawals"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from config import Config
from utils.decimal_precision import MonetaryDecimal, Numeric

logger = logging.getLogger(__name__)


class FeeCalculator:
    """Splits gross amounts into platform fee and net amount at one configured rate.

    Every call site (bounty posting terms, completion, expiry refunds,
    deposits) goes through the same instance so the rate cannot drift
    between code paths.
    """

    USD_PRECISION = MonetaryDecimal.USD_PRECISION

    def __init__(self, fee_percentage: Optional[Numeric] = None):
        if fee_percentage is None:
            fee_percentage = Config.PLATFORM_FEE_PERCENTAGE
        self.fee_percentage = MonetaryDecimal.to_decimal(fee_percentage, "fee_percentage")

    def calculate_platform_fee(self, gross_amount: Numeric) -> Dict[str, Decimal]:
        """
        Split a gross amount into the platform fee and the net amount.

        fee = round_half_up(gross * rate, 2); net = gross - fee, so
        fee + net always equals the (cent-rounded) gross amount. Inputs are
        not validated for sign; callers enforce their own minimums.

        Returns:
            {"fee": Decimal, "netAmount": Decimal, "grossAmount": Decimal}
        """
        gross = MonetaryDecimal.quantize_usd(gross_amount)
        fee = MonetaryDecimal.percentage_of(gross, self.fee_percentage)
        net = gross - fee
        return {"fee": fee, "netAmount": net, "grossAmount": gross}

    def calculate_deposit_charge(self, deposit_amount: Numeric) -> Dict[str, Decimal]:
        """Fee is added on top of a deposit: the card is charged amount + fee, the wallet gets amount"""
        amount = MonetaryDecimal.quantize_usd(deposit_amount)
        fee = MonetaryDecimal.percentage_of(amount, self.fee_percentage)
        return {"fee": fee, "creditAmount": amount, "totalCharge": amount + fee}

    @staticmethod
    def calculate_instant_transfer_fee(amount: Numeric) -> Decimal:
        """Instant payout fee: max(minimum fee, percentage of amount)"""
        percentage_fee = MonetaryDecimal.percentage_of(amount, Config.INSTANT_TRANSFER_FEE_PERCENTAGE)
        return max(MonetaryDecimal.quantize_usd(Config.INSTANT_TRANSFER_MIN_FEE), percentage_fee)

    def describe_rate(self) -> str:
        """Human readable rate, e.g. '5%' or '3.5%'"""
        normalized = self.fee_percentage.normalize()
        return f"{normalized:f}%"


def get_fee_calculator() -> FeeCalculator:
    """Calculator bound to the currently configured platform fee"""
    return FeeCalculator(Config.PLATFORM_FEE_PERCENTAGE)


def calculate_platform_fee(gross_amount: Numeric) -> Dict[str, Decimal]:
    return get_fee_calculator().calculate_platform_fee(gross_amount)
