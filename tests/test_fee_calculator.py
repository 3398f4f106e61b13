"""
Fee calculation tests
Platform fee split, deposit surcharge and instant transfer fee
"""

from decimal import Decimal

import pytest

from config import Config
from utils.decimal_precision import MonetaryDecimal
from utils.fee_calculator import FeeCalculator, calculate_platform_fee, get_fee_calculator


class TestPlatformFeeSplit:

    def test_hundred_dollar_split(self):
        split = FeeCalculator(Decimal("5")).calculate_platform_fee(Decimal("100"))
        assert split == {"fee": Decimal("5.00"), "netAmount": Decimal("95.00"), "grossAmount": Decimal("100.00")}

    def test_forty_dollar_split(self):
        split = FeeCalculator(Decimal("5")).calculate_platform_fee("40")
        assert split["fee"] == Decimal("2.00")
        assert split["netAmount"] == Decimal("38.00")

    def test_fee_rounds_half_up_to_cents(self):
        # 5% of 0.10 is 0.005 -> 0.01
        split = FeeCalculator(Decimal("5")).calculate_platform_fee("0.10")
        assert split["fee"] == Decimal("0.01")
        assert split["netAmount"] == Decimal("0.09")

    @pytest.mark.parametrize("gross", ["0", "0.01", "1.99", "33.33", "99.99", "1234.57", "10000"])
    def test_fee_plus_net_equals_gross(self, gross):
        split = FeeCalculator(Decimal("5")).calculate_platform_fee(gross)
        assert split["fee"] + split["netAmount"] == Decimal(gross).quantize(Decimal("0.01"))
        assert split["fee"] >= 0 and split["netAmount"] >= 0

    def test_uses_configured_rate_by_default(self, monkeypatch):
        monkeypatch.setattr(Config, "PLATFORM_FEE_PERCENTAGE", Decimal("3.5"))
        assert get_fee_calculator().calculate_platform_fee("100")["fee"] == Decimal("3.50")
        assert calculate_platform_fee("100")["netAmount"] == Decimal("96.50")

    def test_describe_rate(self):
        assert FeeCalculator(Decimal("5.0")).describe_rate() == "5%"
        assert FeeCalculator(Decimal("3.5")).describe_rate() == "3.5%"

    def test_invalid_rate_rejected(self):
        with pytest.raises(ValueError):
            FeeCalculator("not-a-number")


class TestDepositCharge:

    def test_fee_is_added_on_top(self):
        charge = FeeCalculator(Decimal("5")).calculate_deposit_charge("50")
        assert charge == {
            "fee": Decimal("2.50"),
            "creditAmount": Decimal("50.00"),
            "totalCharge": Decimal("52.50"),
        }


class TestInstantTransferFee:

    def test_minimum_fee_applies_to_small_amounts(self):
        assert FeeCalculator.calculate_instant_transfer_fee("10") == Decimal("0.25")

    def test_percentage_applies_to_large_amounts(self):
        assert FeeCalculator.calculate_instant_transfer_fee("100") == Decimal("1.50")


class TestMonetaryDecimal:

    def test_cents_conversion(self):
        assert MonetaryDecimal.to_cents("12.345") == 1235
        assert MonetaryDecimal.from_cents(1999) == Decimal("19.99")

    def test_format_usd(self):
        assert MonetaryDecimal.format_usd(Decimal("5")) == "5.00"

    def test_invalid_amount_rejected(self):
        with pytest.raises(ValueError):
            MonetaryDecimal.to_decimal("abc")
