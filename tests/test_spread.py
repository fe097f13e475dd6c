"""Tests for the spread calculator and crypto amount arithmetic."""

from decimal import Decimal

import pytest

from floatpay.services.spread import (
    BASE_FEE,
    calculate_crypto_amount,
    calculate_spread,
)


class TestSpread:

    def test_zero_risk_is_base_fee(self):
        assert calculate_spread(Decimal("0")) == BASE_FEE

    def test_low_risk(self):
        """0.01 + 0.2 * 0.05 = 0.02"""
        assert calculate_spread(Decimal("0.2")) == Decimal("0.02")

    def test_full_risk(self):
        """0.01 + 1.0 * 0.05 = 0.06"""
        assert calculate_spread(Decimal("1")) == Decimal("0.06")

    def test_accepts_float_scores(self):
        assert calculate_spread(0.5) == Decimal("0.035")

    @pytest.mark.parametrize("score", ["0", "0.13", "0.5", "0.9", "1"])
    def test_never_below_base_fee(self, score):
        assert calculate_spread(Decimal(score)) >= BASE_FEE

    def test_deterministic(self):
        assert calculate_spread(Decimal("0.37")) == calculate_spread(Decimal("0.37"))


class TestCryptoAmount:

    def test_usdc_example(self):
        """(500 / 5.0) * 1.02 = 102.0"""
        amount = calculate_crypto_amount(Decimal("500"), Decimal("5.0"), Decimal("0.02"), "USDC")
        assert amount == Decimal("102.0")

    def test_usdc_quantized_to_six_places(self):
        amount = calculate_crypto_amount(Decimal("100"), Decimal("5.03"), Decimal("0.02"), "USDC")
        assert amount.as_tuple().exponent == -6
        assert amount == Decimal("20.278330")

    def test_eth_quantized_to_eighteen_places(self):
        amount = calculate_crypto_amount(Decimal("1000"), Decimal("15000"), Decimal("0.035"), "ETH")
        assert amount.as_tuple().exponent == -18
        assert amount == Decimal("0.069")

    def test_spread_increases_crypto_owed(self):
        cheap = calculate_crypto_amount(Decimal("100"), Decimal("5"), Decimal("0.01"), "USDC")
        risky = calculate_crypto_amount(Decimal("100"), Decimal("5"), Decimal("0.06"), "USDC")
        assert risky > cheap
