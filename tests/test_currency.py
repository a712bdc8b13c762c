"""Tests for currency helpers."""

import pytest
from decimal import Decimal

from payhero_sdk.currency import convert_usd_to_kes, round_half_up


class TestRoundHalfUp:

    @pytest.mark.parametrize("value,expected", [
        (10, 10),
        (10.4, 10),
        (10.5, 11),
        (2.5, 3),
        (0.5, 1),
        ("99.5", 100),
        (Decimal("1.49"), 1),
    ])
    def test_rounding(self, value, expected):
        assert round_half_up(value) == expected


class TestConvertUsdToKes:

    def test_virtual_card_price(self):
        assert convert_usd_to_kes(60) == 7740

    def test_custom_rate(self):
        assert convert_usd_to_kes(10, rate=130.5) == 1305

    def test_fractional_result_rounds_half_up(self):
        # 1.5 USD * 129 = 193.5
        assert convert_usd_to_kes(1.5) == 194

    def test_float_inputs_do_not_drift(self):
        # 1.005 * 100 is 100.49999999999999 in binary floating point
        assert convert_usd_to_kes(1.005, rate=100) == 101
