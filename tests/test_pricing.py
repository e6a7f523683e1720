"""
Tests for decimal order pricing
"""

from decimal import Decimal

import pytest

from stock_tier_engine.pricing import (
    buy_limit_price,
    buy_quantity,
    floor_decimal,
    round_half_up,
    sell_limit_price,
    should_fill_buy,
    should_fill_sell,
    to_decimal,
)


class TestRounding:
    def test_float_converts_through_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_floor_truncates(self):
        assert floor_decimal(1.239, 2) == Decimal("1.23")
        assert floor_decimal(-1.239, 2) == Decimal("-1.23")
        assert floor_decimal(5, 2) == Decimal("5.00")

    def test_round_half_up(self):
        assert round_half_up(1.235, 2) == Decimal("1.24")
        assert round_half_up(1.234, 2) == Decimal("1.23")


class TestLimitPrices:
    def test_buy_limit_below_previous_close(self):
        """prevClose=100, threshold=-0.0001 -> 99.99"""
        assert buy_limit_price(100, -0.0001) == 99.99

    def test_sell_limit_floors(self):
        """99 * 1.015 = 100.485 floors to 100.48"""
        assert sell_limit_price(99, 0.015) == 100.48

    def test_sell_limit_tiny_threshold(self):
        assert sell_limit_price(99, 0.0001) == 99.00


class TestQuantity:
    def test_floor_quantity(self):
        assert buy_quantity(1000, 99.99) == 10

    def test_non_positive_amount_buys_nothing(self):
        assert buy_quantity(0, 10) == 0
        assert buy_quantity(-5, 10) == 0

    @pytest.mark.parametrize("limit", [0, -1, -0.01])
    def test_non_positive_limit_raises(self, limit):
        with pytest.raises(ValueError):
            buy_quantity(1000, limit)


class TestFillPredicates:
    def test_buy_fills_at_or_below_limit(self):
        assert should_fill_buy(99.99, 99.99)
        assert should_fill_buy(99.0, 99.99)
        assert not should_fill_buy(100.0, 99.99)

    def test_sell_fills_at_or_above_limit(self):
        assert should_fill_sell(100.48, 100.48)
        assert should_fill_sell(101.0, 100.48)
        assert not should_fill_sell(100.47, 100.48)
