"""Decimal order pricing.

All currency arithmetic goes through :class:`decimal.Decimal`; floats are
converted via their shortest repr (``Decimal(str(x))``) so that ``0.1`` becomes
``Decimal("0.1")`` and not its binary expansion.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, str, Decimal]

def to_decimal(x: Number) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if isinstance(x, float):
        return Decimal(repr(x))
    return Decimal(x)

def _quant(places: int) -> Decimal:
    return Decimal(1).scaleb(-int(places))

def floor_decimal(value: Number, places: int) -> Decimal:
    """Truncate toward zero at `places` decimals (the ROUND_DOWN mode)."""
    return to_decimal(value).quantize(_quant(places), rounding=ROUND_DOWN)

def round_half_up(value: Number, places: int) -> Decimal:
    return to_decimal(value).quantize(_quant(places), rounding=ROUND_HALF_UP)

def floor_to_float(value: Number, places: int) -> float:
    out = float(floor_decimal(value, places))
    return 0.0 if out == 0 else out

def round_to_float(value: Number, places: int) -> float:
    out = float(round_half_up(value, places))
    return 0.0 if out == 0 else out

def buy_limit_price(prev_close: Number, buy_threshold: Number) -> float:
    """LOC buy limit = floor(prev_close * (1 + threshold), 2)."""
    return float(floor_decimal(to_decimal(prev_close) * (1 + to_decimal(buy_threshold)), 2))

def sell_limit_price(fill_price: Number, sell_threshold: Number) -> float:
    """LOC sell target = floor(fill_price * (1 + threshold), 2)."""
    return float(floor_decimal(to_decimal(fill_price) * (1 + to_decimal(sell_threshold)), 2))

def buy_quantity(amount: Number, limit_price: Number) -> int:
    """Whole shares affordable at `limit_price`.

    Raises ValueError for a non-positive limit; a non-positive amount simply buys nothing.
    """
    limit = to_decimal(limit_price)
    if limit <= 0:
        raise ValueError(f"limit price must be positive (got {limit_price!r})")
    amt = to_decimal(amount)
    if amt <= 0:
        return 0
    return int((amt / limit).to_integral_value(rounding=ROUND_DOWN))

def should_fill_buy(close: Number, limit_price: Number) -> bool:
    return to_decimal(close) <= to_decimal(limit_price)

def should_fill_sell(close: Number, limit_price: Number) -> bool:
    return to_decimal(close) >= to_decimal(limit_price)
