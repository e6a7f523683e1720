from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from .pricing import Number, floor_to_float, to_decimal

def calc_return_rate(initial: Number, final: Number) -> float:
    """(final - initial) / initial, truncated to 4 places; 0 for a non-positive base."""
    base = to_decimal(initial)
    if base <= 0:
        return 0.0
    return floor_to_float((to_decimal(final) - base) / base, 4)

def calc_mdd(asset_values: Iterable[Number]) -> float:
    """Maximum drawdown as a non-positive fraction, truncated to 4 places."""
    peak: Decimal = Decimal(0)
    max_dd: Decimal = Decimal(0)
    first = True
    for v in asset_values:
        value = to_decimal(v)
        if first or value > peak:
            peak = value
            first = False
        if peak > 0:
            dd = (peak - value) / peak
            if dd > max_dd:
                max_dd = dd
    return floor_to_float(-max_dd, 4)

def calc_win_rate(profits: Sequence[Number]) -> float:
    if not profits:
        return 0.0
    wins = sum(1 for p in profits if to_decimal(p) > 0)
    return floor_to_float(Decimal(wins) / Decimal(len(profits)), 4)

def calc_cagr(initial: Number, final: Number, trading_days: int, days_per_year: int = 252) -> float:
    base = to_decimal(initial)
    if base <= 0 or trading_days <= 1:
        return 0.0
    ratio = to_decimal(final) / base
    if ratio <= 0:
        return -1.0
    growth = float(ratio) ** (float(days_per_year) / float(trading_days)) - 1.0
    return floor_to_float(growth, 4)
