from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .indicators import RSI_PERIOD, rsi_at

@dataclass(frozen=True)
class DivergenceResult:
    has_bearish_divergence: bool = False
    high_indices: List[int] = field(default_factory=list)
    price_highs: List[float] = field(default_factory=list)
    rsi_highs: List[float] = field(default_factory=list)

def find_local_highs(values: Sequence[float], start: int, end: int, min_distance: int) -> List[int]:
    """Indices strictly inside (start, end) that exceed both neighbours.

    Two highs closer than `min_distance` collapse into the higher one.
    """
    highs: List[int] = []
    lo = max(start + 1, 1)
    hi = min(end, len(values) - 1)
    for i in range(lo, hi):
        if values[i] > values[i - 1] and values[i] > values[i + 1]:
            if not highs or i - highs[-1] >= min_distance:
                highs.append(i)
            elif values[i] > values[highs[-1]]:
                highs[-1] = i
    return highs

def detect_bearish_divergence(
    values: Sequence[float],
    index: int,
    window: int = 15,
    min_peak_distance: int = 3,
    price_tolerance: float = -0.01,
    rsi_min_drop: float = 3.0,
    rsi: Optional[Sequence[float]] = None,
) -> DivergenceResult:
    """Bearish divergence over the trailing `window` bars ending at `index`.

    Price of the later high is at least (1 + price_tolerance) times the earlier
    high while its RSI sits at least `rsi_min_drop` points lower. Never raises:
    insufficient history or an out-of-range index simply yields no divergence.
    `rsi` may carry a precomputed per-index RSI series.
    """
    window_start = index - window + 1
    if window_start < RSI_PERIOD or index >= len(values):
        return DivergenceResult()

    highs = find_local_highs(values, window_start, index, min_peak_distance)
    if len(highs) < 2:
        return DivergenceResult()

    prev_i, recent_i = highs[-2], highs[-1]
    if rsi is not None:
        prev_rsi, recent_rsi = rsi[prev_i], rsi[recent_i]
    else:
        prev_rsi, recent_rsi = rsi_at(values, prev_i), rsi_at(values, recent_i)
    if prev_rsi is None or recent_rsi is None or prev_rsi != prev_rsi or recent_rsi != recent_rsi:
        return DivergenceResult()

    prev_price, recent_price = float(values[prev_i]), float(values[recent_i])
    price_ok = recent_price >= prev_price * (1.0 + price_tolerance)
    rsi_ok = recent_rsi <= prev_rsi - rsi_min_drop
    return DivergenceResult(
        has_bearish_divergence=bool(price_ok and rsi_ok),
        high_indices=[prev_i, recent_i],
        price_highs=[prev_price, recent_price],
        rsi_highs=[float(prev_rsi), float(recent_rsi)],
    )

def has_bearish_divergence(values: Sequence[float], index: int, **kwargs) -> bool:
    return detect_bearish_divergence(values, index, **kwargs).has_bearish_divergence
