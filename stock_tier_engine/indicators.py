"""Technical indicators over an adjusted-close series.

Two forms are provided and must agree within 1e-6 wherever both are defined:

- naive, per index (`compute_snapshot`): every value is recomputed from
  `values[0..i]`;
- batch (`compute_snapshots`): prefix sums for the moving averages, Wilder
  state carried forward for RSI and a fixed 20-return window for volatility.

Units: ma_slope, disparity, roc12, golden_cross and volatility20 are percentages.
Fields needing more history than is available are None.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

MA_SHORT = 20
MA_LONG = 60
SLOPE_LOOKBACK = 10
RSI_PERIOD = 14
ROC_PERIOD = 12
VOL_PERIOD = 20
GOLDEN_CROSS_EPS = 1e-9

# first index at which every field is available
MIN_COMPLETE_INDEX = MA_LONG - 1

@dataclass(frozen=True)
class IndicatorSnapshot:
    ma20: Optional[float] = None
    ma60: Optional[float] = None
    ma_slope: Optional[float] = None
    disparity: Optional[float] = None
    rsi14: Optional[float] = None
    roc12: Optional[float] = None
    volatility20: Optional[float] = None
    golden_cross: Optional[float] = None
    is_golden_cross: Optional[bool] = None

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, f.name) is not None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

def is_golden_cross(ma20: float, ma60: float) -> bool:
    """ma20 above ma60 beyond float noise, so a flat series is never a golden cross."""
    return ma20 - ma60 > GOLDEN_CROSS_EPS * max(abs(ma60), 1.0)

def _pct_change(cur: Optional[float], base: Optional[float]) -> Optional[float]:
    if cur is None or base is None or base == 0:
        return None
    return (cur - base) / base * 100.0

# ---------------------------------------------------------------------------
# Naive (per index)
# ---------------------------------------------------------------------------

def sma_at(values: Sequence[float], period: int, index: int) -> Optional[float]:
    if index < period - 1 or index >= len(values):
        return None
    return math.fsum(values[index - period + 1 : index + 1]) / period

def rsi_at(values: Sequence[float], index: int, period: int = RSI_PERIOD) -> Optional[float]:
    """Wilder RSI: simple average of the first `period` deltas, then
    avg = (avg * (period - 1) + x) / period for every later delta."""
    if index < period or index >= len(values):
        return None
    gain = 0.0
    loss = 0.0
    for i in range(1, period + 1):
        d = values[i] - values[i - 1]
        if d > 0:
            gain += d
        else:
            loss -= d
    avg_gain = gain / period
    avg_loss = loss / period
    for i in range(period + 1, index + 1):
        d = values[i] - values[i - 1]
        avg_gain = (avg_gain * (period - 1) + (d if d > 0 else 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + (-d if d < 0 else 0.0)) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)

def roc_at(values: Sequence[float], index: int, period: int = ROC_PERIOD) -> Optional[float]:
    if index < period or index >= len(values):
        return None
    return _pct_change(values[index], values[index - period])

def volatility_at(values: Sequence[float], index: int, period: int = VOL_PERIOD) -> Optional[float]:
    """Sample stdev of the last `period` daily returns, times sqrt(period), in percent."""
    if index < period or index >= len(values):
        return None
    rets = []
    for i in range(index - period + 1, index + 1):
        prev = values[i - 1]
        if prev == 0:
            return None
        rets.append((values[i] - prev) / prev)
    mean = math.fsum(rets) / period
    var = math.fsum((r - mean) ** 2 for r in rets) / (period - 1)
    return math.sqrt(var) * math.sqrt(period) * 100.0

def compute_snapshot(values: Sequence[float], index: int) -> IndicatorSnapshot:
    if index < 0 or index >= len(values):
        return IndicatorSnapshot()
    ma20 = sma_at(values, MA_SHORT, index)
    ma60 = sma_at(values, MA_LONG, index)
    ma20_prev = sma_at(values, MA_SHORT, index - SLOPE_LOOKBACK) if index >= SLOPE_LOOKBACK else None

    golden = _pct_change(ma20, ma60)
    return IndicatorSnapshot(
        ma20=ma20,
        ma60=ma60,
        ma_slope=_pct_change(ma20, ma20_prev),
        disparity=_pct_change(values[index], ma20),
        rsi14=rsi_at(values, index),
        roc12=roc_at(values, index),
        volatility20=volatility_at(values, index),
        golden_cross=golden,
        is_golden_cross=is_golden_cross(ma20, ma60) if golden is not None else None,
    )

# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def rolling_sma(values: Sequence[float], period: int) -> np.ndarray:
    """Simple moving average aligned to each index (NaN until enough bars)."""
    arr = np.asarray(values, dtype=float)
    n = len(arr)
    out = np.full(n, np.nan)
    if n < period or period <= 0:
        return out
    cumsum = np.cumsum(arr)
    out[period - 1 :] = (cumsum[period - 1 :] - np.concatenate(([0.0], cumsum[: -period]))) / period
    return out

def wilder_rsi(values: Sequence[float], period: int = RSI_PERIOD) -> np.ndarray:
    """Wilder RSI for every index, state carried from index 0 (NaN before `period`)."""
    c = np.asarray(values, dtype=float)
    n = len(c)
    out = np.full(n, np.nan)
    if n < period + 1 or period <= 0:
        return out

    d = np.diff(c)
    gains = np.where(d > 0, d, 0.0)
    losses = np.where(d < 0, -d, 0.0)

    avg_gain = float(gains[:period].sum()) / period
    avg_loss = float(losses[:period].sum()) / period
    for i in range(period, n):
        if i > period:
            avg_gain = (avg_gain * (period - 1) + float(gains[i - 1])) / period
            avg_loss = (avg_loss * (period - 1) + float(losses[i - 1])) / period
        if avg_loss == 0:
            out[i] = 100.0
        else:
            out[i] = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    return out

def _window_sums(arr: np.ndarray, period: int) -> np.ndarray:
    """Sum of each full trailing window, aligned to the window's last element."""
    c = np.concatenate(([0.0], np.cumsum(arr)))
    return c[period:] - c[:-period]

def rolling_volatility(values: Sequence[float], period: int = VOL_PERIOD) -> np.ndarray:
    """Annualized sample stdev from running sums of returns and squared returns."""
    c = np.asarray(values, dtype=float)
    n = len(c)
    out = np.full(n, np.nan)
    if n < period + 1 or period <= 1:
        return out
    prev = c[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        rets = np.where(prev != 0, (c[1:] - prev) / prev, np.nan)
    bad = ~np.isfinite(rets)
    # variance is shift invariant; centring keeps the squared sums well conditioned
    shift = float(rets[~bad].mean()) if (~bad).any() else 0.0
    x = np.where(bad, 0.0, rets - shift)

    s1 = _window_sums(x, period)
    s2 = _window_sums(x * x, period)
    n_bad = _window_sums(bad.astype(float), period)
    var = np.maximum((s2 - s1 * s1 / period) / (period - 1), 0.0)
    vol = np.sqrt(var) * math.sqrt(period) * 100.0
    vol[n_bad > 0] = np.nan
    # window k covers returns ending at price index k + period
    out[period:] = vol
    return out

def _pct_change_arr(cur: np.ndarray, base: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(base != 0, (cur - base) / base * 100.0, np.nan)

def _opt(x: float) -> Optional[float]:
    return None if math.isnan(x) else float(x)

def compute_snapshots(values: Sequence[float], start: int = 0, end: Optional[int] = None) -> List[IndicatorSnapshot]:
    """Snapshots for indices [start, end), computed in one pass over the whole series.

    RSI state is always carried from index 0 regardless of `start`: Wilder
    smoothing depends on the entire prefix.
    """
    arr = np.asarray(values, dtype=float)
    n = len(arr)
    end = n if end is None else min(int(end), n)
    start = max(0, int(start))
    if start >= end:
        return []

    ma20 = rolling_sma(arr, MA_SHORT)
    ma60 = rolling_sma(arr, MA_LONG)
    ma20_prev = np.full(n, np.nan)
    ma20_prev[SLOPE_LOOKBACK:] = ma20[:-SLOPE_LOOKBACK]
    slope = _pct_change_arr(ma20, ma20_prev)
    disparity = _pct_change_arr(arr, ma20)
    golden = _pct_change_arr(ma20, ma60)
    rsi = wilder_rsi(arr)
    roc = np.full(n, np.nan)
    roc[ROC_PERIOD:] = _pct_change_arr(arr[ROC_PERIOD:], arr[:-ROC_PERIOD])
    vol = rolling_volatility(arr)

    out: List[IndicatorSnapshot] = []
    for i in range(start, end):
        g = _opt(golden[i])
        out.append(
            IndicatorSnapshot(
                ma20=_opt(ma20[i]),
                ma60=_opt(ma60[i]),
                ma_slope=_opt(slope[i]),
                disparity=_opt(disparity[i]),
                rsi14=_opt(rsi[i]),
                roc12=_opt(roc[i]),
                volatility20=_opt(vol[i]),
                golden_cross=g,
                is_golden_cross=is_golden_cross(float(ma20[i]), float(ma60[i])) if g is not None else None,
            )
        )
    return out
