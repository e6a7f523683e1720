from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace as _dc_replace
from typing import Tuple

def _env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default

def _env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default

def _env_str(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v not in (None, "") else default

def _env_bool(key: str, default: bool = True) -> bool:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    return v.strip().lower() not in ("0", "false", "no", "off")

# order: [ma_slope, disparity, rsi14, roc12, volatility20]
DEFAULT_SIMILARITY_WEIGHTS: Tuple[float, ...] = (0.35, 0.40, 0.05, 0.07, 0.13)
DEFAULT_SIMILARITY_TOLERANCES: Tuple[float, ...] = (36.0, 90.0, 4.5, 40.0, 28.0)
WEIGHT_SUM_TOLERANCE = 1e-10

@dataclass(frozen=True)
class EngineConfig:
    # Data
    db_path: str = _env_str("TIER_DB_PATH", "market_data.db")
    price_table: str = _env_str("TIER_PRICE_TABLE", "daily_price")
    metrics_table: str = _env_str("TIER_METRICS_TABLE", "daily_metrics")
    cache_table: str = _env_str("TIER_CACHE_TABLE", "recommendation_cache")

    # Simulation
    initial_capital: float = _env_float("TIER_INITIAL_CAPITAL", 10_000_000.0)
    trading_days_per_year: int = _env_int("TIER_TRADING_DAYS_PER_YEAR", 252)

    # Analogue search / scoring
    analysis_window: int = _env_int("TIER_ANALYSIS_WINDOW", 20)
    performance_window: int = _env_int("TIER_PERFORMANCE_WINDOW", 20)
    min_gap_days: int = _env_int("TIER_MIN_GAP_DAYS", 40)
    top_k: int = _env_int("TIER_TOP_K", 3)
    min_candidates: int = _env_int("TIER_MIN_CANDIDATES", 3)
    # 0 disables; otherwise two selected analogues must be at least this many bars apart
    candidate_spacing: int = _env_int("TIER_CANDIDATE_SPACING", 0)
    match_orientation: bool = _env_bool("TIER_MATCH_ORIENTATION", False)
    adaptive_match_orientation: bool = _env_bool("TIER_ADAPTIVE_MATCH_ORIENTATION", True)
    mdd_weight: float = _env_float("TIER_MDD_WEIGHT", 0.01)
    similarity_weights: Tuple[float, ...] = DEFAULT_SIMILARITY_WEIGHTS
    similarity_tolerances: Tuple[float, ...] = DEFAULT_SIMILARITY_TOLERANCES
    max_workers: int = _env_int("TIER_MAX_WORKERS", 4)

    # Divergence
    divergence_window: int = _env_int("TIER_DIVERGENCE_WINDOW", 15)
    divergence_min_peak_distance: int = _env_int("TIER_DIVERGENCE_MIN_PEAK_DISTANCE", 3)
    divergence_price_tolerance: float = _env_float("TIER_DIVERGENCE_PRICE_TOLERANCE", -0.01)
    divergence_rsi_min_drop: float = _env_float("TIER_DIVERGENCE_RSI_MIN_DROP", 3.0)

    # Downgrade thresholds
    downgrade_rsi: float = _env_float("TIER_DOWNGRADE_RSI", 60.0)
    downgrade_disparity: float = _env_float("TIER_DOWNGRADE_DISPARITY", 20.0)

    # Logging
    log_level: str = _env_str("TIER_LOG_LEVEL", "INFO")

    def __post_init__(self) -> None:
        weights = tuple(float(w) for w in self.similarity_weights)
        tolerances = tuple(float(t) for t in self.similarity_tolerances)
        if len(weights) != 5 or len(tolerances) != 5:
            raise ValueError("similarity weights and tolerances must have 5 entries each")
        if abs(math.fsum(weights) - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"similarity weights must sum to 1.0 (got {math.fsum(weights)!r})")
        if any(t <= 0 for t in tolerances):
            raise ValueError("similarity tolerances must be positive")
        if self.top_k <= 0:
            raise ValueError("top_k must be positive")
        if self.performance_window < 2:
            raise ValueError("performance_window must be at least 2")
        object.__setattr__(self, "similarity_weights", weights)
        object.__setattr__(self, "similarity_tolerances", tolerances)

    def replace(self, **changes) -> "EngineConfig":
        """Return a copy with the given fields overridden (used by parameter sweeps)."""
        return _dc_replace(self, **changes)
