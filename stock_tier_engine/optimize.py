"""Similarity parameter search.

Random weight/tolerance sets are evaluated with the adaptive backtest, then the
best few are refined with small random variations. Every evaluation runs on its
own EngineConfig; the caller's config is never touched.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .adaptive import run_adaptive_backtest
from .config import WEIGHT_SUM_TOLERANCE, EngineConfig
from .prices import PricePoint
from .pricing import round_half_up, round_to_float, to_decimal
from .similarity import CatalogueEntry, build_catalogue

logger = logging.getLogger(__name__)

METRIC_COUNT = 5
WEIGHT_RANGE: Tuple[float, float] = (0.01, 0.5)
# order: [ma_slope, disparity, rsi14, roc12, volatility20]
TOLERANCE_RANGES: Tuple[Tuple[float, float], ...] = (
    (10.0, 100.0),
    (30.0, 200.0),
    (1.0, 20.0),
    (10.0, 100.0),
    (10.0, 80.0),
)
VARIATION_RANGE = 0.1
MAX_ATTEMPTS_PER_SET = 1000

@dataclass(frozen=True)
class SimilarityParams:
    weights: Tuple[float, ...]
    tolerances: Tuple[float, ...]

    def apply(self, cfg: EngineConfig) -> EngineConfig:
        return cfg.replace(similarity_weights=tuple(self.weights), similarity_tolerances=tuple(self.tolerances))

    def to_dict(self) -> Dict[str, Any]:
        return {"weights": list(self.weights), "tolerances": list(self.tolerances)}

@dataclass(frozen=True)
class OptimizationMetrics:
    return_rate: float
    mdd: float
    strategy_score: float
    total_cycles: int
    win_rate: float

@dataclass(frozen=True)
class RankedCandidate:
    rank: int
    params: SimilarityParams
    metrics: OptimizationMetrics
    # deltas against the baseline; a positive mdd delta is a shallower drawdown
    improvement: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "params": self.params.to_dict(),
            "metrics": asdict(self.metrics),
            "improvement": dict(self.improvement),
        }

@dataclass(frozen=True)
class OptimizationSummary:
    total_combinations: int
    execution_time_ms: int
    baseline_score: float
    best_score: Optional[float]
    improvement_percent: float

@dataclass
class OptimizationResult:
    baseline_params: SimilarityParams
    baseline: OptimizationMetrics
    candidates: List[RankedCandidate]
    summary: OptimizationSummary

    @property
    def best_candidate(self) -> Optional[RankedCandidate]:
        return self.candidates[0] if self.candidates else None

    def to_dict(self, limit: Optional[int] = None) -> Dict[str, Any]:
        ranked = self.candidates if limit is None else self.candidates[:limit]
        best = self.best_candidate
        return {
            "baseline": {"params": self.baseline_params.to_dict(), "metrics": asdict(self.baseline)},
            "best_candidate": None if best is None else best.to_dict(),
            "candidates": [c.to_dict() for c in ranked],
            "summary": asdict(self.summary),
        }

# ---------------------------------------------------------------------------
# Parameter generation
# ---------------------------------------------------------------------------

def normalize_weights(weights: Sequence[float]) -> Tuple[float, ...]:
    """Scale to a sum of exactly 1, lifting every weight to at least the range minimum.

    Raises ValueError unless there are exactly five weights. All-zero input
    yields equal weights.
    """
    if len(weights) != METRIC_COUNT:
        raise ValueError(f"expected {METRIC_COUNT} weights (got {len(weights)})")
    ws = [to_decimal(float(w)) for w in weights]
    total = sum(ws, Decimal(0))
    if total == 0:
        return tuple(1.0 / METRIC_COUNT for _ in range(METRIC_COUNT))

    lo = to_decimal(WEIGHT_RANGE[0])
    normalized = [w / total for w in ws]
    deficit = sum((lo - w for w in normalized if w < lo), Decimal(0))
    n_above = sum(1 for w in normalized if w >= lo)
    adjusted = [max(w, lo) for w in normalized]
    if deficit > 0 and n_above > 0:
        per = deficit / n_above
        adjusted = [max(w - per, lo) if w > lo else w for w in adjusted]

    final = sum(adjusted, Decimal(0))
    out = [round_half_up(w / final, 10) for w in adjusted]
    # rounding residue goes to the last weight
    out[-1] = round_half_up(out[-1] + (Decimal(1) - sum(out, Decimal(0))), 10)
    return tuple(float(w) for w in out)

def validate_params(params: SimilarityParams) -> bool:
    w, t = params.weights, params.tolerances
    if len(w) != METRIC_COUNT or len(t) != METRIC_COUNT:
        return False
    if abs(math.fsum(w) - 1.0) > WEIGHT_SUM_TOLERANCE:
        return False
    if any(x < WEIGHT_RANGE[0] or x > WEIGHT_RANGE[1] for x in w):
        return False
    return all(lo <= x <= hi for x, (lo, hi) in zip(t, TOLERANCE_RANGES))

def _tolerance(value: float, index: int) -> float:
    lo, hi = TOLERANCE_RANGES[index]
    return round_to_float(min(max(value, lo), hi), 2)

def _draw(make, count: int, rng: np.random.Generator) -> List[SimilarityParams]:
    out: List[SimilarityParams] = []
    attempts = 0
    while len(out) < count:
        attempts += 1
        if attempts > count * MAX_ATTEMPTS_PER_SET:
            raise ValueError(f"could not generate {count} valid parameter sets")
        p = make(rng)
        if validate_params(p):
            out.append(p)
    return out

def generate_random_params(count: int, rng: Optional[np.random.Generator] = None) -> List[SimilarityParams]:
    """`count` valid parameter sets drawn uniformly from the search ranges."""
    rng = rng if rng is not None else np.random.default_rng()

    def make(r: np.random.Generator) -> SimilarityParams:
        weights = normalize_weights([float(r.uniform(*WEIGHT_RANGE)) for _ in range(METRIC_COUNT)])
        tolerances = tuple(_tolerance(float(r.uniform(lo, hi)), i) for i, (lo, hi) in enumerate(TOLERANCE_RANGES))
        return SimilarityParams(weights, tolerances)

    return _draw(make, count, rng)

def generate_variations(
    base: SimilarityParams, count: int, rng: Optional[np.random.Generator] = None
) -> List[SimilarityParams]:
    """`count` valid sets with every value moved at most VARIATION_RANGE (relative) from `base`."""
    rng = rng if rng is not None else np.random.default_rng()

    def jitter(r: np.random.Generator, value: float) -> float:
        return float(r.uniform(value * (1 - VARIATION_RANGE), value * (1 + VARIATION_RANGE)))

    def make(r: np.random.Generator) -> SimilarityParams:
        raw = [min(max(jitter(r, w), WEIGHT_RANGE[0]), WEIGHT_RANGE[1]) for w in base.weights]
        tolerances = tuple(_tolerance(jitter(r, t), i) for i, t in enumerate(base.tolerances))
        return SimilarityParams(normalize_weights(raw), tolerances)

    return _draw(make, count, rng)

# ---------------------------------------------------------------------------
# Evaluation and ranking
# ---------------------------------------------------------------------------

def strategy_score(return_rate: float, mdd: float, mdd_weight: float = 0.01) -> float:
    """return_rate * exp(mdd * weight), rounded half-up to 6 places."""
    score = to_decimal(return_rate) * (to_decimal(mdd) * to_decimal(mdd_weight)).exp()
    return round_to_float(score, 6)

def evaluate_params(
    prices: Sequence[PricePoint],
    params: SimilarityParams,
    config: EngineConfig,
    *,
    start_index: int = 0,
    initial_capital: Optional[float] = None,
    catalogue: Optional[Sequence[CatalogueEntry]] = None,
) -> OptimizationMetrics:
    cfg = params.apply(config)
    res = run_adaptive_backtest(prices, initial_capital, start_index=start_index, config=cfg, catalogue=catalogue)
    return OptimizationMetrics(
        return_rate=res.return_rate,
        mdd=res.mdd,
        strategy_score=strategy_score(res.return_rate, res.mdd, cfg.mdd_weight),
        total_cycles=res.total_cycles,
        win_rate=res.win_rate,
    )

def _rank_key(item: Tuple[SimilarityParams, OptimizationMetrics]) -> Tuple[float, float]:
    m = item[1]
    return (-m.strategy_score, -m.mdd)

def _delta(a: float, b: float) -> float:
    return round_to_float(to_decimal(a) - to_decimal(b), 6)

def analyze_results(
    baseline_params: SimilarityParams,
    baseline: OptimizationMetrics,
    evaluated: Sequence[Tuple[SimilarityParams, OptimizationMetrics]],
    execution_time_ms: int = 0,
) -> OptimizationResult:
    """Rank by strategy score (ties: shallower drawdown, then evaluation order)."""
    ordered = sorted(evaluated, key=_rank_key)
    ranked = [
        RankedCandidate(
            rank=i + 1,
            params=p,
            metrics=m,
            improvement={
                "return_rate": _delta(m.return_rate, baseline.return_rate),
                "mdd": _delta(m.mdd, baseline.mdd),
                "strategy_score": _delta(m.strategy_score, baseline.strategy_score),
            },
        )
        for i, (p, m) in enumerate(ordered)
    ]
    best_score = ranked[0].metrics.strategy_score if ranked else None
    if best_score is None or baseline.strategy_score == 0:
        improvement = 0.0
    else:
        base = to_decimal(baseline.strategy_score)
        improvement = round_to_float((to_decimal(best_score) - base) / base * 100, 2)
    summary = OptimizationSummary(
        total_combinations=len(evaluated),
        execution_time_ms=int(execution_time_ms),
        baseline_score=baseline.strategy_score,
        best_score=best_score,
        improvement_percent=improvement,
    )
    return OptimizationResult(baseline_params, baseline, ranked, summary)

def optimize(
    prices: Sequence[PricePoint],
    config: Optional[EngineConfig] = None,
    *,
    start_index: int = 0,
    initial_capital: Optional[float] = None,
    random_count: int = 50,
    variations_per_top: int = 10,
    top_candidates: int = 3,
    seed: Optional[int] = None,
    catalogue: Optional[Sequence[CatalogueEntry]] = None,
) -> OptimizationResult:
    """Search similarity weights/tolerances for the best adaptive backtest.

    The config's own parameters are the baseline. `random_count` random sets are
    evaluated, then `variations_per_top` variations of each of the best
    `top_candidates`. Runs never use a recommendation cache.
    """
    cfg = config or EngineConfig()
    if random_count < 0 or variations_per_top < 0 or top_candidates < 0:
        raise ValueError("combination counts must not be negative")
    if len(prices) - max(0, int(start_index)) < 2:
        raise ValueError("at least 2 price points are required")
    rng = np.random.default_rng(seed)
    started = time.perf_counter()
    if catalogue is None:
        catalogue = build_catalogue(prices)

    def run(p: SimilarityParams) -> OptimizationMetrics:
        m = evaluate_params(prices, p, cfg, start_index=start_index, initial_capital=initial_capital, catalogue=catalogue)
        logger.debug("weights=%s tolerances=%s -> score %s", p.weights, p.tolerances, m.strategy_score)
        return m

    baseline_params = SimilarityParams(cfg.similarity_weights, cfg.similarity_tolerances)
    baseline = run(baseline_params)
    logger.info("baseline score %s (return %s, mdd %s)", baseline.strategy_score, baseline.return_rate, baseline.mdd)

    evaluated: List[Tuple[SimilarityParams, OptimizationMetrics]] = []
    for p in generate_random_params(random_count, rng):
        evaluated.append((p, run(p)))
    logger.info("evaluated %d random parameter sets", random_count)

    top = sorted(evaluated, key=_rank_key)[:top_candidates]
    for base, _ in top:
        for p in generate_variations(base, variations_per_top, rng):
            evaluated.append((p, run(p)))
    logger.info("evaluated %d variations", len(evaluated) - random_count)

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return analyze_results(baseline_params, baseline, evaluated, elapsed_ms)
