from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .cache import CachedRecommendation, RecommendationCache
from .config import EngineConfig
from .downgrade import DowngradeResult, DowngradeRule, downgrade_from_rules, fired_rules, format_downgrade_reason
from .indicators import IndicatorSnapshot, compute_snapshot
from .prices import PricePoint, adj_closes
from .scoring import StrategyScore, evaluate_candidates, recommend_reason, score_strategies, select_strategy
from .similarity import CatalogueEntry, SimilarPeriodCandidate, build_catalogue, find_similar_periods
from .strategy import DEFAULT_STRATEGY, Strategy

logger = logging.getLogger(__name__)

# EngineConfig fields with no influence on what a recommendation says
_NON_RECOMMENDING_FIELDS = frozenset(
    {
        "db_path", "price_table", "metrics_table", "cache_table", "max_workers", "log_level",
        "match_orientation", "adaptive_match_orientation",
    }
)

def recommendation_variant(cfg: EngineConfig, match_orientation: bool) -> str:
    """Short stable digest of every setting that shapes a recommendation.

    Used as the cache variant so that one-off and adaptive requests, or runs with
    different similarity parameters, never read each other's entries.
    """
    settings = {k: v for k, v in asdict(cfg).items() if k not in _NON_RECOMMENDING_FIELDS}
    settings["match_orientation"] = bool(match_orientation)
    blob = json.dumps(settings, sort_keys=True)
    return hashlib.sha1(blob.encode("utf-8")).hexdigest()[:16]

@dataclass
class Recommendation:
    reference_date: str
    reference_index: int
    recommended_strategy: Strategy
    reason: str
    reference_indicators: IndicatorSnapshot
    analysis_start_date: Optional[str] = None
    top_candidates: List[SimilarPeriodCandidate] = field(default_factory=list)
    strategy_scores: List[StrategyScore] = field(default_factory=list)
    downgrade: Optional[DowngradeResult] = None
    fallback: bool = False
    cached: bool = False
    ticker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "reference_date": self.reference_date,
            "analysis_period": {"start_date": self.analysis_start_date, "end_date": self.reference_date},
            "reference_indicators": self.reference_indicators.to_dict(),
            "top_candidates": [
                {
                    "index": c.index,
                    "date": c.date,
                    "similarity": c.similarity,
                    "analysis_start_date": c.analysis_start_date,
                    "performance_start_date": c.performance_start_date,
                    "performance_end_date": c.performance_end_date,
                    "indicators": c.indicators.to_dict(),
                    "results": {s.value: asdict(r) for s, r in c.results.items()},
                    "failed": sorted(s.value for s in c.failed),
                }
                for c in self.top_candidates
            ],
            "strategy_scores": [
                {
                    "strategy": s.strategy.value,
                    "average_score": s.average_score,
                    "period_scores": [asdict(p) for p in s.period_scores],
                    "excluded": s.excluded,
                    "exclude_reason": s.exclude_reason,
                }
                for s in self.strategy_scores
            ],
            "recommended_strategy": self.recommended_strategy.value,
            "reason": self.reason,
            "downgrade": None
            if self.downgrade is None
            else {
                "strategy": self.downgrade.strategy.value,
                "applied": self.downgrade.applied,
                "original_strategy": self.downgrade.original_strategy.value if self.downgrade.original_strategy else None,
                "reasons": list(self.downgrade.reasons),
                "divergence_override": self.downgrade.divergence_override,
            },
            "fallback": self.fallback,
            "cached": self.cached,
        }

def _fallback(base: Recommendation, reason: str) -> Recommendation:
    logger.info("recommendation fallback on %s: %s", base.reference_date, reason)
    base.recommended_strategy = DEFAULT_STRATEGY
    base.reason = f"{reason}; using default {DEFAULT_STRATEGY.value}"
    base.fallback = True
    return base

def recommend(
    prices: Sequence[PricePoint],
    reference_index: int,
    config: Optional[EngineConfig] = None,
    *,
    catalogue: Optional[Sequence[CatalogueEntry]] = None,
    cache: Optional[RecommendationCache] = None,
    ticker: Optional[str] = None,
    match_orientation: Optional[bool] = None,
) -> Recommendation:
    """Recommend a strategy as of `prices[reference_index]`.

    Nothing after the reference bar is read. Analogue dates come from `catalogue`
    when given (e.g. precomputed rows), otherwise they are computed on the fly.
    Degrades to the default strategy, with a reason, when history or analogues
    are insufficient.
    """
    cfg = config or EngineConfig()
    if not 0 <= reference_index < len(prices):
        raise ValueError(f"reference index {reference_index} out of range (n={len(prices)})")
    orient = cfg.match_orientation if match_orientation is None else bool(match_orientation)

    ref_date = prices[reference_index].date
    variant = recommendation_variant(cfg, orient)
    if cache is not None and ticker:
        hit = cache.get(ticker, ref_date, variant)
        if hit is not None:
            logger.debug("cache hit %s %s [%s] -> %s", ticker, ref_date, variant, hit.strategy.value)
            return Recommendation(
                reference_date=ref_date,
                reference_index=reference_index,
                recommended_strategy=hit.strategy,
                reason=hit.reason,
                reference_indicators=hit.indicators,
                cached=True,
                ticker=ticker,
            )

    hist = prices[: reference_index + 1]
    values = adj_closes(hist)
    ref = compute_snapshot(values, reference_index)
    out = Recommendation(
        reference_date=ref_date,
        reference_index=reference_index,
        recommended_strategy=DEFAULT_STRATEGY,
        reason="",
        reference_indicators=ref,
        analysis_start_date=hist[max(0, reference_index - cfg.analysis_window + 1)].date,
        ticker=ticker,
    )
    result = _recommend(out, hist, values, ref, cfg, catalogue, orient)
    if cache is not None and ticker:
        cache.put(ticker, ref_date, CachedRecommendation(result.recommended_strategy, result.reason, ref), variant)
    return result

def _recommend(
    out: Recommendation,
    hist: Sequence[PricePoint],
    values: Sequence[float],
    ref: IndicatorSnapshot,
    cfg: EngineConfig,
    catalogue: Optional[Sequence[CatalogueEntry]],
    orient: bool,
) -> Recommendation:
    idx = out.reference_index
    if not ref.is_complete:
        return _fallback(out, "insufficient history for reference indicators")

    max_hist = idx - cfg.min_gap_days
    if catalogue is None:
        catalogue = build_catalogue(hist, end_index=max_hist) if max_hist >= 0 else []
    eligible = [e for e in catalogue if e.index <= max_hist]
    if len(eligible) < cfg.min_candidates:
        return _fallback(out, "not enough historical indicator snapshots")

    rules = fired_rules(ref, values, idx, cfg)
    override = DowngradeRule.BEARISH_DIVERGENCE in rules

    candidates = find_similar_periods(ref, idx, eligible, cfg, match_orientation=orient)
    evaluated = evaluate_candidates(hist, candidates, cfg)
    out.top_candidates = evaluated
    valid = [c for c in evaluated if c.is_valid]
    if len(valid) < cfg.min_candidates:
        return _fallback(out, "not enough analogue periods with a complete performance window")

    scores = score_strategies(valid, bool(ref.is_golden_cross), override, cfg)
    chosen = select_strategy(scores)
    dg = downgrade_from_rules(chosen, rules)

    out.strategy_scores = scores
    out.downgrade = dg
    out.recommended_strategy = dg.strategy
    out.reason = format_downgrade_reason(recommend_reason(chosen, scores), dg)
    return out
