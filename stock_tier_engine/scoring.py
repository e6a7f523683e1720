from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .backtester import run_backtest
from .config import EngineConfig
from .prices import PricePoint
from .pricing import floor_decimal, floor_to_float, to_decimal
from .similarity import PeriodResult, SimilarPeriodCandidate
from .strategy import DEFAULT_STRATEGY, Strategy, all_strategies, most_aggressive

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class PeriodScore:
    score: float
    return_rate: float  # percent
    mdd: float          # percent, non-positive

@dataclass(frozen=True)
class StrategyScore:
    strategy: Strategy
    period_scores: List[PeriodScore] = field(default_factory=list)
    average_score: float = 0.0
    excluded: bool = False
    exclude_reason: Optional[str] = None

def _run_period(window: Sequence[PricePoint], strategy: Strategy, cfg: EngineConfig) -> PeriodResult:
    res = run_backtest(window, strategy, cfg.initial_capital, config=cfg, with_indicators=False)
    return PeriodResult(return_rate=res.return_rate, mdd=res.mdd)

def evaluate_candidates(
    prices: Sequence[PricePoint],
    candidates: Sequence[SimilarPeriodCandidate],
    cfg: Optional[EngineConfig] = None,
    strategies: Sequence[Strategy] = (),
) -> List[SimilarPeriodCandidate]:
    """Backtest every (candidate, strategy) pair over the bars right after the candidate.

    Pairs are independent and run on a thread pool when `cfg.max_workers > 1`;
    results are merged by key so completion order never affects the outcome. A
    pair that raises is logged and marks its candidate failed for that strategy;
    a candidate without a full performance window fails for every strategy.
    """
    cfg = cfg or EngineConfig()
    strategies = tuple(strategies) or all_strategies()
    pw = cfg.performance_window

    windows: Dict[int, Sequence[PricePoint]] = {}
    jobs: List[Tuple[int, Strategy]] = []
    for c in candidates:
        window = prices[c.index + 1 : c.index + 1 + pw]
        if len(window) < pw:
            continue
        windows[c.index] = window
        jobs.extend((c.index, s) for s in strategies)

    results: Dict[Tuple[int, Strategy], PeriodResult] = {}
    failed: Set[Tuple[int, Strategy]] = set()

    def _record(key: Tuple[int, Strategy], fn) -> None:
        try:
            results[key] = fn()
        except (ValueError, ArithmeticError) as e:
            logger.warning("candidate backtest failed idx=%s strategy=%s: %s", key[0], key[1].value, e)
            failed.add(key)

    if cfg.max_workers > 1 and len(jobs) > 1:
        with ThreadPoolExecutor(max_workers=cfg.max_workers) as ex:
            futures = {ex.submit(_run_period, windows[idx], s, cfg): (idx, s) for idx, s in jobs}
            for fut in as_completed(futures):
                _record(futures[fut], fut.result)
    else:
        for idx, s in jobs:
            _record((idx, s), lambda idx=idx, s=s: _run_period(windows[idx], s, cfg))

    out: List[SimilarPeriodCandidate] = []
    for c in candidates:
        if c.index not in windows:
            out.append(replace(c, failed=frozenset(strategies)))
            continue
        window = windows[c.index]
        analysis_start = max(0, c.index - cfg.analysis_window + 1)
        out.append(
            replace(
                c,
                analysis_start_date=prices[analysis_start].date,
                performance_start_date=window[0].date,
                performance_end_date=window[-1].date,
                results={s: results[(c.index, s)] for s in strategies if (c.index, s) in results},
                failed=frozenset(s for s in strategies if (c.index, s) in failed),
            )
        )
    return out

def period_score(result: PeriodResult, mdd_weight: float = 0.01) -> PeriodScore:
    """return% * exp(mdd% * weight), every factor truncated to 4 places."""
    ret_pct = floor_decimal(to_decimal(result.return_rate) * 100, 4)
    mdd_pct = floor_decimal(to_decimal(result.mdd) * 100, 4)
    score = ret_pct * (mdd_pct * to_decimal(mdd_weight)).exp()
    return PeriodScore(
        score=floor_to_float(score, 4),
        return_rate=floor_to_float(ret_pct, 4),
        mdd=floor_to_float(mdd_pct, 4),
    )

def score_strategies(
    candidates: Sequence[SimilarPeriodCandidate],
    is_golden_cross: bool,
    divergence_override: bool = False,
    cfg: Optional[EngineConfig] = None,
) -> List[StrategyScore]:
    """Similarity-weighted average score per strategy over the valid candidates.

    In golden-cross orientation the most aggressive strategy is excluded, unless
    a bearish divergence is active at the reference date.
    """
    cfg = cfg or EngineConfig()
    valid = [c for c in candidates if c.is_valid]
    excluded_strategy = most_aggressive() if (is_golden_cross and not divergence_override) else None

    out: List[StrategyScore] = []
    for s in all_strategies():
        per = [period_score(c.results[s], cfg.mdd_weight) for c in valid]
        weighted = Decimal(0)
        sim_sum = Decimal(0)
        for c, ps in zip(valid, per):
            sim = to_decimal(c.similarity)
            weighted += to_decimal(ps.score) * sim
            sim_sum += sim
        avg = floor_to_float(weighted / sim_sum, 4) if sim_sum > 0 else 0.0
        excluded = s == excluded_strategy
        out.append(
            StrategyScore(
                strategy=s,
                period_scores=per,
                average_score=avg,
                excluded=excluded,
                exclude_reason="excluded in golden-cross alignment" if excluded else None,
            )
        )
    return out

def select_strategy(scores: Sequence[StrategyScore]) -> Strategy:
    """Highest average among non-excluded strategies; the earlier one wins ties."""
    best: Optional[StrategyScore] = None
    for s in scores:
        if s.excluded:
            continue
        if best is None or s.average_score > best.average_score:
            best = s
    return best.strategy if best is not None else DEFAULT_STRATEGY

def recommend_reason(strategy: Strategy, scores: Sequence[StrategyScore]) -> str:
    for s in scores:
        if s.strategy == strategy:
            return f"highest average score {s.average_score:.2f}"
    return f"{strategy.value} recommended"
