from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .backtester import (
    BacktestResult,
    CycleSummary,
    DailySnapshot,
    attempt_buy,
    close_cycle,
    ma_series,
    settle_exits,
    summarize,
    take_snapshot,
)
from .cache import RecommendationCache
from .config import EngineConfig
from .cycle import CycleState
from .metrics import calc_return_rate
from .prices import PricePoint
from .pricing import floor_to_float, to_decimal
from .recommender import Recommendation, recommend
from .similarity import CatalogueEntry, build_catalogue
from .strategy import DEFAULT_STRATEGY, Strategy, all_strategies, get_strategy

logger = logging.getLogger(__name__)

@dataclass
class CycleStrategyInfo:
    cycle_number: int
    strategy: Strategy
    start_date: str
    initial_capital: float
    reason: str
    start_rsi: Optional[float] = None
    is_golden_cross: Optional[bool] = None
    end_date: Optional[str] = None
    final_asset: Optional[float] = None
    return_rate: Optional[float] = None
    mdd: float = 0.0

@dataclass
class StrategyUsage:
    cycles: int = 0
    days: int = 0

@dataclass
class AdaptiveResult(BacktestResult):
    cycle_strategies: List[CycleStrategyInfo] = field(default_factory=list)
    strategy_stats: Dict[Strategy, StrategyUsage] = field(default_factory=dict)

    def to_dict(self, include_history: bool = True) -> Dict[str, Any]:
        out = super().to_dict(include_history=include_history)
        out["cycle_strategies"] = [
            {**asdict(c), "strategy": c.strategy.value} for c in self.cycle_strategies
        ]
        out["strategy_stats"] = {s.value: asdict(u) for s, u in self.strategy_stats.items()}
        return out

class _Advisor:
    """Memoised "as of yesterday" recommendations over one price series."""

    def __init__(
        self,
        prices: Sequence[PricePoint],
        cfg: EngineConfig,
        catalogue: Sequence[CatalogueEntry],
        cache: Optional[RecommendationCache],
        ticker: Optional[str],
    ):
        self.prices = prices
        self.cfg = cfg
        self.catalogue = catalogue
        self.cache = cache
        self.ticker = ticker
        self._memo: Dict[int, Recommendation] = {}

    def as_of(self, index: int) -> Optional[Recommendation]:
        if index < 0:
            return None
        if index not in self._memo:
            self._memo[index] = recommend(
                self.prices,
                index,
                self.cfg,
                catalogue=self.catalogue,
                cache=self.cache,
                ticker=self.ticker,
                match_orientation=self.cfg.adaptive_match_orientation,
            )
        return self._memo[index]

def _choice(rec: Optional[Recommendation]) -> tuple:
    if rec is None:
        return DEFAULT_STRATEGY, f"no history before start; using default {DEFAULT_STRATEGY.value}", None, None
    ind = rec.reference_indicators
    return rec.recommended_strategy, rec.reason, ind.rsi14, ind.is_golden_cross

def run_adaptive_backtest(
    prices: Sequence[PricePoint],
    initial_capital: Optional[float] = None,
    start_index: int = 0,
    config: Optional[EngineConfig] = None,
    *,
    ticker: Optional[str] = None,
    cache: Optional[RecommendationCache] = None,
    catalogue: Optional[Sequence[CatalogueEntry]] = None,
) -> AdaptiveResult:
    """Backtest that re-picks its strategy at every cycle start.

    The choice for day i only uses bars up to i-1. While the running cycle has
    not traded yet the choice is refreshed daily. Bars before `start_index` serve
    as history for the recommendations.
    """
    cfg = config or EngineConfig()
    start_index = max(0, int(start_index))
    if len(prices) - start_index < 2:
        raise ValueError("at least 2 price points are required")
    capital = cfg.initial_capital if initial_capital is None else float(initial_capital)
    if catalogue is None:
        catalogue = build_catalogue(prices)
    advisor = _Advisor(prices, cfg, catalogue, cache, ticker)

    strategy, reason, rsi, golden = _choice(advisor.as_of(start_index - 1))
    cycle = CycleState(capital, get_strategy(strategy), prices[start_index].date)
    stats: Dict[Strategy, StrategyUsage] = {s: StrategyUsage() for s in all_strategies()}
    info = CycleStrategyInfo(1, strategy, prices[start_index].date, capital, reason, rsi, golden)
    infos: List[CycleStrategyInfo] = [info]
    stats[strategy].cycles += 1
    stats[strategy].days += 1

    ma20, ma60 = ma_series(prices)
    history: List[DailySnapshot] = [
        take_snapshot(cycle, prices[start_index], [], [], strategy=strategy.value, ma20=ma20[start_index], ma60=ma60[start_index])
    ]
    completed: List[CycleSummary] = []
    peak = to_decimal(capital)
    cycle_mdd = to_decimal(0)

    for i in range(start_index + 1, len(prices)):
        prev, cur = prices[i - 1], prices[i]

        if not cycle.has_traded:
            strategy, reason, rsi, golden = _choice(advisor.as_of(i - 1))
            if strategy != cycle.strategy.name:
                logger.debug("%s: switching %s -> %s", cur.date, cycle.strategy.name.value, strategy.value)
                cycle.set_strategy(get_strategy(strategy))
            info.strategy, info.start_date, info.reason = strategy, cur.date, reason
            info.start_rsi, info.is_golden_cross = rsi, golden

        trades, orders = settle_exits(cycle, cur, i)

        if cycle.is_complete():
            summary = close_cycle(cycle, cur)
            completed.append(summary)
            info.end_date = cur.date
            info.final_asset = summary.final_cash
            info.return_rate = calc_return_rate(info.initial_capital, summary.final_cash)
            info.mdd = floor_to_float(cycle_mdd, 4)

            strategy, reason, rsi, golden = _choice(advisor.as_of(i - 1))
            cycle.set_strategy(get_strategy(strategy))
            cycle.start_new_cycle(cur.date)
            info = CycleStrategyInfo(cycle.cycle_number, strategy, cur.date, cycle.cycle_initial_capital, reason, rsi, golden)
            infos.append(info)
            stats[strategy].cycles += 1
            peak = to_decimal(cycle.cycle_initial_capital)
            cycle_mdd = to_decimal(0)

        stats[cycle.strategy.name].days += 1
        buy_trades, buy_orders = attempt_buy(cycle, prev, cur, i)
        trades.extend(buy_trades)
        orders.extend(buy_orders)
        snap = take_snapshot(cycle, cur, trades, orders, strategy=cycle.strategy.name.value, ma20=ma20[i], ma60=ma60[i])
        history.append(snap)

        total = to_decimal(snap.total_asset)
        if total > peak:
            peak = total
        if peak > 0:
            dd = (total - peak) / peak
            if dd < cycle_mdd:
                cycle_mdd = dd

    if info.end_date is None:
        info.final_asset = history[-1].total_asset
        info.return_rate = calc_return_rate(info.initial_capital, info.final_asset)
        info.mdd = floor_to_float(cycle_mdd, 4)

    base = summarize("adaptive", prices, start_index, capital, cycle, history, completed, cfg, True)
    return AdaptiveResult(**{f: getattr(base, f) for f in base.__dataclass_fields__}, cycle_strategies=infos, strategy_stats=stats)
