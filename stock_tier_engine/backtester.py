from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import EngineConfig
from .cycle import CycleState
from .indicators import IndicatorSnapshot, compute_snapshot, rolling_sma
from .metrics import calc_cagr, calc_mdd, calc_return_rate, calc_win_rate
from .prices import PricePoint, adj_closes
from .pricing import (
    buy_limit_price,
    buy_quantity,
    floor_to_float,
    round_to_float,
    should_fill_buy,
    should_fill_sell,
    to_decimal,
)
from .strategy import Strategy, StrategyConfig, get_strategy

logger = logging.getLogger(__name__)

class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    STOP_LOSS = "STOP_LOSS"

class OrderType(str, Enum):
    LOC = "LOC"  # limit-on-close
    MOC = "MOC"  # market-on-close

@dataclass(frozen=True)
class TradeAction:
    type: TradeType
    tier: int
    price: float
    shares: int
    amount: float
    order_type: OrderType

@dataclass(frozen=True)
class OrderAction:
    type: TradeType
    tier: int
    limit_price: Optional[float]
    shares: int
    amount: float
    order_type: OrderType
    executed: bool
    executed_price: Optional[float] = None
    executed_amount: Optional[float] = None
    reason: Optional[str] = None

@dataclass(frozen=True)
class DailySnapshot:
    date: str
    open: float
    high: float
    low: float
    close: float
    adj_close: float
    cash: float
    holdings_value: float
    total_asset: float
    trades: List[TradeAction]
    orders: List[OrderAction]
    active_tiers: int
    cycle_number: int
    strategy: Optional[str] = None
    ma20: Optional[float] = None
    ma60: Optional[float] = None

@dataclass(frozen=True)
class CycleSummary:
    cycle_number: int
    strategy: str
    start_date: str
    end_date: str
    initial_capital: float
    final_cash: float
    profit: float
    return_rate: float

@dataclass(frozen=True)
class RemainingTier:
    tier: int
    shares: int
    buy_price: float
    buy_date: str
    current_price: float
    current_value: float
    profit_loss: float
    return_rate: float

@dataclass
class BacktestResult:
    strategy: str
    start_date: str
    end_date: str
    initial_capital: float
    final_asset: float
    return_rate: float
    cagr: float
    mdd: float
    total_cycles: int
    win_rate: float
    daily_history: List[DailySnapshot] = field(default_factory=list)
    remaining_tiers: List[RemainingTier] = field(default_factory=list)
    completed_cycles: List[CycleSummary] = field(default_factory=list)
    end_indicators: Optional[IndicatorSnapshot] = None

    def to_dict(self, include_history: bool = True) -> Dict[str, Any]:
        out = asdict(self)
        if not include_history:
            out.pop("daily_history", None)
        return out

# ---------------------------------------------------------------------------
# Day-step helpers (shared with the adaptive engine)
# ---------------------------------------------------------------------------

def _amount(price: Any, shares: int) -> float:
    return round_to_float(to_decimal(price) * shares, 2)

def settle_exits(cycle: CycleState, price: PricePoint, day_index: int) -> Tuple[List[TradeAction], List[OrderAction]]:
    """Stop-losses at the close (MOC), then LOC sells for whatever is still held.

    The stop-loss set is captured from the active tiers before anything is closed,
    so a tier hit by the stop is never also offered to the limit sell.
    """
    trades: List[TradeAction] = []
    orders: List[OrderAction] = []
    if cycle.active_tiers():
        cycle.increment_day()

    for t in cycle.stop_loss_tiers(day_index):
        cycle.deactivate_tier(t.tier, price.close)
        amount = _amount(price.close, t.shares)
        trades.append(TradeAction(TradeType.STOP_LOSS, t.tier, price.close, t.shares, amount, OrderType.MOC))
        orders.append(
            OrderAction(
                TradeType.STOP_LOSS, t.tier, None, t.shares, amount, OrderType.MOC,
                executed=True, executed_price=price.close, executed_amount=amount,
            )
        )

    for t in cycle.active_tiers():
        order_amount = _amount(t.sell_limit_price, t.shares)
        if should_fill_sell(price.close, t.sell_limit_price):
            cycle.deactivate_tier(t.tier, price.close)
            amount = _amount(price.close, t.shares)
            trades.append(TradeAction(TradeType.SELL, t.tier, price.close, t.shares, amount, OrderType.LOC))
            orders.append(
                OrderAction(
                    TradeType.SELL, t.tier, t.sell_limit_price, t.shares, order_amount, OrderType.LOC,
                    executed=True, executed_price=price.close, executed_amount=amount,
                )
            )
        else:
            orders.append(
                OrderAction(
                    TradeType.SELL, t.tier, t.sell_limit_price, t.shares, order_amount, OrderType.LOC,
                    executed=False, reason=f"close {price.close} < sell limit {t.sell_limit_price}",
                )
            )
    return trades, orders

def close_cycle(cycle: CycleState, price: PricePoint) -> CycleSummary:
    initial = cycle.cycle_initial_capital
    final_cash = cycle.cash
    profit = round_to_float(cycle.cash_decimal - to_decimal(initial), 2)
    return CycleSummary(
        cycle_number=cycle.cycle_number,
        strategy=cycle.strategy.name.value,
        start_date=cycle.start_date,
        end_date=price.date,
        initial_capital=initial,
        final_cash=final_cash,
        profit=profit,
        return_rate=calc_return_rate(initial, final_cash),
    )

def roll_cycle(cycle: CycleState, price: PricePoint) -> Optional[CycleSummary]:
    """Close a completed cycle and open the next one on the same day."""
    if not cycle.is_complete():
        return None
    summary = close_cycle(cycle, price)
    cycle.start_new_cycle(price.date)
    logger.debug("cycle %d closed on %s profit=%s", summary.cycle_number, price.date, summary.profit)
    return summary

def attempt_buy(
    cycle: CycleState,
    prev_price: PricePoint,
    price: PricePoint,
    day_index: int,
) -> Tuple[List[TradeAction], List[OrderAction]]:
    tier = cycle.next_buy_tier()
    if tier is None:
        return [], []
    limit = buy_limit_price(prev_price.close, cycle.strategy.buy_threshold)
    if limit <= 0:
        return [], []
    shares = buy_quantity(cycle.tier_amount(tier), limit)
    if shares == 0:
        return [], []

    order_amount = _amount(limit, shares)
    if not should_fill_buy(price.close, limit):
        return [], [
            OrderAction(
                TradeType.BUY, tier, limit, shares, order_amount, OrderType.LOC,
                executed=False, reason=f"close {price.close} > buy limit {limit}",
            )
        ]
    if to_decimal(price.close) * shares > cycle.cash_decimal:
        return [], [
            OrderAction(
                TradeType.BUY, tier, limit, shares, order_amount, OrderType.LOC,
                executed=False, reason=f"insufficient cash {cycle.cash}",
            )
        ]

    cycle.activate_tier(tier, price.close, shares, price.date, day_index)
    amount = _amount(price.close, shares)
    trade = TradeAction(TradeType.BUY, tier, price.close, shares, amount, OrderType.LOC)
    order = OrderAction(
        TradeType.BUY, tier, limit, shares, order_amount, OrderType.LOC,
        executed=True, executed_price=price.close, executed_amount=amount,
    )
    return [trade], [order]

def take_snapshot(
    cycle: CycleState,
    price: PricePoint,
    trades: List[TradeAction],
    orders: List[OrderAction],
    *,
    strategy: Optional[str] = None,
    ma20: Optional[float] = None,
    ma60: Optional[float] = None,
) -> DailySnapshot:
    """Value every held share at the adjusted close."""
    holdings = cycle.holdings_value(price.adj_close)
    return DailySnapshot(
        date=price.date,
        open=price.open,
        high=price.high,
        low=price.low,
        close=price.close,
        adj_close=price.adj_close,
        cash=cycle.cash,
        holdings_value=round_to_float(holdings, 2),
        total_asset=round_to_float(cycle.cash_decimal + holdings, 2),
        trades=trades,
        orders=orders,
        active_tiers=len(cycle.active_tiers()),
        cycle_number=cycle.cycle_number,
        strategy=strategy,
        ma20=ma20,
        ma60=ma60,
    )

def remaining_tiers(cycle: CycleState, last_adj_close: float) -> List[RemainingTier]:
    price = to_decimal(last_adj_close)
    out: List[RemainingTier] = []
    for t in cycle.active_tiers():
        buy = to_decimal(t.buy_price)
        current_value = round_to_float(price * t.shares, 2)
        cost = round_to_float(buy * t.shares, 2)
        out.append(
            RemainingTier(
                tier=t.tier,
                shares=t.shares,
                buy_price=t.buy_price,
                buy_date=t.buy_date,
                current_price=float(last_adj_close),
                current_value=current_value,
                profit_loss=round_to_float(to_decimal(current_value) - to_decimal(cost), 2),
                return_rate=floor_to_float((price - buy) / buy, 4),
            )
        )
    return out

def ma_series(prices: Sequence[PricePoint]) -> Tuple[List[Optional[float]], List[Optional[float]]]:
    closes = adj_closes(prices)
    ma20 = [None if math.isnan(x) else float(x) for x in rolling_sma(closes, 20)]
    ma60 = [None if math.isnan(x) else float(x) for x in rolling_sma(closes, 60)]
    return ma20, ma60

def summarize(
    strategy_label: str,
    prices: Sequence[PricePoint],
    start_index: int,
    initial_capital: float,
    cycle: CycleState,
    history: List[DailySnapshot],
    completed: List[CycleSummary],
    cfg: EngineConfig,
    with_indicators: bool,
) -> BacktestResult:
    final_asset = history[-1].total_asset
    last = prices[-1]
    return BacktestResult(
        strategy=strategy_label,
        start_date=prices[start_index].date,
        end_date=last.date,
        initial_capital=float(initial_capital),
        final_asset=final_asset,
        return_rate=calc_return_rate(initial_capital, final_asset),
        cagr=calc_cagr(initial_capital, final_asset, len(history), cfg.trading_days_per_year),
        mdd=calc_mdd(s.total_asset for s in history),
        total_cycles=cycle.cycle_number,
        win_rate=calc_win_rate([c.profit for c in completed]),
        daily_history=history,
        remaining_tiers=remaining_tiers(cycle, last.adj_close),
        completed_cycles=completed,
        end_indicators=compute_snapshot(adj_closes(prices), len(prices) - 1) if with_indicators else None,
    )

# ---------------------------------------------------------------------------
# Fixed-strategy backtest
# ---------------------------------------------------------------------------

def run_backtest(
    prices: Sequence[PricePoint],
    strategy: Union[str, Strategy, StrategyConfig],
    initial_capital: Optional[float] = None,
    start_index: int = 0,
    config: Optional[EngineConfig] = None,
    with_indicators: bool = True,
) -> BacktestResult:
    """Simulate one fixed strategy over `prices[start_index:]`.

    Bars before `start_index` only feed the moving averages shown in the history.
    The first simulated day records a snapshot; trading starts on the second.
    """
    cfg = config or EngineConfig()
    start_index = max(0, int(start_index))
    if len(prices) - start_index < 2:
        raise ValueError("at least 2 price points are required")
    scfg = strategy if isinstance(strategy, StrategyConfig) else get_strategy(strategy)
    capital = cfg.initial_capital if initial_capital is None else float(initial_capital)

    cycle = CycleState(capital, scfg, prices[start_index].date)
    ma20, ma60 = ma_series(prices) if with_indicators else ([None] * len(prices), [None] * len(prices))
    label = scfg.name.value
    history = [take_snapshot(cycle, prices[start_index], [], [], strategy=label, ma20=ma20[start_index], ma60=ma60[start_index])]
    completed: List[CycleSummary] = []

    for i in range(start_index + 1, len(prices)):
        prev, cur = prices[i - 1], prices[i]
        trades, orders = settle_exits(cycle, cur, i)
        summary = roll_cycle(cycle, cur)
        if summary is not None:
            completed.append(summary)
        buy_trades, buy_orders = attempt_buy(cycle, prev, cur, i)
        trades.extend(buy_trades)
        orders.extend(buy_orders)
        history.append(take_snapshot(cycle, cur, trades, orders, strategy=label, ma20=ma20[i], ma60=ma60[i]))

    return summarize(label, prices, start_index, capital, cycle, history, completed, cfg, with_indicators)
