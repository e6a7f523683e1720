from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from .pricing import Number, floor_decimal, round_half_up, round_to_float, sell_limit_price, to_decimal
from .strategy import RESERVE_TIER, TIER_COUNT, StrategyConfig

@dataclass
class TierState:
    tier: int
    buy_price: float
    shares: int
    buy_date: str
    buy_day_index: int
    sell_limit_price: float
    active: bool = True

    def holding_days(self, day_index: int) -> int:
        return day_index - self.buy_day_index

def _check_tier(tier: int) -> None:
    if not 1 <= int(tier) <= RESERVE_TIER:
        raise ValueError(f"tier must be within 1..{RESERVE_TIER} (got {tier})")

class CycleState:
    """Tier slots and cash of the running cycle.

    Tiers 1-6 are sized from the cycle's initial capital; tier 7 takes whatever cash
    is left and is only offered once 1-6 are all held. A cycle is complete once it
    has traded and holds nothing; `start_new_cycle` then rolls the cash forward as
    the next cycle's capital.
    """

    def __init__(self, initial_capital: Number, strategy: StrategyConfig, start_date: str):
        capital = to_decimal(initial_capital)
        if capital < 0:
            raise ValueError("initial capital must be >= 0")
        self.cycle_number = 1
        self.start_date = start_date
        self.strategy = strategy
        self.day_count = 0
        self.has_traded = False
        self._cycle_initial_capital = capital
        self._cash = capital
        self._tiers: Dict[int, TierState] = {}

    # ---- reads -----------------------------------------------------------
    @property
    def cash(self) -> float:
        return round_to_float(self._cash, 2)

    @property
    def cash_decimal(self) -> Decimal:
        return self._cash

    @property
    def cycle_initial_capital(self) -> float:
        return round_to_float(self._cycle_initial_capital, 2)

    def active_tiers(self) -> List[TierState]:
        return [self._tiers[k] for k in sorted(self._tiers)]

    def tier(self, tier: int) -> Optional[TierState]:
        _check_tier(tier)
        return self._tiers.get(int(tier))

    def next_buy_tier(self) -> Optional[int]:
        for t in range(1, TIER_COUNT + 1):
            if t not in self._tiers:
                return t
        if self._cash > 0 and RESERVE_TIER not in self._tiers:
            return RESERVE_TIER
        return None

    def tier_amount(self, tier: int) -> Decimal:
        _check_tier(tier)
        if tier == RESERVE_TIER:
            return floor_decimal(self._cash, 2)
        ratio = to_decimal(self.strategy.tier_ratios[tier - 1])
        return floor_decimal(self._cycle_initial_capital * ratio, 2)

    def stop_loss_tiers(self, day_index: int) -> List[TierState]:
        return [t for t in self.active_tiers() if t.holding_days(day_index) >= self.strategy.stop_loss_days]

    def holdings_value(self, price: Number) -> Decimal:
        p = to_decimal(price)
        return sum((p * t.shares for t in self._tiers.values()), Decimal(0))

    def total_asset(self, price: Number) -> float:
        return round_to_float(self._cash + self.holdings_value(price), 2)

    def is_complete(self) -> bool:
        return self.has_traded and not self._tiers

    # ---- transitions ------------------------------------------------------
    def activate_tier(self, tier: int, price: Number, shares: int, date: str, day_index: int) -> TierState:
        _check_tier(tier)
        if tier in self._tiers:
            raise ValueError(f"tier {tier} is already active")
        p = to_decimal(price)
        if p <= 0 or shares <= 0:
            raise ValueError("fill price and shares must be positive")
        cost = p * shares
        if cost > self._cash:
            raise ValueError(f"insufficient cash for tier {tier}: cost {cost} > cash {self._cash}")
        self._cash -= cost
        self.has_traded = True
        state = TierState(
            tier=int(tier),
            buy_price=float(p),
            shares=int(shares),
            buy_date=date,
            buy_day_index=int(day_index),
            sell_limit_price=sell_limit_price(p, self.strategy.sell_threshold),
        )
        self._tiers[int(tier)] = state
        return state

    def deactivate_tier(self, tier: int, price: Number) -> Decimal:
        """Close a tier at `price`; returns the realised profit rounded to cents."""
        _check_tier(tier)
        state = self._tiers.pop(int(tier), None)
        if state is None:
            raise ValueError(f"tier {tier} is not active")
        proceeds = to_decimal(price) * state.shares
        cost = to_decimal(state.buy_price) * state.shares
        self._cash += proceeds
        return round_half_up(proceeds - cost, 2)

    def increment_day(self) -> None:
        self.day_count += 1

    def start_new_cycle(self, date: str) -> None:
        if self._tiers:
            raise ValueError(f"cannot roll cycle with {len(self._tiers)} active tier(s)")
        self.cycle_number += 1
        self._cycle_initial_capital = self._cash
        self.day_count = 0
        self.start_date = date
        self.has_traded = False
        self._tiers = {}

    def set_strategy(self, strategy: StrategyConfig) -> None:
        self.strategy = strategy
