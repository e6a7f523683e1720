from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple, Union

TIER_COUNT = 6
RESERVE_TIER = 7
RATIO_SUM_TOLERANCE = 1e-10

class Strategy(str, Enum):
    """Closed set of fixed strategies, declared from least to most aggressive."""

    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"

    @classmethod
    def parse(cls, value: Union[str, "Strategy"]) -> "Strategy":
        if isinstance(value, Strategy):
            return value
        key = str(value).strip().lower()
        if key in _ALIASES:
            return _ALIASES[key]
        raise ValueError(f"unknown strategy: {value!r}")

    @property
    def rank(self) -> int:
        return _ORDER.index(self)

_ALIASES: Dict[str, Strategy] = {
    "conservative": Strategy.CONSERVATIVE,
    "balanced": Strategy.BALANCED,
    "aggressive": Strategy.AGGRESSIVE,
    "pro1": Strategy.CONSERVATIVE,
    "pro2": Strategy.BALANCED,
    "pro3": Strategy.AGGRESSIVE,
}

_ORDER: Tuple[Strategy, ...] = (Strategy.CONSERVATIVE, Strategy.BALANCED, Strategy.AGGRESSIVE)

@dataclass(frozen=True)
class StrategyConfig:
    name: Strategy
    tier_ratios: Tuple[float, ...]
    buy_threshold: float   # negative: limit below the prior close
    sell_threshold: float  # positive: target above the fill price
    stop_loss_days: int

    def __post_init__(self) -> None:
        if len(self.tier_ratios) != TIER_COUNT:
            raise ValueError(f"{self.name.value}: expected {TIER_COUNT} tier ratios, got {len(self.tier_ratios)}")
        total = math.fsum(self.tier_ratios)
        if abs(total - 1.0) > RATIO_SUM_TOLERANCE:
            raise ValueError(f"{self.name.value}: tier ratios must sum to 1.0 (got {total!r})")
        if self.buy_threshold >= 0:
            raise ValueError(f"{self.name.value}: buy threshold must be negative")
        if self.sell_threshold <= 0:
            raise ValueError(f"{self.name.value}: sell threshold must be positive")
        if self.stop_loss_days < 1:
            raise ValueError(f"{self.name.value}: stop-loss days must be >= 1")

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name.value,
            "tier_ratios": list(self.tier_ratios),
            "buy_threshold": self.buy_threshold,
            "sell_threshold": self.sell_threshold,
            "stop_loss_days": self.stop_loss_days,
        }

STRATEGIES: Dict[Strategy, StrategyConfig] = {
    Strategy.CONSERVATIVE: StrategyConfig(
        name=Strategy.CONSERVATIVE,
        tier_ratios=(0.05, 0.10, 0.15, 0.20, 0.25, 0.25),
        buy_threshold=-0.0001,
        sell_threshold=0.0001,
        stop_loss_days=10,
    ),
    Strategy.BALANCED: StrategyConfig(
        name=Strategy.BALANCED,
        tier_ratios=(0.10, 0.15, 0.20, 0.25, 0.20, 0.10),
        buy_threshold=-0.0001,
        sell_threshold=0.015,
        stop_loss_days=10,
    ),
    Strategy.AGGRESSIVE: StrategyConfig(
        name=Strategy.AGGRESSIVE,
        tier_ratios=(1 / 6,) * 6,
        buy_threshold=-0.001,
        sell_threshold=0.02,
        stop_loss_days=12,
    ),
}

DEFAULT_STRATEGY = Strategy.BALANCED

# one step toward conservatism; the most conservative strategy maps to itself
DOWNGRADE_ORDER: Dict[Strategy, Strategy] = {
    Strategy.AGGRESSIVE: Strategy.BALANCED,
    Strategy.BALANCED: Strategy.CONSERVATIVE,
    Strategy.CONSERVATIVE: Strategy.CONSERVATIVE,
}

def all_strategies() -> Tuple[Strategy, ...]:
    return _ORDER

def most_aggressive() -> Strategy:
    return _ORDER[-1]

def get_strategy(name: Union[str, Strategy]) -> StrategyConfig:
    return STRATEGIES[Strategy.parse(name)]
