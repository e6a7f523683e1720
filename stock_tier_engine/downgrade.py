from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Sequence

from .config import EngineConfig
from .divergence import detect_bearish_divergence
from .indicators import IndicatorSnapshot
from .strategy import DOWNGRADE_ORDER, Strategy

class DowngradeRule(str, Enum):
    OVERBOUGHT_INVERTED = "overbought_inverted"
    BEARISH_DIVERGENCE = "bearish_divergence"

# report order for reasons, independent of evaluation order
_RULE_ORDER = (DowngradeRule.OVERBOUGHT_INVERTED, DowngradeRule.BEARISH_DIVERGENCE)

_REASONS = {
    DowngradeRule.OVERBOUGHT_INVERTED: "RSI>=60 with inverted MA alignment",
    DowngradeRule.BEARISH_DIVERGENCE: "bearish RSI divergence with disparity<20",
}

@dataclass(frozen=True)
class DowngradeResult:
    strategy: Strategy
    applied: bool
    original_strategy: Optional[Strategy] = None
    reasons: List[str] = field(default_factory=list)
    # lifts the golden-cross exclusion when set
    divergence_override: bool = False

def divergence_condition(
    snapshot: IndicatorSnapshot,
    values: Sequence[float],
    index: int,
    cfg: Optional[EngineConfig] = None,
) -> bool:
    """Disparity below the threshold, RSI at or above it, and a bearish divergence at `index`."""
    cfg = cfg or EngineConfig()
    if snapshot.rsi14 is None or snapshot.disparity is None:
        return False
    if snapshot.disparity >= cfg.downgrade_disparity or snapshot.rsi14 < cfg.downgrade_rsi:
        return False
    return detect_bearish_divergence(
        values,
        index,
        window=cfg.divergence_window,
        min_peak_distance=cfg.divergence_min_peak_distance,
        price_tolerance=cfg.divergence_price_tolerance,
        rsi_min_drop=cfg.divergence_rsi_min_drop,
    ).has_bearish_divergence

def fired_rules(
    snapshot: IndicatorSnapshot,
    values: Sequence[float],
    index: int,
    cfg: Optional[EngineConfig] = None,
) -> FrozenSet[DowngradeRule]:
    cfg = cfg or EngineConfig()
    rules = set()
    if snapshot.rsi14 is not None and snapshot.is_golden_cross is False and snapshot.rsi14 >= cfg.downgrade_rsi:
        rules.add(DowngradeRule.OVERBOUGHT_INVERTED)
    if divergence_condition(snapshot, values, index, cfg):
        rules.add(DowngradeRule.BEARISH_DIVERGENCE)
    return frozenset(rules)

def apply_downgrade(strategy: Strategy, rules: FrozenSet[DowngradeRule]) -> Strategy:
    """At most one step toward conservatism, however many rules fired."""
    if not rules:
        return strategy
    return DOWNGRADE_ORDER[strategy]

def downgrade_from_rules(strategy: Strategy, rules: FrozenSet[DowngradeRule]) -> DowngradeResult:
    if not rules:
        return DowngradeResult(strategy=strategy, applied=False)
    target = apply_downgrade(strategy, rules)
    applied = target != strategy
    return DowngradeResult(
        strategy=target,
        applied=applied,
        original_strategy=strategy if applied else None,
        reasons=[_REASONS[r] for r in _RULE_ORDER if r in rules],
        divergence_override=DowngradeRule.BEARISH_DIVERGENCE in rules,
    )

def downgrade(
    strategy: Strategy,
    snapshot: IndicatorSnapshot,
    values: Sequence[float],
    index: int,
    cfg: Optional[EngineConfig] = None,
) -> DowngradeResult:
    return downgrade_from_rules(strategy, fired_rules(snapshot, values, index, cfg))

def format_downgrade_reason(base: str, result: DowngradeResult) -> str:
    if not result.applied or result.original_strategy is None:
        return base
    return f"{base} ({', '.join(result.reasons)}: {result.original_strategy.value} -> {result.strategy.value})"
