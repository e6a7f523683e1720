from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .config import EngineConfig
from .indicators import IndicatorSnapshot, compute_snapshots
from .prices import PricePoint, adj_closes
from .pricing import round_to_float
from .strategy import Strategy

@dataclass(frozen=True)
class CatalogueEntry:
    index: int
    date: str
    indicators: IndicatorSnapshot

@dataclass(frozen=True)
class PeriodResult:
    return_rate: float
    mdd: float

@dataclass(frozen=True)
class SimilarPeriodCandidate:
    index: int
    date: str
    indicators: IndicatorSnapshot
    similarity: float
    analysis_start_date: Optional[str] = None
    performance_start_date: Optional[str] = None
    performance_end_date: Optional[str] = None
    results: Dict[Strategy, PeriodResult] = field(default_factory=dict)
    failed: FrozenSet[Strategy] = frozenset()

    @property
    def is_valid(self) -> bool:
        return bool(self.results) and not self.failed

def indicator_vector(snapshot: IndicatorSnapshot) -> Tuple[float, float, float, float, float]:
    """[ma_slope, disparity, rsi14, roc12, volatility20]; raises ValueError when incomplete."""
    vec = (snapshot.ma_slope, snapshot.disparity, snapshot.rsi14, snapshot.roc12, snapshot.volatility20)
    if any(v is None for v in vec):
        raise ValueError("indicator snapshot is incomplete")
    return tuple(float(v) for v in vec)  # type: ignore[return-value]

def similarity(
    ref: Sequence[float],
    hist: Sequence[float],
    weights: Sequence[float],
    tolerances: Sequence[float],
) -> float:
    """Weighted exponential closeness in [0, 1], rounded half-up to 4 places."""
    if not (len(ref) == len(hist) == len(weights) == len(tolerances)):
        raise ValueError("vector length mismatch")
    total = math.fsum(w * math.exp(-abs(a - b) / t) for a, b, w, t in zip(ref, hist, weights, tolerances))
    return round_to_float(total, 4)

def build_catalogue(prices: Sequence[PricePoint], end_index: Optional[int] = None) -> List[CatalogueEntry]:
    """Complete indicator snapshots for every index up to `end_index` (inclusive)."""
    stop = len(prices) if end_index is None else min(len(prices), int(end_index) + 1)
    if stop <= 0:
        return []
    snaps = compute_snapshots(adj_closes(prices[:stop]))
    return [CatalogueEntry(i, prices[i].date, s) for i, s in enumerate(snaps) if s.is_complete]

def find_similar_periods(
    reference: IndicatorSnapshot,
    reference_index: int,
    catalogue: Sequence[CatalogueEntry],
    cfg: Optional[EngineConfig] = None,
    match_orientation: bool = False,
) -> List[SimilarPeriodCandidate]:
    """Top-K catalogue entries by similarity, most similar first, earlier date on ties.

    Entries closer than `min_gap_days` to the reference are never eligible.
    With `match_orientation`, only entries sharing the reference's golden-cross
    orientation are considered.
    """
    cfg = cfg or EngineConfig()
    ref_vec = indicator_vector(reference)
    limit = reference_index - cfg.min_gap_days

    scored: List[Tuple[float, int, CatalogueEntry]] = []
    for entry in catalogue:
        if entry.index > limit or not entry.indicators.is_complete:
            continue
        if match_orientation and entry.indicators.is_golden_cross != reference.is_golden_cross:
            continue
        sim = similarity(ref_vec, indicator_vector(entry.indicators), cfg.similarity_weights, cfg.similarity_tolerances)
        scored.append((sim, entry.index, entry))
    scored.sort(key=lambda x: (-x[0], x[1]))

    picked: List[SimilarPeriodCandidate] = []
    for sim, idx, entry in scored:
        if cfg.candidate_spacing > 0 and any(abs(p.index - idx) < cfg.candidate_spacing for p in picked):
            continue
        picked.append(SimilarPeriodCandidate(index=idx, date=entry.date, indicators=entry.indicators, similarity=sim))
        if len(picked) >= cfg.top_k:
            break
    return picked
