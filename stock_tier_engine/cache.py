"""Recommendation cache collaborators.

The recommender only ever talks to a `get(ticker, date)` / `put(ticker, date, entry)`
interface; a NullCache keeps it fully functional with nothing stored. Entries are
further keyed by a `variant` string naming the settings that produced them, so
recommendations made under different settings never answer for each other.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from .db import connect, ensure_schema
from .indicators import IndicatorSnapshot
from .strategy import Strategy

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class CachedRecommendation:
    strategy: Strategy
    reason: str
    indicators: IndicatorSnapshot

class RecommendationCache(Protocol):
    def get(self, ticker: str, date: str, variant: str = "") -> Optional[CachedRecommendation]: ...

    def put(self, ticker: str, date: str, entry: CachedRecommendation, variant: str = "") -> None: ...

class NullCache:
    def get(self, ticker: str, date: str, variant: str = "") -> Optional[CachedRecommendation]:
        return None

    def put(self, ticker: str, date: str, entry: CachedRecommendation, variant: str = "") -> None:
        return None

class MemoryCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[Tuple[str, str, str], CachedRecommendation] = {}

    def get(self, ticker: str, date: str, variant: str = "") -> Optional[CachedRecommendation]:
        with self._lock:
            return self._data.get((ticker, date, variant))

    def put(self, ticker: str, date: str, entry: CachedRecommendation, variant: str = "") -> None:
        with self._lock:
            self._data[(ticker, date, variant)] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

class SQLiteRecommendationCache:
    """Read-through/write-through rows in the `recommendation_cache` table."""

    def __init__(self, db_path: str, table: str = "recommendation_cache"):
        self.db_path = db_path
        self.table = table
        ensure_schema(db_path, cache_table=table)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def get(self, ticker: str, date: str, variant: str = "") -> Optional[CachedRecommendation]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT strategy, reason, rsi14, is_golden_cross, ma_slope, disparity, roc12, volatility20, golden_cross "
                f"FROM {self.table} WHERE ticker=? AND date=? AND variant=?",
                (ticker, date, variant),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            logger.debug("cache miss %s %s [%s]", ticker, date, variant)
            return None
        try:
            strategy = Strategy.parse(row["strategy"])
        except ValueError:
            logger.warning("ignoring cache row with unknown strategy %r (%s %s)", row["strategy"], ticker, date)
            return None
        snap = IndicatorSnapshot(
            ma_slope=row["ma_slope"],
            disparity=row["disparity"],
            rsi14=row["rsi14"],
            roc12=row["roc12"],
            volatility20=row["volatility20"],
            golden_cross=row["golden_cross"],
            is_golden_cross=None if row["is_golden_cross"] is None else bool(row["is_golden_cross"]),
        )
        return CachedRecommendation(strategy=strategy, reason=row["reason"] or "", indicators=snap)

    def put(self, ticker: str, date: str, entry: CachedRecommendation, variant: str = "") -> None:
        s = entry.indicators
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    f"""
                    INSERT INTO {self.table}
                      (ticker, date, variant, strategy, reason, rsi14, is_golden_cross, ma_slope, disparity, roc12, volatility20, golden_cross)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(ticker, date, variant) DO UPDATE SET
                      strategy=excluded.strategy,
                      reason=excluded.reason,
                      rsi14=excluded.rsi14,
                      is_golden_cross=excluded.is_golden_cross,
                      ma_slope=excluded.ma_slope,
                      disparity=excluded.disparity,
                      roc12=excluded.roc12,
                      volatility20=excluded.volatility20,
                      golden_cross=excluded.golden_cross
                    """,
                    (
                        ticker,
                        date,
                        variant,
                        entry.strategy.value,
                        entry.reason,
                        s.rsi14,
                        None if s.is_golden_cross is None else int(s.is_golden_cross),
                        s.ma_slope,
                        s.disparity,
                        s.roc12,
                        s.volatility20,
                        s.golden_cross,
                    ),
                )
        finally:
            conn.close()
