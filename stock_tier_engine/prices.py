from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

@dataclass(frozen=True)
class PricePoint:
    date: str  # YYYY-MM-DD
    open: float
    high: float
    low: float
    close: float
    adj_close: float
    volume: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

_ADJ_COLUMNS = ("adj_close", "adjclose", "adj close", "adjusted_close")

def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    for col in _ADJ_COLUMNS:
        if col in df.columns:
            df = df.rename(columns={col: "adj_close"})
            break
    return df

def prices_from_frame(df: pd.DataFrame) -> List[PricePoint]:
    """Build a date-sorted, de-duplicated price list from a DataFrame.

    Accepts `date, open, high, low, close, volume` plus any common spelling of the
    adjusted close column; without one, the close is used.
    """
    if df is None or df.empty:
        return []
    df = _normalize_columns(df)
    missing = [c for c in ("date", "close") if c not in df.columns]
    if missing:
        raise ValueError(f"price frame is missing columns: {missing}")

    df["date"] = pd.to_datetime(df["date"]).dt.strftime("%Y-%m-%d")
    df["close"] = pd.to_numeric(df["close"], errors="coerce")
    df = df.dropna(subset=["close"])
    for col in ("open", "high", "low"):
        if col not in df.columns:
            df[col] = df["close"]
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(df["close"])
    if "adj_close" not in df.columns:
        df["adj_close"] = df["close"]
    df["adj_close"] = pd.to_numeric(df["adj_close"], errors="coerce").fillna(df["close"])
    if "volume" not in df.columns:
        df["volume"] = 0
    df["volume"] = pd.to_numeric(df["volume"], errors="coerce").fillna(0).astype("int64")

    df = df.drop_duplicates(subset=["date"], keep="last").sort_values("date")
    return [
        PricePoint(
            date=str(r.date),
            open=float(r.open),
            high=float(r.high),
            low=float(r.low),
            close=float(r.close),
            adj_close=float(r.adj_close),
            volume=int(r.volume),
        )
        for r in df.itertuples(index=False)
    ]

def prices_to_frame(prices: Sequence[PricePoint]) -> pd.DataFrame:
    return pd.DataFrame([p.to_dict() for p in prices], columns=["date", "open", "high", "low", "close", "adj_close", "volume"])

def load_prices_csv(path: str) -> List[PricePoint]:
    return prices_from_frame(pd.read_csv(path))

def adj_closes(prices: Sequence[PricePoint]) -> List[float]:
    return [p.adj_close for p in prices]

def index_of(prices: Sequence[PricePoint], date: str) -> Optional[int]:
    """Index of `date`, or of the last trading day on or before it; None if none precede it."""
    lo, hi = 0, len(prices)
    while lo < hi:
        mid = (lo + hi) // 2
        if prices[mid].date <= date:
            lo = mid + 1
        else:
            hi = mid
    return lo - 1 if lo > 0 else None

def slice_by_date(prices: Sequence[PricePoint], start: Optional[str] = None, end: Optional[str] = None) -> List[PricePoint]:
    return [p for p in prices if (start is None or p.date >= start) and (end is None or p.date <= end)]
