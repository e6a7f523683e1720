from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .indicators import IndicatorSnapshot
from .prices import PricePoint
from .similarity import CatalogueEntry

logger = logging.getLogger(__name__)

def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn

def ensure_schema(
    db_path: str,
    price_table: str = "daily_price",
    metrics_table: str = "daily_metrics",
    cache_table: str = "recommendation_cache",
) -> None:
    conn = connect(db_path)
    try:
        with conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {price_table} (
                  ticker TEXT NOT NULL,
                  date TEXT NOT NULL,
                  open REAL, high REAL, low REAL,
                  close REAL NOT NULL,
                  adj_close REAL NOT NULL,
                  volume INTEGER DEFAULT 0,
                  PRIMARY KEY (ticker, date)
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {metrics_table} (
                  ticker TEXT NOT NULL,
                  date TEXT NOT NULL,
                  ma20 REAL, ma60 REAL, ma_slope REAL, disparity REAL,
                  rsi14 REAL, roc12 REAL, volatility20 REAL,
                  golden_cross REAL, is_golden_cross INTEGER,
                  PRIMARY KEY (ticker, date)
                )
                """
            )
            cols = [r["name"] for r in conn.execute(f"PRAGMA table_info({cache_table})").fetchall()]
            if cols and "variant" not in cols:
                # rows from before variants existed cannot be attributed to any settings
                logger.warning("dropping %s: created without a variant column", cache_table)
                conn.execute(f"DROP TABLE {cache_table}")
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {cache_table} (
                  ticker TEXT NOT NULL,
                  date TEXT NOT NULL,
                  variant TEXT NOT NULL DEFAULT '',
                  strategy TEXT NOT NULL,
                  reason TEXT,
                  rsi14 REAL, is_golden_cross INTEGER, ma_slope REAL, disparity REAL,
                  roc12 REAL, volatility20 REAL, golden_cross REAL,
                  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                  PRIMARY KEY (ticker, date, variant)
                )
                """
            )
    finally:
        conn.close()

def list_tickers(db_path: str, table: str = "daily_price", min_rows: int = 1) -> List[Tuple[str, int]]:
    """Return [(ticker, n_rows), ...]"""
    conn = connect(db_path)
    try:
        cur = conn.execute(
            f"SELECT ticker, COUNT(*) as n FROM {table} GROUP BY ticker HAVING n >= ? ORDER BY ticker",
            (int(min_rows),),
        )
        return [(str(r[0]), int(r[1])) for r in cur.fetchall()]
    finally:
        conn.close()

def fetch_prices(
    db_path: str,
    ticker: str,
    table: str = "daily_price",
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[PricePoint]:
    """Date-ascending prices for a ticker, optionally bounded (inclusive) by date."""
    where = ["ticker=?"]
    params: List[object] = [ticker]
    if start:
        where.append("date>=?")
        params.append(start)
    if end:
        where.append("date<=?")
        params.append(end)
    conn = connect(db_path)
    try:
        cur = conn.execute(
            f"SELECT date, open, high, low, close, adj_close, volume FROM {table} "
            f"WHERE {' AND '.join(where)} ORDER BY date ASC",
            params,
        )
        rows = cur.fetchall()
    finally:
        conn.close()
    out: List[PricePoint] = []
    for r in rows:
        close = float(r["close"])
        out.append(
            PricePoint(
                date=str(r["date"]),
                open=float(r["open"] if r["open"] is not None else close),
                high=float(r["high"] if r["high"] is not None else close),
                low=float(r["low"] if r["low"] is not None else close),
                close=close,
                adj_close=float(r["adj_close"] if r["adj_close"] is not None else close),
                volume=int(r["volume"] or 0),
            )
        )
    return out

def latest_date(db_path: str, ticker: str, table: str = "daily_price") -> Optional[str]:
    conn = connect(db_path)
    try:
        row = conn.execute(f"SELECT MAX(date) FROM {table} WHERE ticker=?", (ticker,)).fetchone()
        return str(row[0]) if row and row[0] is not None else None
    finally:
        conn.close()

def upsert_prices(db_path: str, ticker: str, prices: Iterable[PricePoint], table: str = "daily_price") -> int:
    rows = [(ticker, p.date, p.open, p.high, p.low, p.close, p.adj_close, int(p.volume)) for p in prices]
    if not rows:
        return 0
    conn = connect(db_path)
    try:
        with conn:
            conn.executemany(
                f"""
                INSERT INTO {table} (ticker, date, open, high, low, close, adj_close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(ticker, date) DO UPDATE SET
                  open=excluded.open, high=excluded.high, low=excluded.low,
                  close=excluded.close, adj_close=excluded.adj_close, volume=excluded.volume
                """,
                rows,
            )
    finally:
        conn.close()
    return len(rows)

def upsert_metrics(
    db_path: str,
    ticker: str,
    rows: Iterable[Tuple[str, IndicatorSnapshot]],
    table: str = "daily_metrics",
) -> int:
    payload = [
        (
            ticker, date, s.ma20, s.ma60, s.ma_slope, s.disparity, s.rsi14, s.roc12, s.volatility20,
            s.golden_cross, None if s.is_golden_cross is None else int(s.is_golden_cross),
        )
        for date, s in rows
    ]
    if not payload:
        return 0
    conn = connect(db_path)
    try:
        with conn:
            conn.executemany(
                f"""
                INSERT OR REPLACE INTO {table}
                  (ticker, date, ma20, ma60, ma_slope, disparity, rsi14, roc12, volatility20, golden_cross, is_golden_cross)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                payload,
            )
    finally:
        conn.close()
    return len(payload)

def fetch_catalogue(
    db_path: str,
    ticker: str,
    prices: Sequence[PricePoint],
    table: str = "daily_metrics",
) -> List[CatalogueEntry]:
    """Precomputed snapshots mapped onto indices of `prices`.

    Rows whose date is not in `prices`, or with any missing field, are skipped. An
    empty result means callers compute the catalogue themselves.
    """
    index_by_date: Dict[str, int] = {p.date: i for i, p in enumerate(prices)}
    conn = connect(db_path)
    try:
        cur = conn.execute(
            f"SELECT date, ma20, ma60, ma_slope, disparity, rsi14, roc12, volatility20, golden_cross, is_golden_cross "
            f"FROM {table} WHERE ticker=? ORDER BY date ASC",
            (ticker,),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    out: List[CatalogueEntry] = []
    for r in rows:
        idx = index_by_date.get(str(r["date"]))
        if idx is None:
            continue
        snap = IndicatorSnapshot(
            ma20=r["ma20"],
            ma60=r["ma60"],
            ma_slope=r["ma_slope"],
            disparity=r["disparity"],
            rsi14=r["rsi14"],
            roc12=r["roc12"],
            volatility20=r["volatility20"],
            golden_cross=r["golden_cross"],
            is_golden_cross=None if r["is_golden_cross"] is None else bool(r["is_golden_cross"]),
        )
        if snap.is_complete:
            out.append(CatalogueEntry(idx, str(r["date"]), snap))
    return out
