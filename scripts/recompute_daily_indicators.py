#!/usr/bin/env python
"""Recompute daily indicator snapshots into daily_metrics, optionally for a date range.

The full price series is always loaded: moving averages and the carried RSI
state need the whole prefix. Only rows inside the range are written.
"""
from __future__ import annotations

import argparse
import logging
from datetime import datetime
import sys
from pathlib import Path
import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stock_tier_engine.config import EngineConfig
from stock_tier_engine.db import connect, ensure_schema, upsert_metrics
from stock_tier_engine.indicators import compute_snapshots

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")


def _to_date(value: str | None) -> str | None:
    if not value:
        return None
    value = str(value).strip()
    for fmt in ("%Y-%m-%d", "%Y%m%d"):
        try:
            return datetime.strptime(value, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return None


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--start", type=str, default=None, help="YYYY-MM-DD or YYYYMMDD")
    parser.add_argument("--end", type=str, default=None, help="YYYY-MM-DD or YYYYMMDD")
    parser.add_argument("--ticker", type=str, default=None, help="limit to one ticker (default: all)")
    parser.add_argument("--db", type=str, default=None, help="SQLite DB path (default: TIER_DB_PATH)")
    args = parser.parse_args()

    cfg = EngineConfig() if args.db is None else EngineConfig(db_path=args.db)
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)
    start = _to_date(args.start)
    end = _to_date(args.end)

    conn = connect(cfg.db_path)
    try:
        sql = f"SELECT ticker, date, adj_close FROM {cfg.price_table}"
        params: tuple = ()
        if args.ticker:
            sql += " WHERE ticker=?"
            params = (args.ticker.strip().upper(),)
        df = pd.read_sql_query(sql + " ORDER BY ticker, date", conn, params=params)
    finally:
        conn.close()

    if df.empty:
        logging.warning("%s empty", cfg.price_table)
        return

    total = 0
    for ticker, g in df.groupby("ticker", sort=True):
        dates = g["date"].astype(str).tolist()
        snaps = compute_snapshots(g["adj_close"].astype(float).tolist())
        rows = [
            (d, s)
            for d, s in zip(dates, snaps)
            if (start is None or d >= start) and (end is None or d <= end)
        ]
        n = upsert_metrics(cfg.db_path, str(ticker), rows, table=cfg.metrics_table)
        logging.info("[recompute] %s rows=%d", ticker, n)
        total += n

    logging.info("[recompute] done rows=%d start=%s end=%s", total, start or "ALL", end or "ALL")


if __name__ == "__main__":
    main()
