#!/usr/bin/env python3
from __future__ import annotations

import argparse
import csv
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

# Ensure repo root is on sys.path when executed from scripts/
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from stock_tier_engine.config import EngineConfig  # noqa: E402
from stock_tier_engine.db import ensure_schema, upsert_prices  # noqa: E402
from stock_tier_engine.prices import PricePoint  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")


def _to_float(val: Optional[str]) -> Optional[float]:
    if val is None:
        return None
    text = str(val).replace(",", "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _to_int(val: Optional[str]) -> int:
    f = _to_float(val)
    return int(f) if f is not None else 0


def _row_to_price(row: dict) -> Optional[PricePoint]:
    lower = {str(k).strip().lower(): v for k, v in row.items()}
    date = (lower.get("date") or "").strip()[:10]
    close = _to_float(lower.get("close"))
    if not date or close is None:
        return None
    adj = _to_float(lower.get("adj_close") or lower.get("adj close") or lower.get("adjclose"))

    def _or_close(key: str) -> float:
        v = _to_float(lower.get(key))
        return v if v is not None else close

    return PricePoint(
        date=date,
        open=_or_close("open"),
        high=_or_close("high"),
        low=_or_close("low"),
        close=close,
        adj_close=adj if adj is not None else close,
        volume=_to_int(lower.get("volume")),
    )


def main():
    ap = argparse.ArgumentParser(description="Import a daily price CSV for one ticker into SQLite with upsert.")
    ap.add_argument("--csv", required=True, help="CSV file path (date, open, high, low, close, adj_close, volume)")
    ap.add_argument("--ticker", required=True)
    ap.add_argument("--db", default=None, help="SQLite DB path (default: TIER_DB_PATH or market_data.db)")
    ap.add_argument("--chunk-size", type=int, default=20000, help="Rows per batch commit")
    args = ap.parse_args()

    cfg = EngineConfig() if args.db is None else EngineConfig(db_path=args.db)
    csv_path = Path(args.csv)
    if not csv_path.exists():
        raise SystemExit(f"CSV not found: {csv_path}")
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)

    ticker = args.ticker.strip().upper()
    start_ts = time.time()
    total = 0
    skipped = 0
    batch: List[PricePoint] = []

    with csv_path.open("r", encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            rec = _row_to_price(row)
            if rec is None:
                skipped += 1
                continue
            batch.append(rec)
            if len(batch) >= args.chunk_size:
                total += upsert_prices(cfg.db_path, ticker, batch, table=cfg.price_table)
                batch = []
                logging.info("[import] %s rows=%d", ticker, total)

    if batch:
        total += upsert_prices(cfg.db_path, ticker, batch, table=cfg.price_table)

    elapsed = int(time.time() - start_ts)
    logging.info("[import] %s completed rows=%d skipped=%d elapsed=%ds", ticker, total, skipped, elapsed)
    print(f"imported {total} rows in {elapsed}s")


if __name__ == "__main__":
    main()
