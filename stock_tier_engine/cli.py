from __future__ import annotations

import argparse
import json
import logging
from typing import Any, List, Optional

from .adaptive import run_adaptive_backtest
from .backtester import run_backtest
from .cache import SQLiteRecommendationCache
from .config import EngineConfig
from .db import ensure_schema, fetch_catalogue, fetch_prices, latest_date, upsert_metrics, upsert_prices
from .fetcher import fetch_daily_prices
from .indicators import compute_snapshots
from .optimize import optimize
from .prices import PricePoint, adj_closes, index_of, load_prices_csv
from .recommender import recommend

logger = logging.getLogger(__name__)

def _p(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))

def _cfg(args: argparse.Namespace) -> EngineConfig:
    cfg = EngineConfig(db_path=args.db, price_table=args.table)
    if getattr(args, "workers", None) is not None:
        cfg = cfg.replace(max_workers=int(args.workers))
    return cfg

def _load(args: argparse.Namespace, cfg: EngineConfig, end: Optional[str] = None) -> List[PricePoint]:
    if getattr(args, "csv", None):
        prices = load_prices_csv(args.csv)
        return [p for p in prices if end is None or p.date <= end]
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)
    return fetch_prices(cfg.db_path, args.ticker, table=cfg.price_table, end=end)

def _start_index(prices: List[PricePoint], start: Optional[str]) -> Optional[int]:
    if not start:
        return 0
    for i, p in enumerate(prices):
        if p.date >= start:
            return i
    return None

def _catalogue(args: argparse.Namespace, cfg: EngineConfig, prices: List[PricePoint]):
    if getattr(args, "csv", None):
        return None
    rows = fetch_catalogue(cfg.db_path, args.ticker, prices, table=cfg.metrics_table)
    return rows or None

def cmd_backtest(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    prices = _load(args, cfg, end=args.end)
    start = _start_index(prices, args.start)
    if start is None or len(prices) - start < 2:
        _p({"ok": False, "error": "not_enough_data", "n": len(prices)})
        return
    res = run_backtest(prices, args.strategy, args.capital, start_index=start, config=cfg)
    _p({"ok": True, "ticker": args.ticker, **res.to_dict(include_history=args.history)})

def cmd_recommend(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    prices = _load(args, cfg, end=args.date)
    if not prices:
        _p({"ok": False, "error": "no_data", "ticker": args.ticker})
        return
    idx = len(prices) - 1 if not args.date else index_of(prices, args.date)
    if idx is None:
        _p({"ok": False, "error": "reference_date_not_found", "date": args.date})
        return
    cache = SQLiteRecommendationCache(cfg.db_path, cfg.cache_table) if args.use_cache else None
    rec = recommend(prices, idx, cfg, catalogue=_catalogue(args, cfg, prices), cache=cache, ticker=args.ticker)
    _p({"ok": True, **rec.to_dict()})

def cmd_adaptive(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    prices = _load(args, cfg, end=args.end)
    start = _start_index(prices, args.start)
    if start is None or len(prices) - start < 2:
        _p({"ok": False, "error": "not_enough_data", "n": len(prices)})
        return
    cache = SQLiteRecommendationCache(cfg.db_path, cfg.cache_table) if args.use_cache else None
    res = run_adaptive_backtest(
        prices, args.capital, start_index=start, config=cfg,
        ticker=args.ticker, cache=cache, catalogue=_catalogue(args, cfg, prices),
    )
    _p({"ok": True, "ticker": args.ticker, **res.to_dict(include_history=args.history)})

def cmd_optimize(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    prices = _load(args, cfg, end=args.end)
    start = _start_index(prices, args.start)
    if start is None or len(prices) - start < 2:
        _p({"ok": False, "error": "not_enough_data", "n": len(prices)})
        return
    res = optimize(
        prices, cfg, start_index=start, initial_capital=args.capital,
        random_count=args.random, variations_per_top=args.variations, top_candidates=args.top,
        seed=args.seed, catalogue=_catalogue(args, cfg, prices),
    )
    out = {"ok": True, "ticker": args.ticker, **res.to_dict()}
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(out, f, ensure_ascii=False, indent=2, default=str)
        logger.info("wrote %d ranked parameter sets to %s", len(res.candidates), args.output)
    _p({**out, "candidates": out["candidates"][: args.show]})

def cmd_import_csv(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)
    prices = load_prices_csv(args.csv)
    n = upsert_prices(cfg.db_path, args.ticker, prices, table=cfg.price_table)
    logger.info("imported %d rows for %s", n, args.ticker)
    _p({"ok": True, "ticker": args.ticker, "rows": n})

def cmd_fetch(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)
    start = args.start or latest_date(cfg.db_path, args.ticker, cfg.price_table) or "2010-01-01"
    prices = fetch_daily_prices(args.ticker, start, args.end)
    n = upsert_prices(cfg.db_path, args.ticker, prices, table=cfg.price_table)
    _p({"ok": bool(prices), "ticker": args.ticker, "rows": n, "start": start, "end": args.end})

def cmd_precompute(args: argparse.Namespace) -> None:
    cfg = _cfg(args)
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)
    prices = fetch_prices(cfg.db_path, args.ticker, table=cfg.price_table)
    snaps = compute_snapshots(adj_closes(prices))
    rows = [(p.date, s) for p, s in zip(prices, snaps) if (not args.start or p.date >= args.start)]
    n_metrics = upsert_metrics(cfg.db_path, args.ticker, rows, table=cfg.metrics_table)
    logger.info("stored %d indicator rows for %s", n_metrics, args.ticker)

    n_recs = 0
    if args.recommendations:
        cache = SQLiteRecommendationCache(cfg.db_path, cfg.cache_table)
        catalogue = fetch_catalogue(cfg.db_path, args.ticker, prices, table=cfg.metrics_table)
        first = _start_index(prices, args.start) or 0
        for i in range(first, len(prices)):
            recommend(
                prices, i, cfg, catalogue=catalogue, cache=cache, ticker=args.ticker,
                match_orientation=cfg.adaptive_match_orientation,
            )
            n_recs += 1
        logger.info("stored %d recommendations for %s", n_recs, args.ticker)
    _p({"ok": True, "ticker": args.ticker, "metrics_rows": n_metrics, "recommendations": n_recs})

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stock_tier_engine", description="Tiered compounding backtest and strategy recommendation.")
    p.add_argument("--db", default=EngineConfig().db_path, help="SQLite DB path (default: TIER_DB_PATH or market_data.db)")
    p.add_argument("--table", default="daily_price", help="Price table (default: daily_price)")
    p.add_argument("--workers", type=int, default=None, help="Parallel candidate backtests (default: config)")
    p.add_argument("--log-level", default=None, help="Logging level (default: TIER_LOG_LEVEL or INFO)")

    sub = p.add_subparsers(dest="cmd", required=True)

    p_bt = sub.add_parser("backtest", help="Fixed-strategy backtest")
    p_bt.add_argument("--ticker", required=True)
    p_bt.add_argument("--strategy", required=True, help="conservative | balanced | aggressive (or Pro1/Pro2/Pro3)")
    p_bt.add_argument("--start", default=None)
    p_bt.add_argument("--end", default=None)
    p_bt.add_argument("--capital", type=float, default=None)
    p_bt.add_argument("--csv", default=None, help="Read prices from CSV instead of the DB")
    p_bt.add_argument("--history", action="store_true", help="Include the daily history")
    p_bt.set_defaults(func=cmd_backtest)

    p_rec = sub.add_parser("recommend", help="Recommend a strategy as of a date")
    p_rec.add_argument("--ticker", required=True)
    p_rec.add_argument("--date", default=None, help="Reference date (default: latest)")
    p_rec.add_argument("--csv", default=None)
    p_rec.add_argument("--use-cache", action="store_true")
    p_rec.set_defaults(func=cmd_recommend)

    p_ad = sub.add_parser("adaptive", help="Backtest re-picking the strategy at each cycle")
    p_ad.add_argument("--ticker", required=True)
    p_ad.add_argument("--start", default=None)
    p_ad.add_argument("--end", default=None)
    p_ad.add_argument("--capital", type=float, default=None)
    p_ad.add_argument("--csv", default=None)
    p_ad.add_argument("--use-cache", action="store_true")
    p_ad.add_argument("--history", action="store_true")
    p_ad.set_defaults(func=cmd_adaptive)

    p_opt = sub.add_parser("optimize", help="Search similarity weights/tolerances for the adaptive backtest")
    p_opt.add_argument("--ticker", required=True)
    p_opt.add_argument("--start", default=None)
    p_opt.add_argument("--end", default=None)
    p_opt.add_argument("--capital", type=float, default=None)
    p_opt.add_argument("--csv", default=None)
    p_opt.add_argument("--random", type=int, default=50, help="Random parameter sets (default: 50)")
    p_opt.add_argument("--variations", type=int, default=10, help="Variations per top set (default: 10)")
    p_opt.add_argument("--top", type=int, default=3, help="Top sets to vary (default: 3)")
    p_opt.add_argument("--seed", type=int, default=None)
    p_opt.add_argument("--show", type=int, default=10, help="Ranked sets to print (default: 10)")
    p_opt.add_argument("--output", default=None, help="Write the full ranking as JSON")
    p_opt.set_defaults(func=cmd_optimize)

    p_imp = sub.add_parser("import-csv", help="Load a price CSV into the DB")
    p_imp.add_argument("--ticker", required=True)
    p_imp.add_argument("--csv", required=True)
    p_imp.set_defaults(func=cmd_import_csv)

    p_f = sub.add_parser("fetch", help="Fetch daily prices from Yahoo Finance into the DB")
    p_f.add_argument("--ticker", required=True)
    p_f.add_argument("--start", default=None, help="default: latest stored date")
    p_f.add_argument("--end", required=True)
    p_f.set_defaults(func=cmd_fetch)

    p_pre = sub.add_parser("precompute", help="Store indicator snapshots (and optionally recommendations)")
    p_pre.add_argument("--ticker", required=True)
    p_pre.add_argument("--start", default=None)
    p_pre.add_argument("--recommendations", action="store_true")
    p_pre.set_defaults(func=cmd_precompute)

    return p

def main(argv: Optional[List[str]] = None) -> None:
    p = build_parser()
    args = p.parse_args(argv)
    level = args.log_level or EngineConfig().log_level
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        args.func(args)
    except ValueError as e:
        _p({"ok": False, "error": str(e)})

if __name__ == "__main__":
    main()
