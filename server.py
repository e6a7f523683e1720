from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from flask import Flask, jsonify, request
from flask_cors import CORS

from stock_tier_engine.adaptive import run_adaptive_backtest
from stock_tier_engine.backtester import run_backtest
from stock_tier_engine.cache import SQLiteRecommendationCache
from stock_tier_engine.config import EngineConfig
from stock_tier_engine.db import connect, ensure_schema, fetch_catalogue, fetch_prices, list_tickers
from stock_tier_engine.prices import index_of
from stock_tier_engine.recommender import recommend
from stock_tier_engine.strategy import Strategy

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})
app.config["TIER_DB_PATH"] = os.getenv("TIER_DB_PATH", "market_data.db")
app.config["TIER_PRICE_TABLE"] = os.getenv("TIER_PRICE_TABLE", "daily_price")
app.config["TIER_USE_CACHE"] = os.getenv("TIER_USE_CACHE", "1") not in ("0", "false", "no", "off")

class BadRequest(ValueError):
    pass

class NotFound(Exception):
    pass

def _cfg() -> EngineConfig:
    cfg = EngineConfig(db_path=str(app.config["TIER_DB_PATH"]), price_table=str(app.config["TIER_PRICE_TABLE"]))
    ensure_schema(cfg.db_path, cfg.price_table, cfg.metrics_table, cfg.cache_table)
    return cfg

def get_conn() -> sqlite3.Connection:
    conn = connect(str(app.config["TIER_DB_PATH"]))
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn

def _safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        if isinstance(value, str):
            value = value.replace(",", "").strip()
        num = float(value)
        if num != num or num in (float("inf"), float("-inf")):
            return None
        return num
    except (TypeError, ValueError):
        return None

def _json_sanitize(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(getattr(k, "value", k)): _json_sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_sanitize(v) for v in value]
    if isinstance(value, Strategy):
        return value.value
    if isinstance(value, (np.integer, np.floating)):
        value = value.item()
    if isinstance(value, (np.bool_,)):
        return bool(value)
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value

def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}

def _ticker(payload: Dict[str, Any]) -> str:
    ticker = str(payload.get("ticker") or "").strip().upper()
    if not ticker:
        raise BadRequest("ticker is required")
    return ticker

def _capital(payload: Dict[str, Any], cfg: EngineConfig) -> float:
    if payload.get("initialCapital") is None:
        return cfg.initial_capital
    capital = _safe_float(payload.get("initialCapital"))
    if capital is None or capital <= 0:
        raise BadRequest("initialCapital must be a positive number")
    return capital

def _window(cfg: EngineConfig, ticker: str, payload: Dict[str, Any]) -> Tuple[list, int]:
    start = payload.get("startDate")
    end = payload.get("endDate")
    if start and end and str(start) > str(end):
        raise BadRequest("startDate must not be after endDate")
    prices = fetch_prices(cfg.db_path, ticker, table=cfg.price_table, end=end)
    if not prices:
        raise NotFound(f"no price data for {ticker}")
    start_index = 0
    if start:
        start_index = next((i for i, p in enumerate(prices) if p.date >= str(start)), len(prices))
    if len(prices) - start_index < 2:
        raise BadRequest("at least 2 trading days are required in the requested range")
    return prices, start_index

@app.errorhandler(BadRequest)
def _bad_request(e: BadRequest):
    return jsonify({"error": str(e)}), 400

@app.errorhandler(NotFound)
def _not_found(e: NotFound):
    return jsonify({"error": str(e.args[0]) if e.args else "not found"}), 404

@app.get("/api/health")
def health():
    return jsonify({"status": "ok"})

@app.get("/api/tickers")
def tickers():
    cfg = _cfg()
    return jsonify([{"ticker": t, "rows": n} for t, n in list_tickers(cfg.db_path, table=cfg.price_table)])

@app.get("/api/prices")
def prices():
    ticker = (request.args.get("ticker") or "").strip().upper()
    try:
        days = int(request.args.get("days", 180))
    except (TypeError, ValueError):
        raise BadRequest("days must be an integer")
    if days <= 0:
        raise BadRequest("days must be positive")
    if not ticker:
        return jsonify([])
    cfg = _cfg()
    conn = get_conn()
    try:
        df = pd.read_sql_query(
            f"""
            SELECT date, open, high, low, close, adj_close, volume
            FROM {cfg.price_table}
            WHERE ticker=?
            ORDER BY date DESC
            LIMIT ?
            """,
            conn,
            params=(ticker, days),
        )
    finally:
        conn.close()
    df = df.replace([np.inf, -np.inf], np.nan)
    df = df.astype(object).where(pd.notnull(df), None)
    return jsonify(df.to_dict(orient="records"))

@app.post("/api/backtest")
def backtest():
    payload = _payload()
    cfg = _cfg()
    ticker = _ticker(payload)
    try:
        strategy = Strategy.parse(payload.get("strategy") or "")
    except ValueError as e:
        raise BadRequest(str(e))
    capital = _capital(payload, cfg)
    prices_, start_index = _window(cfg, ticker, payload)
    res = run_backtest(prices_, strategy, capital, start_index=start_index, config=cfg)
    out = res.to_dict(include_history=bool(payload.get("includeHistory", True)))
    return jsonify(_json_sanitize({"ticker": ticker, **out}))

@app.post("/api/recommend")
def recommend_strategy():
    payload = _payload()
    cfg = _cfg()
    ticker = _ticker(payload)
    ref_date = payload.get("referenceDate")
    prices_ = fetch_prices(cfg.db_path, ticker, table=cfg.price_table, end=ref_date)
    if not prices_:
        raise NotFound(f"no price data for {ticker}")
    idx = len(prices_) - 1 if not ref_date else index_of(prices_, str(ref_date))
    if idx is None:
        raise NotFound(f"no trading day on or before {ref_date}")
    cache = SQLiteRecommendationCache(cfg.db_path, cfg.cache_table) if app.config["TIER_USE_CACHE"] else None
    catalogue = fetch_catalogue(cfg.db_path, ticker, prices_, table=cfg.metrics_table) or None
    rec = recommend(prices_, idx, cfg, catalogue=catalogue, cache=cache, ticker=ticker)
    return jsonify(_json_sanitize(rec.to_dict()))

@app.post("/api/backtest-recommend")
def backtest_recommend():
    payload = _payload()
    cfg = _cfg()
    ticker = _ticker(payload)
    capital = _capital(payload, cfg)
    prices_, start_index = _window(cfg, ticker, payload)
    cache = SQLiteRecommendationCache(cfg.db_path, cfg.cache_table) if app.config["TIER_USE_CACHE"] else None
    catalogue = fetch_catalogue(cfg.db_path, ticker, prices_, table=cfg.metrics_table) or None
    res = run_adaptive_backtest(
        prices_, capital, start_index=start_index, config=cfg,
        ticker=ticker, cache=cache, catalogue=catalogue,
    )
    out = res.to_dict(include_history=bool(payload.get("includeHistory", True)))
    return jsonify(_json_sanitize({"ticker": ticker, **out}))

if __name__ == "__main__":
    host = os.getenv("TIER_SERVER_HOST", "0.0.0.0")
    port = int(os.getenv("TIER_SERVER_PORT", "5001"))
    app.run(host=host, port=port)
