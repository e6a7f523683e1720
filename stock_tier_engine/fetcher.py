from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

import pandas as pd
import requests

from .prices import PricePoint, prices_from_frame

logger = logging.getLogger(__name__)

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"
YAHOO_HEADERS = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"}

def _to_date(d) -> date:
    if isinstance(d, date):
        return d
    return datetime.strptime(str(d), "%Y-%m-%d").date()

def fetch_daily_prices(
    ticker: str,
    start,
    end,
    session: Optional[requests.Session] = None,
    timeout: float = 15.0,
) -> List[PricePoint]:
    """Daily OHLCV plus adjusted close from the Yahoo Finance chart API.

    Returns an empty list on any network, HTTP or payload problem.
    """
    start_ts = int(datetime.combine(_to_date(start), datetime.min.time()).timestamp())
    end_ts = int(datetime.combine(_to_date(end), datetime.max.time()).timestamp())
    params = {"period1": start_ts, "period2": end_ts, "interval": "1d", "events": "history"}
    http = session or requests

    try:
        resp = http.get(YAHOO_CHART_URL.format(ticker=ticker), params=params, headers=YAHOO_HEADERS, timeout=timeout)
        if resp.status_code != 200:
            logger.warning("fetch %s: HTTP %s", ticker, resp.status_code)
            return []
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("fetch %s failed: %s", ticker, e)
        return []

    result = (data.get("chart") or {}).get("result") or []
    if not result:
        return []
    timestamps = result[0].get("timestamp") or []
    indicators = result[0].get("indicators") or {}
    quotes = (indicators.get("quote") or [{}])[0]
    adj_block = indicators.get("adjclose") or [{}]
    if not timestamps or not quotes:
        return []

    closes = quotes.get("close") or []
    df = pd.DataFrame(
        {
            "date": pd.to_datetime(timestamps, unit="s").strftime("%Y-%m-%d"),
            "open": quotes.get("open") or [None] * len(timestamps),
            "high": quotes.get("high") or [None] * len(timestamps),
            "low": quotes.get("low") or [None] * len(timestamps),
            "close": closes,
            "adj_close": adj_block[0].get("adjclose") or closes,
            "volume": quotes.get("volume") or [0] * len(timestamps),
        }
    )
    df = df.dropna(subset=["close"]).reset_index(drop=True)
    out = prices_from_frame(df)
    logger.info("fetched %d rows for %s", len(out), ticker)
    return out
