"""
Tests for the Yahoo Finance price fetcher
"""

from unittest.mock import Mock

import requests

from stock_tier_engine.fetcher import YAHOO_CHART_URL, fetch_daily_prices

CHART = {
    "chart": {
        "result": [
            {
                "timestamp": [1704153600, 1704240000, 1704326400],
                "indicators": {
                    "quote": [
                        {
                            "open": [10.0, 10.5, None],
                            "high": [10.8, 11.0, None],
                            "low": [9.9, 10.2, None],
                            "close": [10.5, 10.9, None],
                            "volume": [1000, 1200, None],
                        }
                    ],
                    "adjclose": [{"adjclose": [10.4, 10.8, None]}],
                },
            }
        ],
        "error": None,
    }
}


def _session(status=200, payload=None, exc=None):
    session = Mock()
    if exc is not None:
        session.get.side_effect = exc
    else:
        session.get.return_value = Mock(status_code=status, json=Mock(return_value=payload))
    return session


class TestFetchDailyPrices:
    def test_parses_chart_payload(self):
        session = _session(payload=CHART)
        prices = fetch_daily_prices("SPY", "2024-01-01", "2024-01-05", session=session)
        assert [p.date for p in prices] == ["2024-01-02", "2024-01-03"]
        assert prices[0].close == 10.5
        assert prices[0].adj_close == 10.4
        assert prices[1].volume == 1200

        args, kwargs = session.get.call_args
        assert args[0] == YAHOO_CHART_URL.format(ticker="SPY")
        assert kwargs["params"]["interval"] == "1d"

    def test_http_error_returns_empty(self):
        assert fetch_daily_prices("SPY", "2024-01-01", "2024-01-05", session=_session(status=500)) == []

    def test_network_error_returns_empty(self):
        session = _session(exc=requests.ConnectionError("down"))
        assert fetch_daily_prices("SPY", "2024-01-01", "2024-01-05", session=session) == []

    def test_empty_result(self):
        payload = {"chart": {"result": None, "error": {"code": "Not Found"}}}
        assert fetch_daily_prices("NOPE", "2024-01-01", "2024-01-05", session=_session(payload=payload)) == []

    def test_missing_adjclose_uses_close(self):
        payload = {
            "chart": {
                "result": [
                    {
                        "timestamp": [1704153600],
                        "indicators": {"quote": [{"open": [1.0], "high": [1.0], "low": [1.0], "close": [1.2], "volume": [5]}]},
                    }
                ]
            }
        }
        prices = fetch_daily_prices("X", "2024-01-01", "2024-01-05", session=_session(payload=payload))
        assert prices[0].adj_close == 1.2
