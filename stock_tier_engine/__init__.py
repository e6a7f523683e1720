"""Tiered, capital-compounding backtest and strategy recommendation engine (daily bars).

Core idea:
- Each cycle splits its capital over 6 tiers (plus a reserve tier 7 holding the rest).
- Every day one LOC buy is placed just below the prior close; each held tier has a
  LOC sell target above its fill and is force-sold at the close after N holding days.
- When a cycle has traded and holds nothing, its cash becomes the next cycle's capital.
- A recommendation finds historical dates with similar indicators, backtests every
  strategy over the bars that followed them and picks the best MDD-weighted score.
"""

__all__ = [
    "config",
    "pricing",
    "strategy",
    "prices",
    "indicators",
    "divergence",
    "cycle",
    "metrics",
    "backtester",
    "downgrade",
    "similarity",
    "scoring",
    "cache",
    "recommender",
    "adaptive",
    "optimize",
    "db",
    "fetcher",
    "cli",
]
