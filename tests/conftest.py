"""
Pytest configuration and fixtures
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add repo root to path so the package and server module import without installing
parent_dir = Path(__file__).parent.parent
sys.path.insert(0, str(parent_dir))

from stock_tier_engine.prices import PricePoint  # noqa: E402


def build_prices(closes, start="2020-01-01", adj_factor=1.0):
    dates = pd.bdate_range(start=start, periods=len(closes)).strftime("%Y-%m-%d")
    return [
        PricePoint(
            date=str(d),
            open=float(c),
            high=float(c),
            low=float(c),
            close=float(c),
            adj_close=float(c) * adj_factor,
            volume=1000,
        )
        for d, c in zip(dates, closes)
    ]


@pytest.fixture
def make_prices():
    """Factory: list of closes -> list[PricePoint] on consecutive business days"""
    return build_prices


@pytest.fixture
def rising_closes():
    return [100.0 + 0.5 * i for i in range(200)]


@pytest.fixture
def falling_closes():
    return [300.0 - 0.7 * i for i in range(200)]


@pytest.fixture
def random_walk_closes():
    rng = np.random.default_rng(42)
    rets = rng.normal(0.0005, 0.02, size=300)
    return list(100.0 * np.cumprod(1.0 + rets))


@pytest.fixture
def random_walk_prices(random_walk_closes):
    return build_prices(random_walk_closes)


@pytest.fixture
def zigzag_prices():
    """100, 99, 102, 99, 102, ... every strategy completes a cycle every two days"""
    closes = [100.0] + [99.0 if i % 2 == 0 else 102.0 for i in range(20)]
    return build_prices(closes)


@pytest.fixture
def sequential_config():
    from stock_tier_engine.config import EngineConfig

    return EngineConfig(max_workers=1)
