"""
Tests for the naive and batch indicator computations
"""

import math

import numpy as np
import pytest

from stock_tier_engine.indicators import (
    MIN_COMPLETE_INDEX,
    IndicatorSnapshot,
    compute_snapshot,
    compute_snapshots,
    is_golden_cross,
    roc_at,
    rsi_at,
    sma_at,
    rolling_volatility,
    volatility_at,
)

NUMERIC_FIELDS = ("ma20", "ma60", "ma_slope", "disparity", "rsi14", "roc12", "volatility20", "golden_cross")


def _assert_parity(values):
    batch = compute_snapshots(values)
    assert len(batch) == len(values)
    for i, b in enumerate(batch):
        n = compute_snapshot(values, i)
        for name in NUMERIC_FIELDS:
            nv, bv = getattr(n, name), getattr(b, name)
            assert (nv is None) == (bv is None), f"{name} availability differs at {i}"
            if nv is not None:
                assert abs(nv - bv) <= 1e-6, f"{name} differs at {i}: {nv} vs {bv}"
        assert n.is_golden_cross == b.is_golden_cross


class TestParity:
    """Batch and naive forms agree within 1e-6 wherever defined"""

    def test_rising(self, rising_closes):
        _assert_parity(rising_closes)

    def test_falling(self, falling_closes):
        _assert_parity(falling_closes)

    def test_random_walk(self, random_walk_closes):
        _assert_parity(random_walk_closes)

    def test_offset_window_matches_full_run(self, random_walk_closes):
        full = compute_snapshots(random_walk_closes)
        assert compute_snapshots(random_walk_closes, 100, 150) == full[100:150]

    def test_empty_range(self, random_walk_closes):
        assert compute_snapshots(random_walk_closes, 50, 50) == []


class TestRollingVolatility:
    def test_long_trending_series_does_not_drift(self):
        rng = np.random.default_rng(7)
        values = list(100.0 * np.cumprod(1.0 + rng.normal(0.002, 0.03, 4000)))
        batch = rolling_volatility(values)
        for i in (20, 1000, 2500, 3999):
            assert batch[i] == pytest.approx(volatility_at(values, i), abs=1e-6)

    def test_zero_price_blanks_only_windows_that_touch_it(self, random_walk_closes):
        values = list(random_walk_closes[:80])
        values[30] = 0.0
        batch = rolling_volatility(values)
        # the return from index 30 to 31 divides by zero
        for i in range(31, 51):
            assert volatility_at(values, i) is None
            assert np.isnan(batch[i])
        for i in (29, 51, 79):
            assert batch[i] == pytest.approx(volatility_at(values, i), abs=1e-6)

    def test_flat_series_is_zero(self):
        assert rolling_volatility([50.0] * 40)[39] == 0.0


class TestAvailability:
    def test_fields_become_available_at_expected_index(self, random_walk_closes):
        v = random_walk_closes
        assert compute_snapshot(v, 18).ma20 is None
        assert compute_snapshot(v, 19).ma20 is not None
        assert compute_snapshot(v, 11).roc12 is None
        assert compute_snapshot(v, 12).roc12 is not None
        assert compute_snapshot(v, 13).rsi14 is None
        assert compute_snapshot(v, 14).rsi14 is not None
        assert compute_snapshot(v, 19).volatility20 is None
        assert compute_snapshot(v, 20).volatility20 is not None
        assert compute_snapshot(v, 28).ma_slope is None
        assert compute_snapshot(v, 29).ma_slope is not None

    def test_complete_from_index_59(self, random_walk_closes):
        assert not compute_snapshot(random_walk_closes, MIN_COMPLETE_INDEX - 1).is_complete
        assert compute_snapshot(random_walk_closes, MIN_COMPLETE_INDEX).is_complete

    def test_out_of_range_is_empty(self, random_walk_closes):
        assert compute_snapshot(random_walk_closes, len(random_walk_closes)) == IndicatorSnapshot()
        assert compute_snapshot(random_walk_closes, -1) == IndicatorSnapshot()


class TestValues:
    def test_sma(self):
        values = [float(i) for i in range(1, 21)]
        assert sma_at(values, 20, 19) == 10.5

    def test_roc_percent(self):
        values = [100.0 + i for i in range(13)]
        assert roc_at(values, 12) == 12.0

    def test_rsi_is_100_without_losses(self, rising_closes):
        assert rsi_at(rising_closes, 50) == 100.0
        assert compute_snapshots(rising_closes)[50].rsi14 == 100.0

    def test_rsi_is_low_on_falling_series(self, falling_closes):
        assert rsi_at(falling_closes, 50) == 0.0

    def test_volatility_matches_numpy(self, random_walk_closes):
        v = np.asarray(random_walk_closes[:41])
        rets = v[1:] / v[:-1] - 1.0
        expected = np.std(rets[-20:], ddof=1) * math.sqrt(20) * 100.0
        assert volatility_at(random_walk_closes, 40) == pytest.approx(expected, abs=1e-9)

    def test_disparity_on_linear_series(self, rising_closes):
        snap = compute_snapshot(rising_closes, 59)
        expected = (rising_closes[59] - snap.ma20) / snap.ma20 * 100.0
        assert snap.disparity == pytest.approx(expected)
        assert snap.disparity > 0


class TestGoldenCross:
    def test_rising_is_golden(self, rising_closes):
        assert compute_snapshot(rising_closes, 100).is_golden_cross is True

    def test_falling_is_inverted(self, falling_closes):
        assert compute_snapshot(falling_closes, 100).is_golden_cross is False

    def test_flat_series_is_not_golden(self):
        flat = [50.0] * 80
        snap = compute_snapshot(flat, 79)
        assert snap.is_golden_cross is False
        assert snap.volatility20 == 0.0
        assert compute_snapshots(flat)[79].is_golden_cross is False

    def test_float_noise_ignored(self):
        assert not is_golden_cross(100.0 + 1e-12, 100.0)
        assert is_golden_cross(100.01, 100.0)
