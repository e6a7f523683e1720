"""
Tests for indicator similarity and analogue selection
"""

import pytest

from stock_tier_engine.config import DEFAULT_SIMILARITY_TOLERANCES, DEFAULT_SIMILARITY_WEIGHTS, EngineConfig
from stock_tier_engine.indicators import IndicatorSnapshot
from stock_tier_engine.similarity import (
    CatalogueEntry,
    build_catalogue,
    find_similar_periods,
    indicator_vector,
    similarity,
)


def _snap(slope=1.0, disparity=2.0, rsi=50.0, roc=3.0, vol=10.0, golden=True):
    return IndicatorSnapshot(
        ma20=100.0,
        ma60=99.0 if golden else 101.0,
        ma_slope=slope,
        disparity=disparity,
        rsi14=rsi,
        roc12=roc,
        volatility20=vol,
        golden_cross=1.0 if golden else -1.0,
        is_golden_cross=golden,
    )


def _sim(a, b):
    return similarity(a, b, DEFAULT_SIMILARITY_WEIGHTS, DEFAULT_SIMILARITY_TOLERANCES)


class TestSimilarity:
    def test_identical_vectors(self):
        vec = indicator_vector(_snap())
        assert _sim(vec, vec) == 1.0

    def test_decreases_with_distance(self):
        ref = indicator_vector(_snap())
        near = indicator_vector(_snap(rsi=55.0))
        far = indicator_vector(_snap(rsi=80.0))
        assert 0.0 <= _sim(ref, far) < _sim(ref, near) < 1.0

    def test_rounded_to_four_places(self):
        ref = indicator_vector(_snap())
        other = indicator_vector(_snap(slope=7.3, vol=13.1))
        value = _sim(ref, other)
        assert value == round(value, 4)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            similarity([1.0, 2.0], [1.0], [0.5, 0.5], [1.0, 1.0])

    def test_incomplete_snapshot_has_no_vector(self):
        with pytest.raises(ValueError):
            indicator_vector(IndicatorSnapshot(rsi14=50.0))


class TestCatalogue:
    def test_only_complete_snapshots(self, random_walk_prices):
        catalogue = build_catalogue(random_walk_prices)
        assert catalogue[0].index == 59
        assert len(catalogue) == len(random_walk_prices) - 59
        assert all(e.indicators.is_complete for e in catalogue)
        assert catalogue[0].date == random_walk_prices[59].date

    def test_end_index_inclusive(self, random_walk_prices):
        catalogue = build_catalogue(random_walk_prices, end_index=100)
        assert catalogue[-1].index == 100

    def test_short_series(self, random_walk_prices):
        assert build_catalogue(random_walk_prices[:40]) == []


class TestFindSimilar:
    def test_minimum_gap_respected(self, random_walk_prices):
        catalogue = build_catalogue(random_walk_prices)
        ref_index = 250
        ref = catalogue[ref_index - 59].indicators
        found = find_similar_periods(ref, ref_index, catalogue)
        assert len(found) == 3
        assert all(c.index <= ref_index - 40 for c in found)

    def test_sorted_by_similarity_then_date(self, random_walk_prices):
        catalogue = build_catalogue(random_walk_prices)
        found = find_similar_periods(catalogue[-1].indicators, len(random_walk_prices) - 1, catalogue)
        keys = [(-c.similarity, c.index) for c in found]
        assert keys == sorted(keys)

    def test_ties_prefer_earlier_dates(self):
        catalogue = [CatalogueEntry(i, f"d{i}", _snap()) for i in (100, 5, 0, 10)]
        found = find_similar_periods(_snap(), 200, catalogue)
        assert [c.index for c in found] == [0, 5, 10]
        assert all(c.similarity == 1.0 for c in found)

    def test_top_k(self):
        catalogue = [CatalogueEntry(i, f"d{i}", _snap()) for i in range(10)]
        found = find_similar_periods(_snap(), 200, catalogue, EngineConfig(top_k=5))
        assert len(found) == 5

    def test_orientation_filter(self):
        catalogue = [
            CatalogueEntry(0, "d0", _snap(golden=False)),
            CatalogueEntry(1, "d1", _snap(golden=True)),
        ]
        found = find_similar_periods(_snap(golden=True), 200, catalogue, match_orientation=True)
        assert [c.index for c in found] == [1]
        found = find_similar_periods(_snap(golden=True), 200, catalogue, match_orientation=False)
        assert [c.index for c in found] == [0, 1]

    def test_candidate_spacing(self):
        catalogue = [CatalogueEntry(i, f"d{i}", _snap()) for i in (0, 5, 30)]
        found = find_similar_periods(_snap(), 200, catalogue, EngineConfig(candidate_spacing=20))
        assert [c.index for c in found] == [0, 30]

    def test_nothing_eligible(self):
        catalogue = [CatalogueEntry(i, f"d{i}", _snap()) for i in range(100, 110)]
        assert find_similar_periods(_snap(), 120, catalogue) == []
