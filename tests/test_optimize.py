"""
Tests for the similarity parameter search
"""

import math
from types import SimpleNamespace
from unittest.mock import patch

import numpy as np
import pytest

from stock_tier_engine import optimize as optimize_mod
from stock_tier_engine.adaptive import run_adaptive_backtest
from stock_tier_engine.config import DEFAULT_SIMILARITY_TOLERANCES, DEFAULT_SIMILARITY_WEIGHTS, EngineConfig
from stock_tier_engine.optimize import (
    OptimizationMetrics,
    SimilarityParams,
    analyze_results,
    generate_random_params,
    generate_variations,
    normalize_weights,
    optimize,
    strategy_score,
    validate_params,
)

DEFAULTS = SimilarityParams(DEFAULT_SIMILARITY_WEIGHTS, DEFAULT_SIMILARITY_TOLERANCES)


def _metrics(score, mdd=-0.1, ret=None):
    return OptimizationMetrics(
        return_rate=score if ret is None else ret, mdd=mdd, strategy_score=score, total_cycles=1, win_rate=1.0
    )


class TestNormalizeWeights:
    def test_already_normalized(self):
        out = normalize_weights([0.3, 0.4, 0.1, 0.1, 0.1])
        assert out == pytest.approx((0.3, 0.4, 0.1, 0.1, 0.1))
        assert abs(math.fsum(out) - 1.0) <= 1e-10

    def test_scaled_to_one(self):
        assert normalize_weights([1, 1, 1, 1, 1]) == pytest.approx((0.2,) * 5)

    def test_small_weight_lifted_to_minimum(self):
        out = normalize_weights([0.001, 1, 1, 1, 1])
        assert out[0] == pytest.approx(0.01)
        assert out[1:] == pytest.approx((0.2475,) * 4)
        assert abs(math.fsum(out) - 1.0) <= 1e-10

    def test_all_zero_gives_equal_weights(self):
        assert normalize_weights([0, 0, 0, 0, 0]) == (0.2,) * 5

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            normalize_weights([0.5, 0.5])

    def test_accepted_by_config(self):
        cfg = EngineConfig(similarity_weights=normalize_weights([0.37, 0.21, 0.05, 0.33, 0.19]))
        assert len(cfg.similarity_weights) == 5


class TestValidateParams:
    def test_defaults_valid(self):
        assert validate_params(DEFAULTS)

    def test_weight_above_range(self):
        assert not validate_params(SimilarityParams((0.6, 0.1, 0.1, 0.1, 0.1), DEFAULT_SIMILARITY_TOLERANCES))

    def test_weights_not_summing_to_one(self):
        assert not validate_params(SimilarityParams((0.2, 0.2, 0.2, 0.2, 0.1), DEFAULT_SIMILARITY_TOLERANCES))

    def test_tolerance_out_of_range(self):
        assert not validate_params(SimilarityParams(DEFAULT_SIMILARITY_WEIGHTS, (36.0, 90.0, 25.0, 40.0, 28.0)))


class TestGeneration:
    def test_random_sets_valid(self):
        params = generate_random_params(20, np.random.default_rng(1))
        assert len(params) == 20
        assert all(validate_params(p) for p in params)
        assert len(set(params)) == 20

    def test_random_sets_seeded(self):
        assert generate_random_params(5, np.random.default_rng(9)) == generate_random_params(5, np.random.default_rng(9))

    def test_variations_stay_near_base(self):
        for p in generate_variations(DEFAULTS, 10, np.random.default_rng(2)):
            assert validate_params(p)
            for t, base in zip(p.tolerances, DEFAULTS.tolerances):
                assert abs(t - base) <= base * 0.1 + 0.005

    def test_zero_count(self):
        assert generate_random_params(0) == []


class TestStrategyScore:
    def test_value(self):
        # 0.45 * exp(-0.0018)
        assert strategy_score(0.45, -0.18) == 0.449191

    def test_zero_return(self):
        assert strategy_score(0.0, -0.5) == 0.0


class TestAnalyzeResults:
    def test_ranking_and_improvement(self):
        a = SimilarityParams((0.2,) * 5, (50.0, 100.0, 10.0, 50.0, 40.0))
        b = SimilarityParams((0.2,) * 5, (60.0, 100.0, 10.0, 50.0, 40.0))
        c = SimilarityParams((0.2,) * 5, (70.0, 100.0, 10.0, 50.0, 40.0))
        baseline = _metrics(0.4, mdd=-0.2)
        result = analyze_results(DEFAULTS, baseline, [(a, _metrics(0.5, -0.3)), (b, _metrics(0.5, -0.1)), (c, _metrics(0.2))])

        assert [r.params for r in result.candidates] == [b, a, c]
        assert [r.rank for r in result.candidates] == [1, 2, 3]
        assert result.best_candidate.params == b
        assert result.best_candidate.improvement["mdd"] == 0.1
        assert result.best_candidate.improvement["strategy_score"] == 0.1
        assert result.summary.improvement_percent == 25.0
        assert result.summary.total_combinations == 3

    def test_no_candidates(self):
        result = analyze_results(DEFAULTS, _metrics(0.4), [])
        assert result.best_candidate is None
        assert result.summary.best_score is None
        assert result.summary.improvement_percent == 0.0
        assert result.to_dict()["best_candidate"] is None

    def test_zero_baseline_score(self):
        result = analyze_results(DEFAULTS, _metrics(0.0), [(DEFAULTS, _metrics(0.3))])
        assert result.summary.improvement_percent == 0.0


class TestOptimizeSearch:
    @pytest.fixture
    def recorded(self):
        configs = []

        def fake(prices, initial_capital, start_index=0, config=None, **kwargs):
            configs.append(config)
            return SimpleNamespace(return_rate=config.similarity_weights[0], mdd=-0.1, total_cycles=2, win_rate=0.5)

        with patch.object(optimize_mod, "run_adaptive_backtest", side_effect=fake):
            yield configs

    def test_counts_and_order(self, recorded, random_walk_prices, sequential_config):
        result = optimize(
            random_walk_prices, sequential_config, random_count=6, variations_per_top=2, top_candidates=2,
            seed=5, catalogue=[],
        )
        assert len(recorded) == 1 + 6 + 2 * 2
        assert result.summary.total_combinations == 10
        scores = [c.metrics.strategy_score for c in result.candidates]
        assert scores == sorted(scores, reverse=True)

    def test_baseline_uses_config_parameters(self, recorded, random_walk_prices, sequential_config):
        result = optimize(random_walk_prices, sequential_config, random_count=2, variations_per_top=0, seed=5, catalogue=[])
        assert recorded[0].similarity_weights == sequential_config.similarity_weights
        assert result.baseline_params == DEFAULTS

    def test_shared_config_never_mutated(self, recorded, random_walk_prices, sequential_config):
        before = EngineConfig(max_workers=1)
        optimize(random_walk_prices, sequential_config, random_count=4, variations_per_top=1, top_candidates=1, seed=5, catalogue=[])
        assert sequential_config == before
        assert all(c is not sequential_config for c in recorded)
        assert len({c.similarity_weights for c in recorded[1:]}) == len(recorded) - 1

    def test_seed_reproducible(self, recorded, random_walk_prices, sequential_config):
        first = optimize(random_walk_prices, sequential_config, random_count=3, variations_per_top=1, top_candidates=1, seed=11, catalogue=[])
        second = optimize(random_walk_prices, sequential_config, random_count=3, variations_per_top=1, top_candidates=1, seed=11, catalogue=[])
        assert [c.params for c in first.candidates] == [c.params for c in second.candidates]

    def test_rejects_negative_counts(self, random_walk_prices, sequential_config):
        with pytest.raises(ValueError):
            optimize(random_walk_prices, sequential_config, random_count=-1)

    def test_needs_two_points(self, random_walk_prices, sequential_config):
        with pytest.raises(ValueError):
            optimize(random_walk_prices[:1], sequential_config)


class TestOptimizeEndToEnd:
    def test_small_search(self, random_walk_prices, sequential_config):
        result = optimize(
            random_walk_prices, sequential_config, start_index=250, random_count=2, variations_per_top=1,
            top_candidates=1, seed=1,
        )
        plain = run_adaptive_backtest(random_walk_prices, start_index=250, config=sequential_config)
        assert result.baseline.return_rate == plain.return_rate
        assert result.baseline.mdd == plain.mdd
        assert result.summary.total_combinations == 3
        assert all(validate_params(c.params) for c in result.candidates)
