"""
Tests for candidate evaluation, scoring and selection
"""

from unittest.mock import patch

import pytest

from stock_tier_engine import scoring
from stock_tier_engine.config import EngineConfig
from stock_tier_engine.indicators import IndicatorSnapshot
from stock_tier_engine.scoring import (
    StrategyScore,
    evaluate_candidates,
    period_score,
    recommend_reason,
    score_strategies,
    select_strategy,
)
from stock_tier_engine.similarity import PeriodResult, SimilarPeriodCandidate, build_catalogue, find_similar_periods
from stock_tier_engine.strategy import Strategy


def _candidate(index, sim, returns):
    return SimilarPeriodCandidate(
        index=index,
        date=f"d{index}",
        indicators=IndicatorSnapshot(),
        similarity=sim,
        results={s: PeriodResult(return_rate=r, mdd=0.0) for s, r in zip(Strategy, returns)},
    )


@pytest.fixture
def analogues(random_walk_prices):
    catalogue = build_catalogue(random_walk_prices)
    ref_index = 260
    ref = catalogue[ref_index - 59].indicators
    return find_similar_periods(ref, ref_index, catalogue)


class TestPeriodScore:
    def test_drawdown_penalty(self):
        ps = period_score(PeriodResult(return_rate=0.1, mdd=-0.05))
        assert ps.return_rate == 10.0
        assert ps.mdd == -5.0
        assert ps.score == 9.5122

    def test_no_drawdown_keeps_return(self):
        assert period_score(PeriodResult(return_rate=0.2, mdd=0.0)).score == 20.0

    def test_zero_return(self):
        assert period_score(PeriodResult(return_rate=0.0, mdd=-0.3)).score == 0.0


class TestScoreStrategies:
    def test_similarity_weighted_average(self):
        candidates = [_candidate(0, 1.0, (0.1, 0.2, 0.3)), _candidate(50, 0.5, (0.0, 0.1, -0.1))]
        scores = {s.strategy: s for s in score_strategies(candidates, is_golden_cross=False)}
        assert scores[Strategy.CONSERVATIVE].average_score == 6.6666
        assert scores[Strategy.BALANCED].average_score == 16.6666
        assert scores[Strategy.AGGRESSIVE].average_score == 16.6666
        assert len(scores[Strategy.BALANCED].period_scores) == 2

    def test_tie_goes_to_more_conservative(self):
        candidates = [_candidate(0, 1.0, (0.1, 0.2, 0.3)), _candidate(50, 0.5, (0.0, 0.1, -0.1))]
        scores = score_strategies(candidates, is_golden_cross=False)
        assert select_strategy(scores) == Strategy.BALANCED
        assert recommend_reason(Strategy.BALANCED, scores) == "highest average score 16.67"

    def test_golden_cross_excludes_aggressive(self):
        candidates = [_candidate(0, 1.0, (0.0, 0.1, 0.5))]
        scores = score_strategies(candidates, is_golden_cross=True)
        aggressive = [s for s in scores if s.strategy == Strategy.AGGRESSIVE][0]
        assert aggressive.excluded and aggressive.exclude_reason
        assert select_strategy(scores) == Strategy.BALANCED

    def test_divergence_lifts_exclusion(self):
        candidates = [_candidate(0, 1.0, (0.0, 0.1, 0.5))]
        scores = score_strategies(candidates, is_golden_cross=True, divergence_override=True)
        assert not any(s.excluded for s in scores)
        assert select_strategy(scores) == Strategy.AGGRESSIVE

    def test_invalid_candidates_ignored(self):
        bad = SimilarPeriodCandidate(index=9, date="d9", indicators=IndicatorSnapshot(), similarity=1.0)
        scores = score_strategies([bad, _candidate(0, 0.5, (0.3, 0.2, 0.1))], is_golden_cross=False)
        assert select_strategy(scores) == Strategy.CONSERVATIVE
        assert all(len(s.period_scores) == 1 for s in scores)

    def test_all_excluded_falls_back(self):
        scores = [StrategyScore(strategy=s, average_score=5.0, excluded=True) for s in Strategy]
        assert select_strategy(scores) == Strategy.BALANCED


class TestEvaluateCandidates:
    def test_attaches_results_and_dates(self, random_walk_prices, analogues, sequential_config):
        evaluated = evaluate_candidates(random_walk_prices, analogues, sequential_config)
        for c in evaluated:
            assert c.is_valid
            assert set(c.results) == set(Strategy)
            assert c.performance_start_date == random_walk_prices[c.index + 1].date
            assert c.performance_end_date == random_walk_prices[c.index + 20].date
            assert c.analysis_start_date == random_walk_prices[c.index - 19].date

    def test_concurrent_matches_sequential(self, random_walk_prices, analogues):
        seq = evaluate_candidates(random_walk_prices, analogues, EngineConfig(max_workers=1))
        par = evaluate_candidates(random_walk_prices, analogues, EngineConfig(max_workers=4))
        assert seq == par

    def test_missing_performance_window_fails_candidate(self, random_walk_prices, sequential_config):
        late = SimilarPeriodCandidate(
            index=len(random_walk_prices) - 5, date="late", indicators=IndicatorSnapshot(), similarity=1.0
        )
        out = evaluate_candidates(random_walk_prices, [late], sequential_config)
        assert not out[0].is_valid
        assert out[0].failed == frozenset(Strategy)

    def test_failed_backtest_marks_candidate(self, random_walk_prices, analogues, sequential_config):
        real = scoring._run_period

        def flaky(window, strategy, cfg):
            if strategy == Strategy.AGGRESSIVE:
                raise ValueError("boom")
            return real(window, strategy, cfg)

        with patch.object(scoring, "_run_period", side_effect=flaky):
            out = evaluate_candidates(random_walk_prices, analogues, sequential_config)
        for c in out:
            assert c.failed == frozenset({Strategy.AGGRESSIVE})
            assert not c.is_valid
            assert Strategy.BALANCED in c.results
