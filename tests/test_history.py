"""Unit tests for history.py: synthetic trend series."""

import random
from unittest.mock import MagicMock

import pytest

from history import TrendSummary, summarize_trend, synthesize_history


class TestSynthesizeHistory:
    def test_default_years_ascending(self, rng):
        series = synthesize_history(60, rng=rng)
        assert [year for year, _ in series] == [2018, 2019, 2020, 2021, 2022, 2023]

    def test_custom_window(self, rng):
        series = synthesize_history(60, rng=rng, end_year=2030, years=3)
        assert [year for year, _ in series] == [2028, 2029, 2030]

    def test_seeded_rng_is_reproducible(self):
        a = synthesize_history(55, rng=random.Random(7))
        b = synthesize_history(55, rng=random.Random(7))
        assert a == b

    def test_midpoint_jitter_shows_pure_drift(self):
        rng = MagicMock()
        rng.random.return_value = 0.5
        series = synthesize_history(50, rng=rng)
        # oldest point is six years back: 50 - 0.5 * 6
        assert series[0] == (2018, 47.0)
        assert series[-1] == (2023, 49.5)

    def test_jitter_bounds(self):
        low, high = MagicMock(), MagicMock()
        low.random.return_value = 0.0
        high.random.return_value = 0.999999
        assert synthesize_history(50, rng=low)[-1][1] == 44.5       # 50 - 5 - 0.5
        assert synthesize_history(50, rng=high)[-1][1] == pytest.approx(54.5, abs=0.1)

    def test_clamped_at_edges(self, rng):
        for _, score in synthesize_history(0, rng=rng):
            assert score >= 0
        for _, score in synthesize_history(100, rng=rng):
            assert score <= 100

    def test_rounded_to_one_decimal(self, rng):
        for _, score in synthesize_history(63, rng=rng):
            assert round(score, 1) == score

    def test_rejects_empty_window(self, rng):
        with pytest.raises(ValueError):
            synthesize_history(50, rng=rng, years=0)


class TestSummarizeTrend:
    def test_rising_series(self):
        series = [(2018, 40.0), (2019, 42.5), (2020, 41.0), (2021, 44.0), (2022, 43.0), (2023, 45.2)]
        trend = summarize_trend(series)
        assert trend.change == 5.2
        assert trend.change_label == "+5.2"
        assert trend.direction == "More rural"
        assert trend.peak_year == 2023
        assert trend.volatility == "Low"

    def test_falling_series(self):
        trend = summarize_trend([(2018, 60.0), (2019, 58.0), (2020, 55.5)])
        assert trend.change == -4.5
        assert trend.change_label == "-4.5"
        assert trend.direction == "Less rural"
        assert trend.peak_year == 2018

    def test_flat_series_reads_less_rural(self):
        trend = summarize_trend([(2022, 50.0), (2023, 50.0)])
        assert trend.change == 0
        assert trend.change_label == "0.0"
        assert trend.direction == "Less rural"

    def test_peak_tie_goes_to_later_year(self):
        trend = summarize_trend([(2018, 47.0), (2019, 52.0), (2020, 49.0), (2021, 52.0)])
        assert trend.peak_year == 2021

    def test_spread_of_exactly_ten_is_high(self):
        trend = summarize_trend([(2018, 40.0), (2019, 50.0), (2020, 45.0)])
        assert trend.spread == 10.0
        assert trend.volatility == "High"

    def test_spread_just_under_ten_is_low(self):
        trend = summarize_trend([(2018, 40.0), (2019, 49.9), (2020, 45.0)])
        assert trend.spread == 9.9
        assert trend.volatility == "Low"

    def test_unordered_input(self):
        trend = summarize_trend([(2020, 45.0), (2018, 40.0), (2019, 42.0)])
        assert trend.change == 5.0
        assert trend.peak_year == 2020

    def test_seeded_history(self):
        series = synthesize_history(60, rng=random.Random(42))
        trend = summarize_trend(series)
        scores = [s for _, s in series]
        assert trend.change == round(scores[-1] - scores[0], 1)
        assert trend.spread == round(max(scores) - min(scores), 1)
        assert trend.peak_year == max(y for y, s in series if s == max(scores))
        assert trend == summarize_trend(synthesize_history(60, rng=random.Random(42)))

    def test_jitter_span_bounds_volatility(self):
        # six years of drift plus at most a full jitter span
        rng = MagicMock()
        rng.random.side_effect = [0.0, 0.999, 0.0, 0.999, 0.0, 0.999]
        trend = summarize_trend(synthesize_history(50, rng=rng))
        assert trend.volatility == "High"

    def test_to_dict(self):
        d = summarize_trend([(2018, 40.0), (2023, 43.0)]).to_dict()
        assert d == {
            "change": 3.0,
            "change_label": "+3.0",
            "direction": "More rural",
            "peak_year": 2023,
            "spread": 3.0,
            "volatility": "Low",
        }

    def test_frozen(self):
        trend = summarize_trend([(2018, 40.0), (2023, 43.0)])
        assert isinstance(trend, TrendSummary)
        with pytest.raises(Exception):
            trend.change = 1.0

    def test_empty_series(self):
        with pytest.raises(ValueError):
            summarize_trend([])
