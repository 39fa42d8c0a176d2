"""
Synthetic historical trend series.

There is no historical data feed; the series is an illustrative trend
anchored on the current score: each earlier year is the current score plus
uniform jitter, minus a small drift per year of age.  Callers wanting
reproducible output pass a seeded random.Random.
"""

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from scoring_config import SCORING_MODEL, HistoryConfig, clamp

HistoryPoint = Tuple[int, float]


def synthesize_history(
    current_score: float,
    rng: Optional[random.Random] = None,
    end_year: Optional[int] = None,
    years: Optional[int] = None,
    params: HistoryConfig = SCORING_MODEL.history,
) -> Tuple[HistoryPoint, ...]:
    """Return ((year, score), ...) in ascending year order.

    The oldest point is *years* years old and drifts furthest from the
    current score; the latest point (end_year) drifts 0.5.  Scores are
    clamped to [0, 100] and rounded to one decimal.
    """
    rng = rng or random.Random()
    end_year = params.end_year if end_year is None else end_year
    years = params.years if years is None else years
    if years < 1:
        raise ValueError(f"years must be >= 1, got {years}")

    start_year = end_year - years + 1
    series = []
    for i in range(years):
        years_ago = years - i
        jitter = (rng.random() - 0.5) * params.jitter_span
        score = clamp(current_score + jitter - params.decay_per_year * years_ago)
        series.append((start_year + i, round(score, 1)))
    return tuple(series)


@dataclass(frozen=True)
class TrendSummary:
    change: float          # latest minus oldest, one decimal
    direction: str         # "More rural" | "Less rural"
    peak_year: int
    spread: float          # max minus min
    volatility: str        # "Low" | "High"

    @property
    def change_label(self) -> str:
        return f"+{self.change:.1f}" if self.change > 0 else f"{self.change:.1f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "change": self.change,
            "change_label": self.change_label,
            "direction": self.direction,
            "peak_year": self.peak_year,
            "spread": self.spread,
            "volatility": self.volatility,
        }


def summarize_trend(
    series: Sequence[HistoryPoint],
    params: HistoryConfig = SCORING_MODEL.history,
) -> TrendSummary:
    """Change, peak year and volatility of a (year, score) series.

    A flat series counts as "Less rural".  Ties for the peak go to the
    later year.
    """
    if not series:
        raise ValueError("series is empty")
    points = sorted(series)
    first, last = points[0][1], points[-1][1]
    change = round(last - first, 1) + 0.0   # no "-0.0"

    peak_year, peak_score = points[0]
    for year, score in points[1:]:
        if score >= peak_score:
            peak_year, peak_score = year, score

    scores = [score for _, score in points]
    spread = round(max(scores) - min(scores), 1)
    return TrendSummary(
        change=change,
        direction="More rural" if change > 0 else "Less rural",
        peak_year=peak_year,
        spread=spread,
        volatility="Low" if spread < params.volatility_threshold else "High",
    )
