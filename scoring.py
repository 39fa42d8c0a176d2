"""
Rurality scoring: metric normalization, weighted aggregation, tiers.

Every transfer function maps one raw metric onto a 0-100 sub-score where
higher means more rural, and clamps its output.  Missing raw values are
replaced with the neutral defaults from SCORING_MODEL.defaults before the
formula runs, so a missing metric never enters a formula as zero.

All functions here are pure and deterministic.
"""

import math
from typing import Callable, Dict, Mapping, Optional, Tuple, Union

from metric_sources import RawMetricBundle
from scoring_config import (
    SCORING_MODEL,
    RuralityModel,
    RuralityTier,
    clamp,
    round_half_up,
)

Number = Union[int, float]


def _or_default(value: Optional[Number], default: Number) -> float:
    """Return *value* as float, or *default* when missing or non-finite."""
    if value is None:
        return float(default)
    try:
        value = float(value)
    except (TypeError, ValueError):
        return float(default)
    if not math.isfinite(value):
        return float(default)
    return value


# =============================================================================
# Transfer functions
# =============================================================================

def normalize_population_density(
    density: Optional[Number], model: RuralityModel = SCORING_MODEL,
) -> float:
    """Lower density -> higher rurality."""
    t = model.transfer
    d = _or_default(density, model.defaults.population_density)
    return clamp((t.density_ceiling - d) / t.density_divisor)


def normalize_distance_to_urban(
    miles: Optional[Number], model: RuralityModel = SCORING_MODEL,
) -> float:
    """Farther from a metro -> higher rurality.  Missing distance scores 0."""
    return clamp(_or_default(miles, 0.0) * model.transfer.distance_multiplier)


def normalize_agricultural_land(
    pct: Optional[Number], model: RuralityModel = SCORING_MODEL,
) -> float:
    """Agricultural land share is already on a 0-100 scale."""
    return clamp(_or_default(pct, model.defaults.agricultural_land_pct))


def normalize_internet_access(
    availability_pct: Optional[Number], model: RuralityModel = SCORING_MODEL,
) -> float:
    """Less fixed broadband -> higher rurality."""
    return clamp(100.0 - _or_default(
        availability_pct, model.defaults.broadband_availability_pct))


def normalize_rural_urban_code(
    code: Optional[Number], model: RuralityModel = SCORING_MODEL,
) -> float:
    """USDA continuum code 1 (metro core) .. 9 (remote rural) rescaled."""
    c = _or_default(code, model.defaults.rural_urban_code)
    return clamp(c / model.transfer.rural_urban_code_max * 100.0)


def normalize_healthcare_access(
    density: Optional[Number], model: RuralityModel = SCORING_MODEL,
) -> float:
    """Healthcare scarcity, proxied by population density.

    Sparse counties support fewer facilities; there is no national
    facility-per-capita feed, so density stands in for it.
    """
    t = model.transfer
    d = _or_default(density, model.defaults.population_density)
    return clamp((t.healthcare_density_ceiling - d) / t.healthcare_divisor)


def normalize_economic_diversity(
    median_income: Optional[Number],
    commute_minutes: Optional[Number],
    model: RuralityModel = SCORING_MODEL,
) -> float:
    """Lower income and shorter local commutes indicate a thinner economy."""
    t = model.transfer
    income = _or_default(median_income, model.defaults.median_income)
    commute = _or_default(commute_minutes, model.defaults.commute_time_minutes)
    income_component = max(0.0, (t.income_reference - income) / t.income_divisor)
    commute_component = max(0.0, t.commute_reference - commute)
    return clamp((income_component + commute_component) / 2)


_SINGLE_VALUE_NORMALIZERS: Dict[str, Callable[..., float]] = {
    "population_density": normalize_population_density,
    "distance_to_urban": normalize_distance_to_urban,
    "agricultural_land": normalize_agricultural_land,
    "internet_access": normalize_internet_access,
    "rural_urban_code": normalize_rural_urban_code,
    "healthcare_access": normalize_healthcare_access,
}

METRIC_NAMES = tuple(_SINGLE_VALUE_NORMALIZERS) + ("economic_diversity",)


def normalize(
    metric_name: str,
    raw_value: Union[None, Number, Tuple[Optional[Number], Optional[Number]]],
    model: RuralityModel = SCORING_MODEL,
) -> float:
    """Normalize one raw metric to a 0-100 sub-score.

    economic_diversity takes a (median_income, commute_minutes) pair; every
    other metric takes a single number or None.

    Raises KeyError for an unknown metric name and ValueError when
    economic_diversity is not given a pair.
    """
    if metric_name == "economic_diversity":
        if raw_value is None:
            raw_value = (None, None)
        if not isinstance(raw_value, (tuple, list)) or len(raw_value) != 2:
            raise ValueError(
                "economic_diversity expects a (median_income, commute_minutes) "
                f"pair, got {raw_value!r}"
            )
        income, commute = raw_value
        return normalize_economic_diversity(income, commute, model)
    fn = _SINGLE_VALUE_NORMALIZERS.get(metric_name)
    if fn is None:
        raise KeyError(f"Unknown metric: {metric_name!r}")
    return fn(raw_value, model)


def compute_sub_scores(
    bundle: RawMetricBundle, model: RuralityModel = SCORING_MODEL,
) -> Dict[str, float]:
    """Normalize a raw metric bundle into one sub-score per weighted category."""
    return {
        "population_density": normalize_population_density(
            bundle.population_density, model),
        "distance_to_urban": normalize_distance_to_urban(
            bundle.distance_to_urban_miles, model),
        "rural_urban_code": normalize_rural_urban_code(
            bundle.rural_urban_code, model),
        "internet_access": normalize_internet_access(
            bundle.broadband_availability_pct, model),
        "economic_diversity": normalize_economic_diversity(
            bundle.median_income, bundle.commute_time_minutes, model),
        "healthcare_access": normalize_healthcare_access(
            bundle.population_density, model),
    }


def _neutral_sub_scores(model: RuralityModel) -> Dict[str, float]:
    """Sub-scores produced when every raw input is at its neutral default."""
    return compute_sub_scores(RawMetricBundle(), model)


# =============================================================================
# Aggregation and classification
# =============================================================================

def aggregate(
    sub_scores: Mapping[str, Optional[Number]],
    model: RuralityModel = SCORING_MODEL,
) -> int:
    """Weighted sum of sub-scores, clamped and rounded to an integer 0-100.

    Categories absent from *sub_scores* (or None) contribute their neutral
    sub-score.  Keys that are not weighted categories are ignored.
    """
    neutral = None
    total = 0.0
    for category in model.categories:
        value = sub_scores.get(category.key)
        if value is None or not math.isfinite(float(value)):
            if neutral is None:
                neutral = _neutral_sub_scores(model)
            value = neutral[category.key]
        total += clamp(float(value)) * category.weight
    return round_half_up(clamp(total))


def get_tier(score: Number, model: RuralityModel = SCORING_MODEL) -> RuralityTier:
    """Return the tier whose threshold is the highest one <= *score*."""
    s = clamp(float(score))
    for tier in model.tiers:
        if s >= tier.threshold:
            return tier
    return model.tiers[-1]


def classify(score: Number, model: RuralityModel = SCORING_MODEL) -> str:
    """Classification label for an overall score (Urban .. Very Rural)."""
    return get_tier(score, model).label
