"""
Scoring model configuration for the rurality index.

Owns every numeric constant that affects the rurality score: transfer
function calibration, neutral defaults for missing metrics, category
weights, tier thresholds and the history synthesis parameters.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.  None of these values are
runtime-configurable; bump SCORING_MODEL.version on any change that
alters score outputs.
"""

import math
from dataclasses import dataclass
from typing import Dict, Tuple


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class TransferConstants:
    """Calibration literals for the per-metric transfer functions.

    These are the county-data calibration: density and healthcare curves
    are expressed against people per square mile.
    """
    density_ceiling: float = 2000.0        # density at which the sub-score hits 0
    density_divisor: float = 20.0
    distance_multiplier: float = 1.5       # sub-score points per mile
    healthcare_density_ceiling: float = 500.0
    healthcare_divisor: float = 5.0
    income_reference: float = 80000.0      # dollars
    income_divisor: float = 1000.0
    commute_reference: float = 45.0        # minutes
    rural_urban_code_max: int = 9


@dataclass(frozen=True)
class MetricDefaults:
    """Neutral values substituted when a raw metric is missing.

    Also the per-source fallbacks used by the metric orchestrator.
    """
    population_density: float = 50.0
    county_area_sq_mi: float = 1000.0
    agricultural_land_pct: float = 50.0
    broadband_availability_pct: float = 70.0   # national average
    mobile_availability_pct: float = 85.0
    broadband_provider_count: int = 3
    healthcare_facilities_per_1000: float = 2.1
    median_income: float = 50000.0
    commute_time_minutes: float = 25.0
    rural_urban_code: int = 5
    rural_urban_description: str = (
        "Urban population of 20,000 or more, not adjacent to a metro area"
    )


@dataclass(frozen=True)
class CategoryConfig:
    """One weighted sub-score category."""
    key: str       # sub-score key, e.g. "population_density"
    label: str     # human-readable, e.g. "Pop. Density (per sq mi)"
    weight: float  # share of the overall score; all weights sum to 1.0


@dataclass(frozen=True)
class RuralityTier:
    """Maps a minimum score threshold to a classification label."""
    threshold: int
    label: str
    slug: str = ""


@dataclass(frozen=True)
class HistoryConfig:
    """Parameters for the synthetic trend series."""
    years: int = 6
    end_year: int = 2023
    jitter_span: float = 10.0      # uniform perturbation in [-span/2, +span/2)
    decay_per_year: float = 0.5
    volatility_threshold: float = 10.0   # spread at or above this reads "High"


@dataclass(frozen=True)
class RuralityModel:
    """Top-level container for all scoring parameters.

    A single module-level instance (SCORING_MODEL) is the source of truth.
    """
    version: str
    transfer: TransferConstants
    defaults: MetricDefaults
    categories: Tuple[CategoryConfig, ...]
    tiers: Tuple[RuralityTier, ...]
    history: HistoryConfig

    @property
    def weights(self) -> Dict[str, float]:
        return {c.key: c.weight for c in self.categories}

    def category(self, key: str) -> CategoryConfig:
        for c in self.categories:
            if c.key == key:
                return c
        raise KeyError(key)


# =============================================================================
# Pure helpers
# =============================================================================

def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp *value* into [low, high].  NaN clamps to *low*."""
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    Python's round() uses banker's rounding (round(62.5) -> 62), which
    produces unintuitive results at .5 boundaries.  Scores are never
    negative, so floor(x + 0.5) is sufficient.
    """
    return int(math.floor(value + 0.5))


# =============================================================================
# SCORING_MODEL: current production values
# =============================================================================

SCORING_MODEL = RuralityModel(
    version="2.0.0",

    transfer=TransferConstants(),

    defaults=MetricDefaults(),

    categories=(
        CategoryConfig("population_density", "Pop. Density (per sq mi)", 0.30),
        CategoryConfig("distance_to_urban", "Distance to Urban Center (mi)", 0.25),
        CategoryConfig("rural_urban_code", "USDA Rural-Urban Code", 0.20),
        CategoryConfig("internet_access", "Broadband Access (%)", 0.10),
        CategoryConfig("economic_diversity", "Economic Diversity Index", 0.10),
        CategoryConfig("healthcare_access", "Healthcare Access", 0.05),
    ),

    tiers=(
        RuralityTier(80, "Very Rural", "very_rural"),
        RuralityTier(60, "Rural", "rural"),
        RuralityTier(40, "Mixed", "mixed"),
        RuralityTier(20, "Suburban", "suburban"),
        RuralityTier(0, "Urban", "urban"),
    ),

    history=HistoryConfig(),
)


# Validate at import time (ValueError, not assert, so validation is never
# stripped by python -O).
_wsum = sum(c.weight for c in SCORING_MODEL.categories)
if abs(_wsum - 1.0) >= 1e-9:
    raise ValueError(f"Category weights sum to {_wsum}, expected 1.0")
if len({c.key for c in SCORING_MODEL.categories}) != len(SCORING_MODEL.categories):
    raise ValueError("Duplicate category key in SCORING_MODEL")
_thresholds = [t.threshold for t in SCORING_MODEL.tiers]
if _thresholds != sorted(_thresholds, reverse=True) or _thresholds[-1] != 0:
    raise ValueError(f"Tier thresholds must descend to 0, got {_thresholds}")
