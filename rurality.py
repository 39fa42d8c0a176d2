"""
Rurality analysis: location in, RuralityResult out.

Pipeline:
  1. Geocode the query (or validate and reverse-geocode a coordinate pair)
  2. Resolve the point to a county                     (non-fatal)
  3. Distance to the nearest major metro               (pure)
  4. Fetch regional metrics in parallel with fallbacks (never fatal)
  5. Normalize, aggregate, classify
  6. Synthesize the historical trend series

Only geocoding can fail an analysis.  An unresolved county or a failed
metric source produces a complete result built on national defaults, with
a warning and per-field provenance saying so.
"""

import csv
import io
import logging
import random
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from census import RegionId, resolve_region
from config import DataSourceConfig, default_config
from errors import InvalidLocationError, RegionUnresolvedError
from geocoding import Geocoder, validate_coordinates
from history import summarize_trend, synthesize_history
from metric_sources import DERIVED, MetricSources, RawMetricBundle, fetch_all_metrics
from rural_trace import TraceContext, clear_trace, get_trace, set_trace
from scoring import aggregate, classify, compute_sub_scores, get_tier
from scoring_config import SCORING_MODEL
from urban_distance import nearest_urban_center

logger = logging.getLogger(__name__)

# Re-exported for comparison views.
__all__ = [
    "RuralityResult",
    "aggregate",
    "analyze",
    "classify",
    "result_to_csv",
    "result_to_dict",
    "share_text",
]

CURRENT_LOCATION_LABEL = "Current Location"

LocationQuery = Union[str, Tuple[float, float]]

# category key -> bundle field shown as that category's raw value
_CATEGORY_VALUE_FIELDS = {
    "population_density": "population_density",
    "distance_to_urban": "distance_to_urban_miles",
    "rural_urban_code": "rural_urban_code",
    "internet_access": "broadband_availability_pct",
    "economic_diversity": "median_income",
    "healthcare_access": "healthcare_facilities_per_1000",
}

_SOURCE_LABELS = {
    "census": "Census demographics",
    "land_area": "County land area",
    "rural_urban_code": "Rural-urban continuum code",
    "broadband": "Broadband coverage",
}


@dataclass(frozen=True)
class RuralityResult:
    location: str
    coordinates: Tuple[float, float]
    region: Optional[RegionId]
    overall_score: int
    classification: str
    sub_scores: Mapping[str, float]
    historical_series: Tuple[Tuple[int, float], ...]
    demographics: Mapping[str, Any]
    metrics: RawMetricBundle
    model_version: str = SCORING_MODEL.version
    nearest_urban_center: str = ""
    warnings: Tuple[str, ...] = ()
    trace_id: str = ""


# =============================================================================
# Helpers
# =============================================================================

def _timed_stage(stage_name, fn, *args, **kwargs):
    """Run *fn* with timing.  Logs duration and re-raises on failure."""
    trace = get_trace()
    if trace:
        trace.start_stage(stage_name)
    t0 = time.time()
    try:
        result = fn(*args, **kwargs)
        if trace:
            trace.record_stage(stage_name, t0, time.time())
        return result
    except Exception as exc:
        if trace:
            trace.record_stage(
                stage_name, t0, time.time(),
                error_class=type(exc).__name__,
                error_message=str(exc)[:200],
            )
        raise
    finally:
        if trace:
            trace.end_stage()


def _locate(query: LocationQuery, geocoder: Geocoder) -> Tuple[str, float, float]:
    """Turn a query into (display name, lat, lng)."""
    if isinstance(query, str):
        if not query.strip():
            raise InvalidLocationError("Location query is blank")
        point = _timed_stage("geocode", geocoder.geocode, query)
        return point.display_name, point.lat, point.lng

    if isinstance(query, Sequence) and len(query) == 2:
        lat, lng = query
        validate_coordinates(lat, lng)
        lat, lng = float(lat), float(lng)
        name = _timed_stage("reverse_geocode", geocoder.reverse_geocode, lat, lng)
        return name or CURRENT_LOCATION_LABEL, lat, lng

    raise InvalidLocationError(
        f"Location must be text or a (lat, lng) pair, got {type(query).__name__}")


def _demographics(bundle: RawMetricBundle,
                  region: Optional[RegionId]) -> Dict[str, Any]:
    """Display demographics: observed values only, None where unknown."""
    def observed(name):
        return None if bundle.is_fallback(name) else getattr(bundle, name)

    return {
        "county": region.county_name if region else None,
        "state": region.state_name if region else None,
        "population": bundle.population,
        "median_age": bundle.median_age,
        "median_income": observed("median_income"),
        "unemployment_rate": bundle.unemployment_rate,
        "commute_time_minutes": observed("commute_time_minutes"),
    }


def _warnings(bundle: RawMetricBundle, region: Optional[RegionId]) -> List[str]:
    if region is None:
        return ["County could not be determined; regional metrics use national defaults."]
    return [
        f"{_SOURCE_LABELS.get(name, name)} unavailable; national defaults used."
        for name in bundle.failed_sources
    ]


# =============================================================================
# Entry point
# =============================================================================

def analyze(
    query: LocationQuery,
    config: Optional[DataSourceConfig] = None,
    *,
    geocoder: Optional[Geocoder] = None,
    sources: Optional[MetricSources] = None,
    rng: Optional[random.Random] = None,
    require_region: bool = False,
) -> RuralityResult:
    """Compute the rurality index for a US location.

    Args:
        query: free text (city, county, ZIP) or a (lat, lng) pair.
        config: data-source credentials and timeouts; defaults to the
            environment-derived config.
        geocoder, sources, rng: injectable collaborators.
        require_region: raise RegionUnresolvedError instead of falling back
            to national defaults when no county contains the point.

    Raises:
        InvalidLocationError, LocationNotFoundError, UpstreamUnavailableError,
        and RegionUnresolvedError when require_region is set.
    """
    if isinstance(query, str) and not query.strip():
        raise InvalidLocationError("Location query is blank")

    config = config or default_config()
    geocoder = geocoder or Geocoder(config)

    own_trace = get_trace() is None
    trace = get_trace() or TraceContext(trace_id=uuid.uuid4().hex[:12])
    trace.model_version = SCORING_MODEL.version
    if own_trace:
        set_trace(trace)

    try:
        name, lat, lng = _locate(query, geocoder)
        logger.info("Analyzing %r at (%.4f, %.4f)", name, lat, lng)

        region = _timed_stage("region", resolve_region, lat, lng, config)
        if region is None and require_region:
            raise RegionUnresolvedError(lat, lng)

        metro, miles = nearest_urban_center(lat, lng)

        bundle = _timed_stage("metrics", fetch_all_metrics, region, config, sources)
        bundle = replace(
            bundle,
            distance_to_urban_miles=miles,
            provenance={**bundle.provenance, "distance_to_urban_miles": DERIVED},
        )

        sub_scores = compute_sub_scores(bundle)
        overall = aggregate(sub_scores)
        series = synthesize_history(overall, rng=rng)

        return RuralityResult(
            location=name,
            coordinates=(lat, lng),
            region=region,
            overall_score=overall,
            classification=classify(overall),
            sub_scores=sub_scores,
            historical_series=series,
            demographics=_demographics(bundle, region),
            metrics=bundle,
            nearest_urban_center=metro,
            warnings=tuple(_warnings(bundle, region)),
            trace_id=trace.trace_id,
        )
    finally:
        if own_trace:
            trace.log_summary()
            clear_trace()


# =============================================================================
# Serialization and export
# =============================================================================

def _r1(value):
    return round(value, 1) if isinstance(value, float) else value


def result_to_dict(result: RuralityResult) -> Dict[str, Any]:
    """JSON-friendly dict of a result."""
    tier = get_tier(result.overall_score)
    bundle = result.metrics
    categories = []
    for cat in SCORING_MODEL.categories:
        value_field = _CATEGORY_VALUE_FIELDS[cat.key]
        categories.append({
            "key": cat.key,
            "label": cat.label,
            "weight": cat.weight,
            "value": _r1(getattr(bundle, value_field)),
            "score": round(result.sub_scores[cat.key], 1),
            "provenance": bundle.provenance.get(value_field),
        })

    metrics = bundle.to_dict()
    metrics["distance_to_urban_miles"] = _r1(metrics["distance_to_urban_miles"])

    return {
        "location": result.location,
        "coordinates": {"lat": result.coordinates[0], "lng": result.coordinates[1]},
        "region": result.region.to_dict() if result.region else None,
        "overall_score": result.overall_score,
        "classification": result.classification,
        "tier": tier.slug,
        "sub_scores": {k: round(v, 1) for k, v in result.sub_scores.items()},
        "categories": categories,
        "historical_series": [
            {"year": year, "score": score} for year, score in result.historical_series
        ],
        "trend": summarize_trend(result.historical_series).to_dict(),
        "demographics": dict(result.demographics),
        "metrics": metrics,
        "nearest_urban_center": result.nearest_urban_center,
        "model_version": result.model_version,
        "warnings": list(result.warnings),
        "trace_id": result.trace_id,
    }


def result_to_csv_rows(result: RuralityResult) -> List[List[Any]]:
    """Rows of (metric, value, score) for spreadsheet export."""
    bundle = result.metrics
    demo = result.demographics

    def or_na(value, fmt="{}"):
        return fmt.format(value) if value is not None else "N/A"

    rows: List[List[Any]] = [
        ["Metric", "Value", "Score"],
        ["Location", result.location, ""],
        ["Overall Rural Index", result.overall_score, result.overall_score],
        ["Classification", result.classification, ""],
        ["", "", ""],
    ]
    for cat in SCORING_MODEL.categories:
        value = getattr(bundle, _CATEGORY_VALUE_FIELDS[cat.key])
        rows.append([cat.label, _r1(value), round(result.sub_scores[cat.key], 1)])
    rows.append(["", "", ""])
    rows.extend([
        ["Total Population", or_na(demo.get("population")), ""],
        ["Median Age", or_na(demo.get("median_age")), ""],
        ["Median Income", or_na(demo.get("median_income"), "{:,}"), ""],
        ["Unemployment Rate", or_na(demo.get("unemployment_rate"), "{}%"), ""],
    ])
    return rows


def result_to_csv(result: RuralityResult) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(result_to_csv_rows(result))
    return buf.getvalue()


def short_name(location: str) -> str:
    """First component of a display name: "Billings, Yellowstone County, ..." -> "Billings"."""
    return location.split(",")[0].strip() or location


def csv_filename(location: str) -> str:
    """rurality-<place>.csv with non-alphanumerics replaced by underscores."""
    slug = "".join(c if c.isalnum() and c.isascii() else "_" for c in short_name(location))
    return f"rurality-{slug.lower()}.csv"


def share_text(result: RuralityResult) -> str:
    return (
        f"{short_name(result.location)} has a Rural Index score of "
        f"{result.overall_score}/100 ({result.classification})"
    )
