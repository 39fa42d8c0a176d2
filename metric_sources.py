"""
Metric source orchestration.

Fetches every regional metric source for a county in parallel and combines
the results into one RawMetricBundle.  Each source has its own fallback:
an exception, an empty answer or a timeout substitutes that source's
defaults and never affects the other sources.

Sources:
  census            ACS county demographics (population, income, commute, ...)
  land_area         static county land-area table
  rural_urban_code  static USDA RUCC table
  broadband         FCC broadband map county summary

The bundle records, per field, whether the value was observed from a
source, derived from other values, or a fallback default.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from broadband import BroadbandCoverage, fetch_broadband
from census import CensusMetrics, RegionId, fetch_census_metrics
from config import DataSourceConfig, default_config
from errors import SourceUnavailableError
from regional_lookups import lookup_county_area, lookup_rural_urban_code
from rural_trace import get_trace, set_trace
from scoring_config import SCORING_MODEL

logger = logging.getLogger(__name__)

OBSERVED = "observed"
DERIVED = "derived"
FALLBACK = "fallback"

SOURCE_NAMES = ("census", "land_area", "rural_urban_code", "broadband")


# =============================================================================
# Data classes
# =============================================================================

@dataclass(frozen=True)
class RawMetricBundle:
    """Raw, un-normalized metric values for one location.

    Every field is optional; scoring substitutes neutral defaults for any
    that are None.
    """
    population: Optional[int] = None
    population_density: Optional[float] = None          # people / sq mi
    distance_to_urban_miles: Optional[float] = None
    agricultural_land_pct: Optional[float] = None
    broadband_availability_pct: Optional[float] = None
    healthcare_facilities_per_1000: Optional[float] = None
    median_income: Optional[float] = None
    commute_time_minutes: Optional[float] = None
    rural_urban_code: Optional[int] = None
    median_age: Optional[float] = None
    unemployment_rate: Optional[float] = None
    county_area_sq_mi: Optional[float] = None
    rural_urban_description: Optional[str] = None
    mobile_availability_pct: Optional[float] = None
    broadband_provider_count: Optional[int] = None
    provenance: Mapping[str, str] = field(default_factory=dict)
    failed_sources: Tuple[str, ...] = ()

    def is_fallback(self, name: str) -> bool:
        return self.provenance.get(name) == FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["provenance"] = dict(self.provenance)
        d["failed_sources"] = list(self.failed_sources)
        return d


SourceFn = Callable[[RegionId, DataSourceConfig], Any]


@dataclass(frozen=True)
class MetricSources:
    """The source callables used by fetch_all_metrics.

    Each takes (region, config) and returns its value, None when it has
    nothing for the region, or raises.  Tests replace individual sources.
    """
    census: SourceFn = fetch_census_metrics
    land_area: SourceFn = lookup_county_area
    rural_urban_code: SourceFn = lookup_rural_urban_code
    broadband: SourceFn = fetch_broadband

    def items(self):
        return [(name, getattr(self, name)) for name in SOURCE_NAMES]


# =============================================================================
# Per-source execution
# =============================================================================

def _run_source(parent_trace, name: str, fn: SourceFn,
                region: RegionId, config: DataSourceConfig):
    """Run one source in a worker thread, retrying failures.

    Returns the source's value or None; re-raises the last exception when
    every attempt failed.
    """
    set_trace(parent_trace)
    stage = f"metrics.{name}"
    if parent_trace:
        parent_trace.start_stage(stage)
    t0 = time.time()
    attempts = config.source_retries + 1
    last_exc: Optional[Exception] = None
    try:
        for attempt in range(1, attempts + 1):
            try:
                value = fn(region, config)
            except SourceUnavailableError as e:
                last_exc = e
                logger.warning("%s source failed (attempt %d/%d): %s",
                               name, attempt, attempts, e)
                continue
            except Exception as e:
                last_exc = e
                logger.warning("%s source raised (attempt %d/%d)",
                               name, attempt, attempts, exc_info=True)
                continue
            last_exc = None
            return value
        raise last_exc
    finally:
        if parent_trace:
            parent_trace.record_stage(
                stage, t0, time.time(),
                error_class=type(last_exc).__name__ if last_exc else "",
                error_message=str(last_exc) if last_exc else "",
            )
            parent_trace.end_stage()
        set_trace(None)


def _collect(region: RegionId, config: DataSourceConfig,
             sources: MetricSources) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Run every source concurrently.  Returns (results, failure reasons)."""
    jobs = sources.items()
    parent_trace = get_trace()
    results: Dict[str, Any] = {}
    failures: Dict[str, str] = {}

    # Not a context manager: exiting one would join a hung worker and
    # defeat the timeout.
    pool = ThreadPoolExecutor(max_workers=len(jobs),
                              thread_name_prefix="metric-source")
    try:
        futures = {
            name: pool.submit(_run_source, parent_trace, name, fn, region, config)
            for name, fn in jobs
        }
        deadline = time.monotonic() + config.source_timeout
        for name, future in futures.items():
            remaining = max(0.0, deadline - time.monotonic())
            try:
                value = future.result(timeout=remaining)
            except FuturesTimeoutError:
                future.cancel()
                failures[name] = f"timed out after {config.source_timeout:g}s"
                continue
            except Exception as e:
                failures[name] = str(e) or type(e).__name__
                continue
            if value is None:
                failures[name] = "no data for region"
            else:
                results[name] = value
    finally:
        pool.shutdown(wait=False)

    return results, failures


# =============================================================================
# Assembly
# =============================================================================

def _assemble(results: Mapping[str, Any],
              failed_sources: Tuple[str, ...]) -> RawMetricBundle:
    """Combine per-source results with defaults into a bundle."""
    defaults = SCORING_MODEL.defaults
    provenance: Dict[str, str] = {}
    values: Dict[str, Any] = {}

    def put(name, value, default, source_kind=OBSERVED):
        if value is None:
            values[name] = default
            provenance[name] = FALLBACK
        else:
            values[name] = value
            provenance[name] = source_kind

    cm: Optional[CensusMetrics] = results.get("census")
    rucc = results.get("rural_urban_code")
    bb: Optional[BroadbandCoverage] = results.get("broadband")

    put("county_area_sq_mi", results.get("land_area"), defaults.county_area_sq_mi)

    population = cm.population if cm else None
    if population is not None:
        values["population"] = population
        provenance["population"] = OBSERVED
    area = values["county_area_sq_mi"]
    density = round(population / area, 1) if population is not None and area > 0 else None
    put("population_density", density, defaults.population_density, DERIVED)

    put("median_income", cm.median_income if cm else None, defaults.median_income)
    put("commute_time_minutes", cm.commute_time_minutes if cm else None,
        defaults.commute_time_minutes, DERIVED)
    if cm and cm.median_age is not None:
        values["median_age"] = cm.median_age
        provenance["median_age"] = OBSERVED
    if cm and cm.unemployment_rate is not None:
        values["unemployment_rate"] = cm.unemployment_rate
        provenance["unemployment_rate"] = DERIVED

    code, description = rucc if rucc else (None, None)
    put("rural_urban_code", code, defaults.rural_urban_code)
    put("rural_urban_description", description, defaults.rural_urban_description)

    put("broadband_availability_pct", bb.fixed_availability_pct if bb else None,
        defaults.broadband_availability_pct)
    put("mobile_availability_pct", bb.mobile_availability_pct if bb else None,
        defaults.mobile_availability_pct)
    put("broadband_provider_count", bb.provider_count if bb else None,
        defaults.broadband_provider_count)

    # No national feed for these yet; always the published averages.
    put("agricultural_land_pct", None, defaults.agricultural_land_pct)
    put("healthcare_facilities_per_1000", None,
        defaults.healthcare_facilities_per_1000)

    return RawMetricBundle(
        provenance=provenance,
        failed_sources=failed_sources,
        **values,
    )


def fetch_all_metrics(region: Optional[RegionId],
                      config: Optional[DataSourceConfig] = None,
                      sources: Optional[MetricSources] = None) -> RawMetricBundle:
    """Fetch every regional metric for *region* and combine them.

    With region=None no source is called and every field is its fallback.
    Never raises for a source failure.
    """
    if region is None:
        logger.info("Region unresolved; all regional metrics use fallbacks")
        trace = get_trace()
        if trace:
            for name in SOURCE_NAMES:
                trace.record_fallback(name, "region unresolved")
        return _assemble({}, SOURCE_NAMES)

    config = config or default_config()
    sources = sources or MetricSources()
    results, failures = _collect(region, config, sources)

    trace = get_trace()
    for name, reason in failures.items():
        logger.warning("Metric source %s unavailable for county %s (%s); "
                       "using fallback", name, region.fips, reason)
        if trace:
            trace.record_fallback(name, reason)

    failed = tuple(name for name in SOURCE_NAMES if name in failures)
    return _assemble(results, failed)
