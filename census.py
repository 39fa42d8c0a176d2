"""
Region resolution and Census ACS county demographics.

Coordinates are mapped to a county with the FCC Area API (primary) and the
Census Geocoder Counties layer (fallback).  County demographics come from
the ACS 5-Year API at county level.

Data source:
  - FCC Area API (geo.fcc.gov) for county lookup
  - Census Geocoder (geocoding.geo.census.gov) as fallback
  - US Census Bureau ACS 5-Year Estimates (api.census.gov)

Limitations:
  - ACS 5-year estimates are rolling averages and lag ~2 years.
  - Locations outside the US (or offshore) resolve to no county.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config import DataSourceConfig
from errors import SourceUnavailableError
from rural_trace import record_api

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

_FCC_AREA_API = "https://geo.fcc.gov/api/census/area"
_CENSUS_GEOCODER = "https://geocoding.geo.census.gov/geocoder/geographies/coordinates"
_ACS_URL_TEMPLATE = "https://api.census.gov/data/{year}/acs/acs5"

# Census missing-data sentinel
_CENSUS_MISSING = "-666666666"

_ACS_VARS = [
    "B01003_001E",  # total population
    "B19013_001E",  # median household income (dollars)
    "B25001_001E",  # housing units
    "B08303_001E",  # workers 16+ who did not work from home
    "B08013_001E",  # aggregate travel time to work (minutes)
    "B23025_003E",  # civilian labor force
    "B23025_005E",  # civilian unemployed
    "B01002_001E",  # median age
]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class RegionId:
    """A US county, keyed by its state and county FIPS codes."""
    state_fips: str
    county_fips: str
    state_name: str = ""
    county_name: str = ""

    @property
    def fips(self) -> str:
        """Five-digit county FIPS, the key for every regional lookup."""
        return f"{self.state_fips}{self.county_fips}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "fips": self.fips,
            "state_fips": self.state_fips,
            "county_fips": self.county_fips,
            "state_name": self.state_name,
            "county_name": self.county_name,
        }


@dataclass
class CensusMetrics:
    """County-level ACS values.  Any field may be None when suppressed."""
    population: Optional[int] = None
    median_income: Optional[int] = None
    housing_units: Optional[int] = None
    commuting_workers: Optional[int] = None
    aggregate_travel_minutes: Optional[int] = None
    labor_force: Optional[int] = None
    unemployed: Optional[int] = None
    median_age: Optional[float] = None
    county_name: str = ""

    @property
    def commute_time_minutes(self) -> Optional[float]:
        """Mean one-way commute, from aggregate travel time over workers."""
        if not self.commuting_workers or self.aggregate_travel_minutes is None:
            return None
        return round(self.aggregate_travel_minutes / self.commuting_workers, 1)

    @property
    def unemployment_rate(self) -> Optional[float]:
        """Unemployed share of the civilian labor force, 0-100."""
        if not self.labor_force or self.unemployed is None:
            return None
        return round(self.unemployed / self.labor_force * 100, 1)


# =============================================================================
# HELPERS
# =============================================================================

def _safe_int(val: Any, default: Optional[int] = None) -> Optional[int]:
    """Convert Census API value to int, handling missing-data sentinels.

    ACS annotates suppressed or unavailable estimates with large negative
    codes (-999999999, -888888888, -666666666, -555555555, -222222222).
    Every variable fetched here is a count or dollar amount, so any negative
    value is a sentinel.
    """
    if val is None or str(val) == _CENSUS_MISSING or val == "":
        return default
    try:
        n = int(float(val))
    except (TypeError, ValueError):
        return default
    return default if n < 0 else n


def _safe_float(val: Any) -> Optional[float]:
    if val is None or val == "":
        return None
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    # Every negative ACS value is an annotation sentinel (-666666666 etc).
    return None if f < 0 else f


# =============================================================================
# COORDINATES → COUNTY
# =============================================================================

def _lookup_county_fcc(lat: float, lng: float,
                       config: DataSourceConfig) -> Optional[RegionId]:
    """Primary: FCC Area API → RegionId or None."""
    t0 = time.time()
    params = {
        "lat": lat,
        "lon": lng,
        "censusYear": "2020",
        "format": "json",
    }
    try:
        resp = requests.get(_FCC_AREA_API, params=params,
                            timeout=config.request_timeout)
        record_api("fcc_area", "census/area", t0, resp.status_code, resp.ok)

        if not resp.ok:
            logger.warning("FCC Area API returned %d", resp.status_code)
            return None

        results = resp.json().get("results", [])
        if not results:
            return None

        r = results[0]
        county_fips = r.get("county_fips") or ""
        if len(county_fips) != 5:
            # block_fips = SSCCCTTTTTTBBBB
            county_fips = (r.get("block_fips") or "")[:5]
        if len(county_fips) != 5:
            return None

        return RegionId(
            state_fips=county_fips[:2],
            county_fips=county_fips[2:],
            state_name=r.get("state_name") or "",
            county_name=r.get("county_name") or "",
        )

    except requests.Timeout:
        record_api("fcc_area", "census/area", t0, 0, False, "timeout")
        logger.warning("FCC Area API timed out for (%.4f, %.4f)", lat, lng)
        return None
    except Exception:
        record_api("fcc_area", "census/area", t0, 0, False, "exception")
        logger.warning("FCC Area API failed for (%.4f, %.4f)", lat, lng,
                       exc_info=True)
        return None


def _lookup_county_census(lat: float, lng: float,
                          config: DataSourceConfig) -> Optional[RegionId]:
    """Fallback: Census Geocoder Counties layer → RegionId or None."""
    t0 = time.time()
    params = {
        "x": lng,
        "y": lat,
        "benchmark": "Public_AR_Current",
        "vintage": "Current_Current",
        "layers": "Counties,States",
        "format": "json",
    }
    try:
        resp = requests.get(_CENSUS_GEOCODER, params=params,
                            timeout=config.request_timeout)
        record_api("census_geocoder", "geographies/coordinates", t0,
                   resp.status_code, resp.ok)

        if not resp.ok:
            logger.warning("Census Geocoder returned %d", resp.status_code)
            return None

        geographies = resp.json().get("result", {}).get("geographies", {})
        counties = geographies.get("Counties", [])
        if not counties:
            return None

        c = counties[0]
        state, county = c.get("STATE", ""), c.get("COUNTY", "")
        if len(state) != 2 or len(county) != 3:
            return None
        states = geographies.get("States", [])
        return RegionId(
            state_fips=state,
            county_fips=county,
            state_name=states[0].get("NAME", "") if states else "",
            county_name=c.get("NAME", ""),
        )

    except requests.Timeout:
        record_api("census_geocoder", "geographies/coordinates", t0,
                   0, False, "timeout")
        logger.warning("Census Geocoder timed out for (%.4f, %.4f)", lat, lng)
        return None
    except Exception:
        record_api("census_geocoder", "geographies/coordinates", t0,
                   0, False, "exception")
        logger.warning("Census Geocoder failed for (%.4f, %.4f)", lat, lng,
                       exc_info=True)
        return None


def resolve_region(lat: float, lng: float,
                   config: DataSourceConfig) -> Optional[RegionId]:
    """Resolve coordinates to a county.  FCC primary, Census Geocoder fallback.

    Returns None when neither service places the point in a US county.
    Never raises.
    """
    region = _lookup_county_fcc(lat, lng, config)
    if region is not None:
        return region
    logger.info("FCC Area API miss, trying Census Geocoder fallback")
    region = _lookup_county_census(lat, lng, config)
    if region is None:
        logger.info("Could not resolve (%.4f, %.4f) to a county", lat, lng)
    return region


# =============================================================================
# ACS COUNTY DEMOGRAPHICS
# =============================================================================

def _parse_acs_row(row: Dict[str, Any]) -> CensusMetrics:
    return CensusMetrics(
        population=_safe_int(row.get("B01003_001E")),
        median_income=_safe_int(row.get("B19013_001E")),
        housing_units=_safe_int(row.get("B25001_001E")),
        commuting_workers=_safe_int(row.get("B08303_001E")),
        aggregate_travel_minutes=_safe_int(row.get("B08013_001E")),
        labor_force=_safe_int(row.get("B23025_003E")),
        unemployed=_safe_int(row.get("B23025_005E")),
        median_age=_safe_float(row.get("B01002_001E")),
        # NAME comes back as "Yellowstone County, Montana"
        county_name=(row.get("NAME") or "").split(",")[0],
    )


def fetch_census_metrics(region: RegionId,
                         config: DataSourceConfig) -> CensusMetrics:
    """Fetch county ACS 5-year estimates for *region*.

    Raises SourceUnavailableError on any HTTP or parse failure, or when
    the API returns no row for the county.
    """
    params: Dict[str, str] = {
        "get": "NAME," + ",".join(_ACS_VARS),
        "for": f"county:{region.county_fips}",
        "in": f"state:{region.state_fips}",
    }
    if config.census_api_key:
        params["key"] = config.census_api_key

    url = _ACS_URL_TEMPLATE.format(year=config.acs_year)
    t0 = time.time()
    try:
        resp = requests.get(url, params=params, timeout=config.request_timeout)
    except requests.Timeout as e:
        record_api("census_acs", "acs5/county", t0, 0, False, "timeout")
        raise SourceUnavailableError("census", "timeout") from e
    except requests.RequestException as e:
        record_api("census_acs", "acs5/county", t0, 0, False, "exception")
        raise SourceUnavailableError("census", str(e)) from e

    record_api("census_acs", "acs5/county", t0, resp.status_code, resp.ok)
    if not resp.ok:
        raise SourceUnavailableError(
            "census", f"HTTP {resp.status_code} for county {region.fips}")

    try:
        data = resp.json()
    except ValueError as e:
        raise SourceUnavailableError("census", "non-JSON response") from e
    if not data or len(data) < 2:
        raise SourceUnavailableError("census", f"no ACS row for {region.fips}")

    headers = data[0]
    return _parse_acs_row(dict(zip(headers, data[1])))
