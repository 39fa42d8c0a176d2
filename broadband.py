"""
County broadband coverage from the FCC National Broadband Map.

Fetches the public county summary: share of locations with fixed broadband
deployed, share with mobile broadband, and the number of fixed providers.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests

from census import RegionId
from config import DataSourceConfig
from errors import SourceUnavailableError
from rural_trace import record_api

logger = logging.getLogger(__name__)

_FCC_BROADBAND_URL = (
    "https://broadbandmap.fcc.gov/api/public/map/us/county/{fips}/broadband/summary"
)


@dataclass(frozen=True)
class BroadbandCoverage:
    fixed_availability_pct: float
    mobile_availability_pct: Optional[float] = None
    provider_count: Optional[int] = None


def _pct(val: Any) -> Optional[float]:
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    if f != f or f < 0 or f > 100:
        return None
    return f


def _count(val: Any) -> Optional[int]:
    try:
        n = int(val)
    except (TypeError, ValueError):
        return None
    return n if n >= 0 else None


def fetch_broadband(region: RegionId,
                    config: DataSourceConfig) -> BroadbandCoverage:
    """Fetch broadband coverage for *region*.

    Raises SourceUnavailableError when the request fails or the summary has
    no usable fixed-deployment percentage.
    """
    url = _FCC_BROADBAND_URL.format(fips=region.fips)
    t0 = time.time()
    try:
        resp = requests.get(
            url,
            timeout=config.request_timeout,
            headers={"User-Agent": config.user_agent, "Accept": "application/json"},
        )
    except requests.Timeout as e:
        record_api("fcc_broadband", "county/summary", t0, 0, False, "timeout")
        raise SourceUnavailableError("broadband", "timeout") from e
    except requests.RequestException as e:
        record_api("fcc_broadband", "county/summary", t0, 0, False, "exception")
        raise SourceUnavailableError("broadband", str(e)) from e

    record_api("fcc_broadband", "county/summary", t0, resp.status_code, resp.ok)
    if not resp.ok:
        raise SourceUnavailableError(
            "broadband", f"HTTP {resp.status_code} for county {region.fips}")

    try:
        data = resp.json()
    except ValueError as e:
        raise SourceUnavailableError("broadband", "non-JSON response") from e
    if not isinstance(data, dict):
        raise SourceUnavailableError("broadband", "unexpected payload shape")

    fixed = _pct(data.get("fixed_broadband_deployment"))
    if fixed is None:
        raise SourceUnavailableError(
            "broadband", f"no fixed deployment figure for {region.fips}")

    return BroadbandCoverage(
        fixed_availability_pct=fixed,
        mobile_availability_pct=_pct(data.get("mobile_broadband_deployment")),
        provider_count=_count(data.get("provider_count")),
    )
