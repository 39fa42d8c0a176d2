"""
Forward and reverse geocoding for US locations.

Mapbox is tried first when a token is configured; Nominatim (OpenStreetMap)
is the fallback and the only provider used without a token.  Both are
restricted to US results.  Reverse geocoding uses Nominatim only.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import quote

import requests

from config import DataSourceConfig, default_config
from errors import InvalidLocationError, LocationNotFoundError, UpstreamUnavailableError
from rural_trace import record_api

logger = logging.getLogger(__name__)

_MAPBOX_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"
_NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
_NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"


@dataclass(frozen=True)
class GeocodedPoint:
    lat: float
    lng: float
    display_name: str


def validate_coordinates(lat: float, lng: float) -> None:
    """Raise InvalidLocationError unless (lat, lng) is a real coordinate."""
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InvalidLocationError(f"Coordinates must be numeric: ({lat!r}, {lng!r})")
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidLocationError("Coordinates must be finite")
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise InvalidLocationError(f"Coordinates out of range: ({lat}, {lng})")


class _ProviderError(Exception):
    """A provider could not answer (network, HTTP or payload failure)."""


class Geocoder:
    """Client for the geocoding providers."""

    def __init__(self, config: Optional[DataSourceConfig] = None):
        self.config = config or default_config()
        self.session = requests.Session()
        self.session.trust_env = False
        self.session.headers["User-Agent"] = self.config.user_agent

    def _get_json(self, service: str, endpoint: str, url: str, params: dict):
        t0 = time.time()
        try:
            resp = self.session.get(url, params=params,
                                    timeout=self.config.request_timeout)
        except requests.Timeout as e:
            record_api(service, endpoint, t0, 0, False, "timeout")
            raise _ProviderError(f"{service} timed out") from e
        except requests.RequestException as e:
            record_api(service, endpoint, t0, 0, False, "exception")
            raise _ProviderError(f"{service} request failed: {e}") from e

        record_api(service, endpoint, t0, resp.status_code, resp.ok)
        if not resp.ok:
            raise _ProviderError(f"{service} returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise _ProviderError(f"{service} returned non-JSON") from e

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _geocode_mapbox(self, query: str) -> Optional[GeocodedPoint]:
        url = _MAPBOX_URL.format(query=quote(query, safe=""))
        params = {
            "access_token": self.config.mapbox_token,
            "country": "us",
            "limit": 1,
        }
        data = self._get_json("mapbox", "mapbox.places", url, params)
        features = (data.get("features") or []) if isinstance(data, dict) else []
        if not features:
            return None
        f = features[0]
        lng, lat = f["center"][0], f["center"][1]
        return GeocodedPoint(lat=float(lat), lng=float(lng),
                             display_name=f.get("place_name") or query)

    def _geocode_nominatim(self, query: str) -> Optional[GeocodedPoint]:
        params = {
            "q": query,
            "format": "json",
            "countrycodes": "us",
            "limit": 1,
        }
        data = self._get_json("nominatim", "search", _NOMINATIM_SEARCH_URL, params)
        if not isinstance(data, list) or not data:
            return None
        r = data[0]
        return GeocodedPoint(lat=float(r["lat"]), lng=float(r["lon"]),
                             display_name=r.get("display_name") or query)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def geocode(self, query: str) -> GeocodedPoint:
        """Resolve a free-text US location to coordinates.

        Raises:
            InvalidLocationError: blank query.
            LocationNotFoundError: providers answered but found nothing.
            UpstreamUnavailableError: every provider failed to answer.
        """
        if not query or not query.strip():
            raise InvalidLocationError("Location query is blank")
        query = query.strip()

        providers = []
        if self.config.mapbox_token:
            providers.append(("mapbox", self._geocode_mapbox))
        providers.append(("nominatim", self._geocode_nominatim))

        errors: List[str] = []
        answered = False
        for name, fn in providers:
            try:
                point = fn(query)
            except (_ProviderError, KeyError, TypeError, ValueError, IndexError) as e:
                logger.warning("Geocoding via %s failed for %r: %s", name, query, e)
                errors.append(str(e))
                continue
            answered = True
            if point is not None:
                return point
            logger.info("Geocoding via %s found no match for %r", name, query)

        if not answered:
            raise UpstreamUnavailableError(
                "; ".join(errors) or "no geocoding provider available",
                service=providers[-1][0],
            )
        raise LocationNotFoundError(f"No US location found for {query!r}")

    def reverse_geocode(self, lat: float, lng: float) -> Optional[str]:
        """Short place name for coordinates, or None.  Never raises."""
        params = {"lat": lat, "lon": lng, "format": "json"}
        try:
            data = self._get_json("nominatim", "reverse",
                                  _NOMINATIM_REVERSE_URL, params)
        except _ProviderError as e:
            logger.warning("Reverse geocoding failed for (%.4f, %.4f): %s",
                           lat, lng, e)
            return None
        display = data.get("display_name") if isinstance(data, dict) else None
        if not display:
            return None
        return display.split(",")[0].strip() or None
