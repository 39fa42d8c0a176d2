"""
Exception taxonomy for the rurality pipeline.

Only InvalidLocationError, LocationNotFoundError, UpstreamUnavailableError
and (when explicitly requested) RegionUnresolvedError ever reach callers of
analyze().  SourceUnavailableError is raised inside metric source clients
and always absorbed by the orchestrator, which substitutes the fallback.
"""

from typing import Optional


class RuralityError(Exception):
    """Base exception for rurality errors."""
    pass


class InvalidLocationError(RuralityError, ValueError):
    """Blank location query or out-of-range coordinates."""
    pass


class LocationNotFoundError(RuralityError):
    """Geocoding returned no match for the query."""
    pass


class RegionUnresolvedError(RuralityError):
    """Coordinates map to no county.  Raised only when a caller asks for it."""

    def __init__(self, lat: float, lng: float):
        super().__init__(f"No county found for ({lat:.4f}, {lng:.4f})")
        self.lat = lat
        self.lng = lng


class UpstreamUnavailableError(RuralityError):
    """A required upstream service (geocoding) could not be reached."""

    def __init__(self, message: str, service: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class SourceUnavailableError(RuralityError):
    """A single metric source failed or returned nothing for the region."""

    def __init__(self, source: str, message: str = ""):
        super().__init__(f"{source}: {message}" if message else source)
        self.source = source
