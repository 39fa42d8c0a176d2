"""
Distance to the nearest major urban center.

Great-circle (haversine) distance from a point to the closest of the ten
US metros with population over one million.  Pure and total: no API
calls, no failure mode.
"""

import math
from typing import Tuple

# Earth radius in miles (mile-denominated output).
EARTH_RADIUS_MI = 3958.8

# ---------------------------------------------------------------------------
# Reference metros: (name, lat, lng) of every US city > 1M population
# ---------------------------------------------------------------------------
URBAN_CENTERS: Tuple[Tuple[str, float, float], ...] = (
    ("New York, NY", 40.7128, -74.0060),
    ("Los Angeles, CA", 34.0522, -118.2437),
    ("Chicago, IL", 41.8781, -87.6298),
    ("Houston, TX", 29.7604, -95.3698),
    ("Phoenix, AZ", 33.4484, -112.0740),
    ("Philadelphia, PA", 39.9526, -75.1652),
    ("San Antonio, TX", 29.4241, -98.4936),
    ("San Diego, CA", 32.7157, -117.1611),
    ("Dallas, TX", 32.7767, -96.7970),
    ("San Jose, CA", 37.3382, -121.8863),
)


def miles_between(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in miles."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlng / 2) ** 2)
    # Float error can push a a hair outside [0, 1] for antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_MI * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def nearest_urban_center(lat: float, lng: float) -> Tuple[str, float]:
    """Return (name, miles) of the closest reference metro."""
    best_name, best_miles = URBAN_CENTERS[0][0], math.inf
    for name, clat, clng in URBAN_CENTERS:
        miles = miles_between(lat, lng, clat, clng)
        if miles < best_miles:
            best_name, best_miles = name, miles
    return best_name, best_miles


def distance_to_nearest_urban_center(lat: float, lng: float) -> float:
    """Miles from (lat, lng) to the nearest reference metro (>= 0)."""
    return nearest_urban_center(lat, lng)[1]
