"""Shared fixtures for the rurality test suite.

Provides a Flask test client, an empty comparison set per test, and fake
metric sources / geocoder so no test touches the network.
"""

import os
import random

import pytest

# Suppress the SECRET_KEY startup guard
os.environ.setdefault("SECRET_KEY", "test-secret-key")

# Limits are read at import time; keep them out of the way of the suite
os.environ["RATE_LIMIT_DEFAULT"] = "10000/minute"
os.environ["RATE_LIMIT_ANALYZE"] = "10000/minute"

from app import app, comparison_set  # noqa: E402
from census import CensusMetrics, RegionId  # noqa: E402
from broadband import BroadbandCoverage  # noqa: E402
from config import DataSourceConfig  # noqa: E402
from geocoding import GeocodedPoint  # noqa: E402
from metric_sources import MetricSources  # noqa: E402


YELLOWSTONE = RegionId("30", "111", "Montana", "Yellowstone County")
BILLINGS = GeocodedPoint(45.7833, -108.5007, "Billings, Yellowstone County, Montana")


class FakeGeocoder:
    """Geocoder stand-in: fixed answers, records calls."""

    def __init__(self, point=BILLINGS, reverse_name="Billings"):
        self.point = point
        self.reverse_name = reverse_name
        self.calls = []

    def geocode(self, query):
        self.calls.append(("geocode", query))
        if isinstance(self.point, Exception):
            raise self.point
        return self.point

    def reverse_geocode(self, lat, lng):
        self.calls.append(("reverse", lat, lng))
        return self.reverse_name


def yellowstone_census():
    return CensusMetrics(
        population=164000,
        median_income=65000,
        housing_units=72000,
        commuting_workers=78000,
        aggregate_travel_minutes=1404000,   # 18 min mean
        labor_force=85000,
        unemployed=2550,                    # 3.0%
        median_age=39.5,
        county_name="Yellowstone County",
    )


def fake_sources(**overrides):
    """MetricSources returning Yellowstone-like data; override any source."""
    sources = dict(
        census=lambda region, config: yellowstone_census(),
        land_area=lambda region, config: 2635.0,
        rural_urban_code=lambda region, config: (
            3, "Counties in metro areas of fewer than 250,000 population"),
        broadband=lambda region, config: BroadbandCoverage(70.0, 85.0, 3),
    )
    sources.update(overrides)
    return MetricSources(**sources)


@pytest.fixture(autouse=True)
def _empty_comparison_set():
    comparison_set.clear()
    yield
    comparison_set.clear()


@pytest.fixture()
def config():
    return DataSourceConfig(source_timeout=2.0, source_retries=1)


@pytest.fixture()
def rng():
    return random.Random(42)


@pytest.fixture()
def client():
    """Flask test client with CSRF disabled (we're testing logic, not CSRF)."""
    app.config["TESTING"] = True
    app.config["WTF_CSRF_ENABLED"] = False
    with app.test_client() as c:
        yield c
