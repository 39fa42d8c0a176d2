"""Unit tests for metric_sources.py: parallel fetch with per-source fallbacks.

Tests cover: bundle assembly and provenance, population density
derivation, unresolved regions, single-source failure isolation, retry,
timeouts, and trace propagation into worker threads.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from census import CensusMetrics, RegionId
from config import DataSourceConfig
from errors import SourceUnavailableError
from metric_sources import (
    DERIVED,
    FALLBACK,
    OBSERVED,
    SOURCE_NAMES,
    MetricSources,
    RawMetricBundle,
    fetch_all_metrics,
)
from rural_trace import TraceContext, clear_trace, set_trace

from conftest import YELLOWSTONE, fake_sources


def _boom(region, config):
    raise SourceUnavailableError("test", "boom")


# =========================================================================
# Happy path
# =========================================================================

class TestFetchAllMetrics:
    def test_all_sources_observed(self, config):
        bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources())

        assert bundle.failed_sources == ()
        assert bundle.population == 164000
        assert bundle.county_area_sq_mi == 2635.0
        assert bundle.population_density == pytest.approx(62.2)
        assert bundle.median_income == 65000
        assert bundle.commute_time_minutes == 18.0
        assert bundle.unemployment_rate == 3.0
        assert bundle.median_age == 39.5
        assert bundle.rural_urban_code == 3
        assert bundle.broadband_availability_pct == 70.0
        assert bundle.mobile_availability_pct == 85.0
        assert bundle.broadband_provider_count == 3

        assert bundle.provenance["population_density"] == DERIVED
        assert bundle.provenance["median_income"] == OBSERVED
        assert bundle.provenance["rural_urban_code"] == OBSERVED

    def test_unsourced_fields_use_published_defaults(self, config):
        bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources())
        assert bundle.agricultural_land_pct == 50
        assert bundle.healthcare_facilities_per_1000 == 2.1
        assert bundle.is_fallback("agricultural_land_pct")

    def test_sources_receive_region_and_config(self, config):
        census = MagicMock(return_value=CensusMetrics(population=1000))
        fetch_all_metrics(YELLOWSTONE, config, fake_sources(census=census))
        census.assert_called_once_with(YELLOWSTONE, config)

    def test_to_dict(self, config):
        d = fetch_all_metrics(YELLOWSTONE, config, fake_sources()).to_dict()
        assert d["population"] == 164000
        assert d["failed_sources"] == []
        assert d["provenance"]["population_density"] == DERIVED


# =========================================================================
# Region unresolved
# =========================================================================

class TestUnresolvedRegion:
    def test_no_source_called(self, config):
        sources = MetricSources(
            census=MagicMock(), land_area=MagicMock(),
            rural_urban_code=MagicMock(), broadband=MagicMock(),
        )
        bundle = fetch_all_metrics(None, config, sources)
        for _, fn in sources.items():
            fn.assert_not_called()
        assert bundle.failed_sources == SOURCE_NAMES

    def test_every_field_is_fallback(self, config):
        bundle = fetch_all_metrics(None, config, fake_sources())
        assert bundle.population is None
        assert bundle.population_density == 50
        assert bundle.county_area_sq_mi == 1000
        assert bundle.rural_urban_code == 5
        assert bundle.broadband_availability_pct == 70
        assert bundle.median_income == 50000
        assert bundle.commute_time_minutes == 25
        assert all(v == FALLBACK for v in bundle.provenance.values())


# =========================================================================
# Failure isolation
# =========================================================================

class TestSourceIsolation:
    def test_broadband_failure_leaves_others_intact(self, config):
        bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources(broadband=_boom))

        assert bundle.failed_sources == ("broadband",)
        assert bundle.broadband_availability_pct == 70
        assert bundle.mobile_availability_pct == 85
        assert bundle.broadband_provider_count == 3
        assert bundle.is_fallback("broadband_availability_pct")
        # untouched sources
        assert bundle.population == 164000
        assert bundle.rural_urban_code == 3
        assert bundle.provenance["rural_urban_code"] == OBSERVED

    def test_census_failure_density_falls_back(self, config):
        bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources(census=_boom))
        assert bundle.failed_sources == ("census",)
        assert bundle.population is None
        assert bundle.population_density == 50
        assert bundle.median_income == 50000
        assert bundle.commute_time_minutes == 25
        assert bundle.county_area_sq_mi == 2635.0

    def test_unexpected_exception_is_absorbed(self, config):
        def crash(region, config):
            raise ZeroDivisionError("bug")
        bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources(land_area=crash))
        assert bundle.failed_sources == ("land_area",)
        # density derived against the default area
        assert bundle.population_density == pytest.approx(164.0)

    def test_none_result_is_fallback(self, config):
        bundle = fetch_all_metrics(
            YELLOWSTONE, config, fake_sources(rural_urban_code=lambda r, c: None))
        assert bundle.failed_sources == ("rural_urban_code",)
        assert bundle.rural_urban_code == 5

    def test_all_sources_fail(self, config):
        bundle = fetch_all_metrics(
            YELLOWSTONE, config,
            MetricSources(census=_boom, land_area=_boom,
                          rural_urban_code=_boom, broadband=_boom),
        )
        assert set(bundle.failed_sources) == set(SOURCE_NAMES)


# =========================================================================
# Retry and timeout
# =========================================================================

class TestRetry:
    def test_retried_once_then_succeeds(self, config):
        calls = []

        def flaky(region, config):
            calls.append(1)
            if len(calls) == 1:
                raise SourceUnavailableError("broadband", "transient")
            return fake_sources().broadband(region, config)

        bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources(broadband=flaky))
        assert len(calls) == 2
        assert bundle.failed_sources == ()

    def test_gives_up_after_retry(self, config):
        boom = MagicMock(side_effect=SourceUnavailableError("census", "down"))
        fetch_all_metrics(YELLOWSTONE, config, fake_sources(census=boom))
        assert boom.call_count == 2

    def test_retries_disabled(self):
        boom = MagicMock(side_effect=SourceUnavailableError("census", "down"))
        fetch_all_metrics(YELLOWSTONE, DataSourceConfig(source_retries=0),
                          fake_sources(census=boom))
        assert boom.call_count == 1


class TestTimeout:
    def test_hung_source_falls_back_without_blocking(self):
        release = threading.Event()

        def hang(region, config):
            release.wait(5)
            return None

        config = DataSourceConfig(source_timeout=0.2)
        t0 = time.monotonic()
        try:
            bundle = fetch_all_metrics(YELLOWSTONE, config, fake_sources(broadband=hang))
        finally:
            release.set()
        assert time.monotonic() - t0 < 2
        assert bundle.failed_sources == ("broadband",)
        assert bundle.population == 164000


# =========================================================================
# Tracing
# =========================================================================

class TestTracePropagation:
    def test_worker_stages_and_fallbacks_recorded(self, config):
        ctx = TraceContext(trace_id="t-1")
        set_trace(ctx)
        try:
            fetch_all_metrics(YELLOWSTONE, config, fake_sources(broadband=_boom))
        finally:
            clear_trace()

        stage_names = {s.stage_name for s in ctx.stages}
        assert {"metrics.census", "metrics.broadband"} <= stage_names
        assert [f.source for f in ctx.fallbacks] == ["broadband"]
        errored = [s for s in ctx.stages if s.error_class]
        assert [s.stage_name for s in errored] == ["metrics.broadband"]


class TestRawMetricBundle:
    def test_defaults_all_none(self):
        bundle = RawMetricBundle()
        assert bundle.population_density is None
        assert bundle.provenance == {}
