"""Unit tests for census.py: county resolution and ACS county metrics.

Tests cover: safe type conversions, the FCC → Census Geocoder fallback
chain, ACS row parsing and derived rates, and failure signalling.
"""

from unittest.mock import patch, MagicMock

import pytest
import requests

from census import (
    CensusMetrics,
    RegionId,
    _CENSUS_MISSING,
    _parse_acs_row,
    _safe_int,
    fetch_census_metrics,
    resolve_region,
)
from config import DataSourceConfig
from errors import SourceUnavailableError


def _resp(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.json.return_value = payload
    return resp


FCC_YELLOWSTONE = {
    "results": [{
        "block_fips": "301110009011000",
        "county_fips": "30111",
        "county_name": "Yellowstone County",
        "state_fips": "30",
        "state_name": "Montana",
    }]
}

CENSUS_GEOCODER_YELLOWSTONE = {
    "result": {
        "geographies": {
            "Counties": [{"STATE": "30", "COUNTY": "111", "NAME": "Yellowstone County"}],
            "States": [{"NAME": "Montana"}],
        }
    }
}


@pytest.fixture
def cfg():
    return DataSourceConfig()


# =========================================================================
# Safe type conversions
# =========================================================================

class TestSafeInt:
    def test_normal_int(self):
        assert _safe_int("1234") == 1234

    def test_float_string(self):
        assert _safe_int("1234.0") == 1234

    def test_none_returns_default(self):
        assert _safe_int(None) is None
        assert _safe_int(None, 0) == 0

    def test_census_missing_sentinel(self):
        assert _safe_int(_CENSUS_MISSING) is None

    def test_non_numeric_returns_default(self):
        assert _safe_int("N/A", 0) == 0


# =========================================================================
# RegionId
# =========================================================================

class TestRegionId:
    def test_fips(self):
        assert RegionId("30", "111").fips == "30111"

    def test_frozen(self):
        region = RegionId("30", "111")
        with pytest.raises(Exception):
            region.state_fips = "06"

    def test_to_dict(self):
        d = RegionId("30", "111", "Montana", "Yellowstone County").to_dict()
        assert d["fips"] == "30111"
        assert d["county_name"] == "Yellowstone County"


# =========================================================================
# resolve_region: FCC primary, Census Geocoder fallback
# =========================================================================

class TestResolveRegion:
    @patch("census.requests.get")
    def test_fcc_hit(self, mock_get, cfg):
        mock_get.return_value = _resp(200, FCC_YELLOWSTONE)
        region = resolve_region(45.78, -108.50, cfg)
        assert region == RegionId("30", "111", "Montana", "Yellowstone County")
        assert mock_get.call_count == 1

    @patch("census.requests.get")
    def test_fcc_block_fips_only(self, mock_get, cfg):
        mock_get.return_value = _resp(200, {"results": [{"block_fips": "061590762011018"}]})
        region = resolve_region(33.7, -117.8, cfg)
        assert region.fips == "06159"

    @patch("census.requests.get")
    def test_falls_back_to_census_geocoder(self, mock_get, cfg):
        mock_get.side_effect = [
            _resp(500, None),
            _resp(200, CENSUS_GEOCODER_YELLOWSTONE),
        ]
        region = resolve_region(45.78, -108.50, cfg)
        assert region.fips == "30111"
        assert region.state_name == "Montana"
        assert mock_get.call_count == 2

    @patch("census.requests.get")
    def test_fcc_timeout_then_fallback(self, mock_get, cfg):
        mock_get.side_effect = [
            requests.Timeout("slow"),
            _resp(200, CENSUS_GEOCODER_YELLOWSTONE),
        ]
        assert resolve_region(45.78, -108.50, cfg).fips == "30111"

    @patch("census.requests.get")
    def test_offshore_returns_none(self, mock_get, cfg):
        mock_get.side_effect = [
            _resp(200, {"results": []}),
            _resp(200, {"result": {"geographies": {"Counties": []}}}),
        ]
        assert resolve_region(30.0, -40.0, cfg) is None

    @patch("census.requests.get")
    def test_never_raises(self, mock_get, cfg):
        mock_get.side_effect = requests.ConnectionError("down")
        assert resolve_region(45.78, -108.50, cfg) is None

    @patch("census.requests.get")
    def test_uses_configured_timeout(self, mock_get):
        mock_get.return_value = _resp(200, FCC_YELLOWSTONE)
        resolve_region(45.78, -108.50, DataSourceConfig(request_timeout=4))
        assert mock_get.call_args.kwargs["timeout"] == 4


# =========================================================================
# ACS county metrics
# =========================================================================

ACS_HEADER = [
    "NAME", "B01003_001E", "B19013_001E", "B25001_001E", "B08303_001E",
    "B08013_001E", "B23025_003E", "B23025_005E", "B01002_001E",
    "state", "county",
]
ACS_ROW = [
    "Yellowstone County, Montana", "164000", "65000", "72000", "78000",
    "1404000", "85000", "2550", "39.5", "30", "111",
]


class TestParseAcsRow:
    def test_normal_row(self):
        m = _parse_acs_row(dict(zip(ACS_HEADER, ACS_ROW)))
        assert m.population == 164000
        assert m.median_income == 65000
        assert m.median_age == 39.5
        assert m.county_name == "Yellowstone County"
        assert m.commute_time_minutes == 18.0
        assert m.unemployment_rate == 3.0

    def test_suppressed_values(self):
        row = dict(zip(ACS_HEADER, ACS_ROW))
        row["B19013_001E"] = _CENSUS_MISSING
        row["B01002_001E"] = "-666666666"
        m = _parse_acs_row(row)
        assert m.median_income is None
        assert m.median_age is None

    @pytest.mark.parametrize("code", [
        "-999999999", "-888888888", "-666666666", "-555555555", "-222222222",
    ])
    def test_every_annotation_code_is_missing(self, code):
        row = dict(zip(ACS_HEADER, ACS_ROW))
        row["B01003_001E"] = code
        row["B19013_001E"] = code
        row["B08303_001E"] = code
        m = _parse_acs_row(row)
        assert m.population is None
        assert m.median_income is None
        assert m.commuting_workers is None
        assert m.commute_time_minutes is None

    def test_sentinel_population_does_not_reach_density(self):
        from metric_sources import FALLBACK, _assemble
        row = dict(zip(ACS_HEADER, ACS_ROW))
        row["B01003_001E"] = "-999999999"
        row["B19013_001E"] = "-888888888"
        bundle = _assemble({"census": _parse_acs_row(row), "land_area": 2635.0}, ())
        assert bundle.population is None
        assert bundle.population_density == 50
        assert bundle.provenance["population_density"] == FALLBACK
        assert bundle.median_income == 50000
        assert bundle.provenance["median_income"] == FALLBACK


class TestDerivedRates:
    def test_no_workers_means_no_commute(self):
        assert CensusMetrics(commuting_workers=0, aggregate_travel_minutes=10).commute_time_minutes is None

    def test_no_labor_force_means_no_rate(self):
        assert CensusMetrics(labor_force=None, unemployed=5).unemployment_rate is None


class TestFetchCensusMetrics:
    @patch("census.requests.get")
    def test_success(self, mock_get, cfg):
        mock_get.return_value = _resp(200, [ACS_HEADER, ACS_ROW])
        m = fetch_census_metrics(RegionId("30", "111"), cfg)
        assert m.population == 164000

        params = mock_get.call_args.kwargs["params"]
        assert params["for"] == "county:111"
        assert params["in"] == "state:30"
        assert "key" not in params
        assert "/2022/acs/acs5" in mock_get.call_args.args[0]

    @patch("census.requests.get")
    def test_api_key_and_year_from_config(self, mock_get):
        mock_get.return_value = _resp(200, [ACS_HEADER, ACS_ROW])
        fetch_census_metrics(RegionId("30", "111"),
                             DataSourceConfig(census_api_key="k", acs_year=2021))
        assert mock_get.call_args.kwargs["params"]["key"] == "k"
        assert "/2021/acs/acs5" in mock_get.call_args.args[0]

    @patch("census.requests.get")
    def test_http_error_raises_source_unavailable(self, mock_get, cfg):
        mock_get.return_value = _resp(503, None)
        with pytest.raises(SourceUnavailableError) as exc:
            fetch_census_metrics(RegionId("30", "111"), cfg)
        assert exc.value.source == "census"

    @patch("census.requests.get")
    def test_empty_payload_raises(self, mock_get, cfg):
        mock_get.return_value = _resp(200, [ACS_HEADER])
        with pytest.raises(SourceUnavailableError):
            fetch_census_metrics(RegionId("30", "111"), cfg)

    @patch("census.requests.get")
    def test_timeout_raises(self, mock_get, cfg):
        mock_get.side_effect = requests.Timeout("slow")
        with pytest.raises(SourceUnavailableError):
            fetch_census_metrics(RegionId("30", "111"), cfg)
