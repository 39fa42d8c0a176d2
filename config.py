"""
Data-source configuration for the rurality pipeline.

API keys, timeouts and retry policy for every outbound data source live in
one frozen dataclass that is passed explicitly to the geocoder, the region
resolver and the metric orchestrator.  Nothing in the pipeline reads
credentials from ambient globals; callers build a config (usually via
DataSourceConfig.from_env()) and hand it down.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Upper bound on any single outbound wait (seconds).
MAX_REQUEST_TIMEOUT = 10.0


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class DataSourceConfig:
    """Credentials and network policy for the external data sources.

    request_timeout bounds each HTTP call; source_timeout bounds how long the
    orchestrator waits for a whole metric source (including its retry)
    before substituting the fallback.
    """
    census_api_key: str = ""
    mapbox_token: str = ""
    user_agent: str = "RuralityIndex/1.0"
    request_timeout: float = 10.0
    source_timeout: float = 10.0
    source_retries: int = 1
    acs_year: int = 2022

    def __post_init__(self):
        if self.request_timeout <= 0 or self.request_timeout > MAX_REQUEST_TIMEOUT:
            raise ValueError(
                f"request_timeout must be in (0, {MAX_REQUEST_TIMEOUT}], "
                f"got {self.request_timeout}"
            )
        if self.source_timeout <= 0:
            raise ValueError(f"source_timeout must be > 0, got {self.source_timeout}")
        if self.source_retries < 0:
            raise ValueError(f"source_retries must be >= 0, got {self.source_retries}")

    @classmethod
    def from_env(cls) -> "DataSourceConfig":
        """Build a config from CENSUS_API_KEY, MAPBOX_TOKEN and RURALITY_* env vars."""
        census_key = os.environ.get("CENSUS_API_KEY", "")
        if not census_key:
            logger.info("CENSUS_API_KEY not set; ACS requests limited to 500/day")
        return cls(
            census_api_key=census_key,
            mapbox_token=os.environ.get("MAPBOX_TOKEN", ""),
            user_agent=os.environ.get("RURALITY_USER_AGENT", cls.user_agent),
            request_timeout=min(
                _env_float("RURALITY_REQUEST_TIMEOUT", cls.request_timeout),
                MAX_REQUEST_TIMEOUT,
            ),
            source_timeout=_env_float("RURALITY_SOURCE_TIMEOUT", cls.source_timeout),
            source_retries=_env_int("RURALITY_SOURCE_RETRIES", cls.source_retries),
            acs_year=_env_int("RURALITY_ACS_YEAR", cls.acs_year),
        )


_default_config: Optional[DataSourceConfig] = None


def default_config() -> DataSourceConfig:
    """Process-wide config built lazily from the environment."""
    global _default_config
    if _default_config is None:
        _default_config = DataSourceConfig.from_env()
    return _default_config
