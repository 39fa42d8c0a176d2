"""
Static county tables: land area and USDA Rural-Urban Continuum Codes.

Keyed by five-digit county FIPS.  Neither table computes geography; counties
not listed return None and the metric orchestrator substitutes the national
defaults from SCORING_MODEL.defaults.

Sources:
  - Land area: Census Bureau Gazetteer (square miles of land)
  - RUCC: USDA ERS Rural-Urban Continuum Codes, 2013 edition
"""

import logging
from typing import Dict, Optional, Tuple

from census import RegionId
from config import DataSourceConfig

logger = logging.getLogger(__name__)

# USDA ERS 2013 code definitions.
RUCC_DESCRIPTIONS: Dict[int, str] = {
    1: "Counties in metro areas of 1 million population or more",
    2: "Counties in metro areas of 250,000 to 1 million population",
    3: "Counties in metro areas of fewer than 250,000 population",
    4: "Urban population of 20,000 or more, adjacent to a metro area",
    5: "Urban population of 20,000 or more, not adjacent to a metro area",
    6: "Urban population of 2,500 to 19,999, adjacent to a metro area",
    7: "Urban population of 2,500 to 19,999, not adjacent to a metro area",
    8: "Completely rural or less than 2,500 urban population, adjacent to a metro area",
    9: "Completely rural or less than 2,500 urban population, not adjacent to a metro area",
}

# fips -> land area (sq mi)
COUNTY_LAND_AREA_SQ_MI: Dict[str, float] = {
    "30111": 2635.0,   # Yellowstone County, MT
    "06059": 948.0,    # Orange County, CA
    "48453": 1023.0,   # Travis County, TX
    "19169": 573.0,    # Story County, IA
    "36061": 22.8,     # New York County, NY
    "17031": 945.0,    # Cook County, IL
    "06037": 4058.0,   # Los Angeles County, CA
    "48201": 1703.0,   # Harris County, TX
    "04013": 9200.0,   # Maricopa County, AZ
}

# fips -> RUCC (1 = large metro core .. 9 = remote rural)
COUNTY_RUCC: Dict[str, int] = {
    "30111": 3,
    "06059": 1,
    "48453": 1,
    "19169": 2,
    "36061": 1,
    "17031": 1,
    "06037": 1,
    "48201": 1,
    "04013": 1,
}


def lookup_county_area(region: RegionId,
                       config: Optional[DataSourceConfig] = None) -> Optional[float]:
    """Land area in square miles, or None for an unlisted county."""
    area = COUNTY_LAND_AREA_SQ_MI.get(region.fips)
    if area is None:
        logger.debug("No land area on file for county %s", region.fips)
    return area


def lookup_rural_urban_code(
    region: RegionId, config: Optional[DataSourceConfig] = None,
) -> Optional[Tuple[int, str]]:
    """(code, description) for the county, or None for an unlisted county."""
    code = COUNTY_RUCC.get(region.fips)
    if code is None:
        logger.debug("No rural-urban code on file for county %s", region.fips)
        return None
    return code, RUCC_DESCRIPTIONS[code]
