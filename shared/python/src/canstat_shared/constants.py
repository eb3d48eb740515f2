"""
constants.py — shared constants used across the pipeline.

Province SGC codes, StatCan scale factors, suppression markers and typed
literals live here so the sources and transforms stay in sync.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Final, Literal

# ---------------------------------------------------------------------------
# Provinces and territories: SGC code -> name
# ---------------------------------------------------------------------------
PROVINCES: Final[dict[str, str]] = {
    "10": "Newfoundland and Labrador",
    "11": "Prince Edward Island",
    "12": "Nova Scotia",
    "13": "New Brunswick",
    "24": "Quebec",
    "35": "Ontario",
    "46": "Manitoba",
    "47": "Saskatchewan",
    "48": "Alberta",
    "59": "British Columbia",
    "60": "Yukon",
    "61": "Northwest Territories",
    "62": "Nunavut",
}

PROVINCE_ABBREVIATIONS: Final[dict[str, str]] = {
    "10": "NL",
    "11": "PE",
    "12": "NS",
    "13": "NB",
    "24": "QC",
    "35": "ON",
    "46": "MB",
    "47": "SK",
    "48": "AB",
    "59": "BC",
    "60": "YT",
    "61": "NT",
    "62": "NU",
}

# Reverse maps
ABBREVIATION_TO_CODE: Final[dict[str, str]] = {
    v: k for k, v in PROVINCE_ABBREVIATIONS.items()
}

CANADA_SGC: Final[str] = "01"

# ---------------------------------------------------------------------------
# Scale factors
#
# StatCan publishes SCALAR_FACTOR as a label ("thousands") in the CSV
# bundles and as a numeric scalarFactorCode (3) in WDS JSON. Both resolve
# to the same multiplier. "percentage" turns percent values into rates.
# ---------------------------------------------------------------------------
SCALE_MULTIPLIERS: Final[dict[str, Decimal]] = {
    "units": Decimal(1),
    "unit": Decimal(1),
    "unitless": Decimal(1),
    "tens": Decimal(10),
    "hundreds": Decimal(100),
    "thousands": Decimal(1_000),
    "tens of thousands": Decimal(10_000),
    "hundreds of thousands": Decimal(100_000),
    "millions": Decimal(1_000_000),
    "tens of millions": Decimal(10_000_000),
    "hundreds of millions": Decimal(100_000_000),
    "billions": Decimal(1_000_000_000),
    "percentage": Decimal("0.01"),
    "percent": Decimal("0.01"),
    **{str(code): Decimal(10) ** code for code in range(10)},
}

# Suppressed / unavailable value markers used by StatCan
SUPPRESSED: Final[frozenset[str]] = frozenset(
    {"x", "..", "...", "F", "E", "r", "p", ""}
)

# StatCan CSV columns that never carry observation data
STATCAN_METADATA_COLUMNS: Final[frozenset[str]] = frozenset(
    {
        "dguid", "uom_id", "scalar_id", "coordinate", "status",
        "symbol", "terminated", "decimals",
    }
)

# ---------------------------------------------------------------------------
# Typed literals
# ---------------------------------------------------------------------------
MatchType = Literal["exact", "contains", "fuzzy"]
NormalizeMode = Literal["numeric", "factor"]
ShapeTarget = Literal["wide", "long", "joined"]
