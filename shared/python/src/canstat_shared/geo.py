"""
geo.py — Geography lookup and normalization helpers.

StatCan tables label regions with free-text GEO strings ("Ontario",
"Canada") while census data is keyed by SGC codes ("35", "01"). These
helpers resolve both to the same code so region selectors and geometry
joins work across sources.

Usage:
    from canstat_shared.geo import province_name_to_code, resolve_region

    code = province_name_to_code("Ont.")     # "35"
    code = resolve_region("Canada")          # "01"
    name = region_name("59")                 # "British Columbia"
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from difflib import get_close_matches

import polars as pl

from canstat_shared.constants import (
    ABBREVIATION_TO_CODE,
    CANADA_SGC,
    PROVINCES,
)

# ---------------------------------------------------------------------------
# Province lookup tables (all lowercase for fuzzy matching)
# ---------------------------------------------------------------------------

_PROVINCE_ALIASES: dict[str, str] = {
    **{name.lower(): code for code, name in PROVINCES.items()},
    **{abbr.lower(): code for abbr, code in ABBREVIATION_TO_CODE.items()},
    **{code: code for code in PROVINCES},
    "nfld.": "10",
    "n.l.": "10",
    "p.e.i.": "11",
    "pei": "11",
    "n.s.": "12",
    "n.b.": "13",
    "que.": "24",
    "québec": "24",
    "ont.": "35",
    "man.": "46",
    "sask.": "47",
    "alta.": "48",
    "b.c.": "59",
    "y.t.": "60",
    "n.w.t.": "61",
    "nwt": "61",
    "nun.": "62",
}

_CANADA_ALIASES: frozenset[str] = frozenset({"canada", "can", "ca", CANADA_SGC})


def province_name_to_code(name: str) -> str | None:
    """
    Resolve a province name, abbreviation, or SGC code string to a 2-digit SGC code.

    Performs an exact match first, then falls back to fuzzy matching.

    Args:
        name: Province name, abbreviation, or SGC code (e.g. "Ontario", "ON", "35").

    Returns:
        2-digit SGC code string (e.g. "35"), or None if no match found.
    """
    if not name:
        return None

    key = name.strip().lower()
    if key in _PROVINCE_ALIASES:
        return _PROVINCE_ALIASES[key]

    if re.fullmatch(r"\d{2}", key):
        return key if key in PROVINCES else None

    matches = get_close_matches(key, list(_PROVINCE_ALIASES), n=1, cutoff=0.8)
    if matches:
        return _PROVINCE_ALIASES[matches[0]]
    return None


def resolve_region(name: str) -> str | None:
    """Resolve "Canada" or a province reference to its SGC code."""
    if not name:
        return None
    # StatCan appends a bracketed DGUID-style suffix on some GEO labels
    s = re.sub(r"\s*\[.*\]$", "", name.strip())
    if s.lower() in _CANADA_ALIASES:
        return CANADA_SGC
    return province_name_to_code(s)


def region_name(code: str) -> str | None:
    """Inverse of resolve_region for Canada and the provinces."""
    if code == CANADA_SGC:
        return "Canada"
    return PROVINCES.get(code)


def region_codes(regions: Iterable[str]) -> set[str]:
    """
    Resolve a collection of region selectors to SGC codes.

    Selectors that do not resolve are kept verbatim so callers can still
    match them against codes the lookup tables don't know (CMAs, CDs).
    """
    return {resolve_region(r) or r for r in regions}


def normalize_geo_column(
    df: pl.DataFrame,
    geo_col: str = "geo",
    *,
    code_alias: str = "geo_uid",
) -> pl.DataFrame:
    """Add a ``geo_uid`` column holding the SGC code of each GEO string.

    Resolves each unique GEO value once and maps the results back, so a
    large table with a handful of regions calls the Python lookup only a
    handful of times.

    Args:
        df:          Input DataFrame containing *geo_col*.
        geo_col:     Name of the column holding raw StatCan GEO strings.
        code_alias:  Output column name for the SGC code.

    Returns:
        DataFrame with one new column (*code_alias*).
    """
    uniques = df.select(pl.col(geo_col).unique().drop_nulls()).to_series().to_list()
    lookup = {g: resolve_region(g) for g in uniques}
    return df.with_columns(
        pl.col(geo_col)
        .replace_strict(lookup, default=None, return_dtype=pl.String)
        .alias(code_alias)
    )
