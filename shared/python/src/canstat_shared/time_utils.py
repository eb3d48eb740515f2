"""
time_utils.py — Date parsing for StatCan reference periods.

StatCan publishes reference periods in several formats:
- ISO: "2024-01-01" (WDS refPer)
- Monthly: "2024-01" (CSV REF_DATE), "January 2024"
- Quarterly: "2024-Q1", "Q1 2024", "2024Q1"
- Annual: "2024"
- Fiscal / crop years: "2023/2024" (start year is used)

Usage:
    from canstat_shared.time_utils import parse_statcan_date, coerce_date

    dt = parse_statcan_date("2024-01")           # date(2024, 1, 1)
    dt = parse_statcan_date("Q1 2024")           # date(2024, 1, 1)
    dt = coerce_date("2020")                     # date(2020, 1, 1)
"""

from __future__ import annotations

import re
from datetime import date, datetime

import polars as pl

# Month name → month number (English and French, with abbreviations)
_MONTH_NAMES: dict[str, int] = {
    "january": 1, "jan": 1, "janvier": 1,
    "february": 2, "feb": 2, "février": 2,
    "march": 3, "mar": 3, "mars": 3,
    "april": 4, "apr": 4, "avril": 4,
    "may": 5, "mai": 5,
    "june": 6, "jun": 6, "juin": 6,
    "july": 7, "jul": 7, "juillet": 7,
    "august": 8, "aug": 8, "août": 8,
    "september": 9, "sep": 9, "sept": 9, "septembre": 9,
    "october": 10, "oct": 10, "octobre": 10,
    "november": 11, "nov": 11, "novembre": 11,
    "december": 12, "dec": 12, "décembre": 12,
}


def parse_statcan_date(raw: str | None) -> date | None:
    """
    Parse a StatCan reference period into a Python date object.

    Returns the FIRST day of the period for all sub-annual frequencies.
    Returns None if the string cannot be parsed.

    Args:
        raw: Raw reference period string.

    Returns:
        datetime.date or None.
    """
    if not raw:
        return None

    s = raw.strip()

    m = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", s)
    if m:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = re.fullmatch(r"(\d{4})-(\d{2})", s)
    if m:
        return date(int(m.group(1)), int(m.group(2)), 1)

    m = re.fullmatch(r"[Qq](\d)\s+(\d{4})", s)
    if m:
        quarter, year = int(m.group(1)), int(m.group(2))
        return date(year, (quarter - 1) * 3 + 1, 1)
    m = re.fullmatch(r"(\d{4})-?[Qq](\d)", s)
    if m:
        year, quarter = int(m.group(1)), int(m.group(2))
        return date(year, (quarter - 1) * 3 + 1, 1)

    m = re.fullmatch(r"([A-Za-zéèêûôîâùàäëïü]+)\.?\s+(\d{4})", s)
    if m:
        month_num = _MONTH_NAMES.get(m.group(1).lower())
        if month_num:
            return date(int(m.group(2)), month_num, 1)

    # Fiscal / crop year: "2023/2024"
    m = re.fullmatch(r"(\d{4})/(\d{4})", s)
    if m:
        return date(int(m.group(1)), 1, 1)

    m = re.fullmatch(r"(\d{4})", s)
    if m:
        return date(int(m.group(1)), 1, 1)

    return None


def parse_statcan_date_expr(col: str = "ref_date") -> pl.Expr:
    """Return a polars expression that parses StatCan date strings vectorially.

    "YYYY-MM" and "YYYY-MM-DD" are parsed natively; anything else falls
    back to ``parse_statcan_date`` via ``map_elements``.
    """
    c = pl.col(col).str.strip_chars()
    return (
        pl.when(c.str.len_chars() == 10)
        .then(c.str.to_date("%Y-%m-%d", strict=False))
        .when(c.str.len_chars() == 7)
        .then((c + "-01").str.to_date("%Y-%m-%d", strict=False))
        .otherwise(c.map_elements(parse_statcan_date, return_dtype=pl.Date))
    )


def coerce_date(value: date | datetime | str | None) -> date | None:
    """
    Accept a date selector in any of the forms callers pass around.

    Raises:
        ValueError: if a string cannot be parsed as a reference period.
    """
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    parsed = parse_statcan_date(value)
    if parsed is None:
        raise ValueError(f"Unrecognised date selector: {value!r}")
    return parsed
