"""
sources/census.py — CensusMapper census API source adapter.

Identifiers name a census dataset and, optionally, one of its lists:

  CA21           — census data for selected regions and vectors (CSV)
  CA21/regions   — the dataset's named regions (CSV)
  CA21/vectors   — the dataset's variables with labels and units (CSV)

Region selectors are "TYPE:UID" strings ("CMA:59933", "PR:59") or bare
UIDs / province names whose type is inferred from the UID shape.

Census data comes back wide: one row per region, one column per vector.
Values are already absolute counts so there is no scale column.

Usage:
    source = CensusSource(api_key="CensusMapper_…")
    sel = Selectors(regions=("CMA:59933",), fields=("v_CA21_1",), level="CSD")
    payload = await source.retrieve("CA21", sel)
    df = source.parse(payload, "CA21", sel)
    # columns: geo_uid, type, region_name, population, …, v_CA21_1
"""

from __future__ import annotations

import json
import re
from collections import defaultdict
from typing import Any

import httpx
import polars as pl

from canstat_shared.config import settings
from canstat_shared.constants import CANADA_SGC
from canstat_shared.geo import resolve_region
from canstat_shared.models import Selectors
from canstat_pipeline.sources.base import BaseSource

_CENSUS_RE = re.compile(r"^(CA\d{2}[A-Za-z]*)(?:/(regions|vectors))?$")
_VECTOR_COL_RE = re.compile(r"^(v_[A-Za-z0-9]+_[A-Za-z0-9_]+?)(?::.*)?$")

_NULL_VALUES = ["NA", "x", "X", "F", ".."]

_STRING_COLUMNS = frozenset(
    {"geo_uid", "type", "region_name", "name", "vector", "label", "units",
     "parent_vector", "aggregation", "details", "pr_uid", "cma_uid", "cd_uid", "csd_uid"}
)


def _cast_numeric(df: pl.DataFrame) -> pl.DataFrame:
    """
    Cast each all-numeric column to Float64.

    CSVs are read as strings so UIDs keep their leading zeros; a column is
    only cast when no non-null value is lost in the cast.
    """
    casts = []
    for col in df.columns:
        if col in _STRING_COLUMNS:
            continue
        cast = df[col].cast(pl.Float64, strict=False)
        if cast.null_count() == df[col].null_count():
            casts.append(cast)
    return df.with_columns(casts) if casts else df


def region_type(uid: str) -> str:
    """Infer the census geography level of a UID from its shape."""
    if uid == CANADA_SGC:
        return "C"
    if "." in uid:
        return "CT"
    return {2: "PR", 4: "CD", 5: "CMA", 7: "CSD", 8: "DA"}.get(len(uid), "CSD")


def parse_region_selectors(regions: tuple[str, ...]) -> dict[str, list[str]]:
    """
    Group region selectors by geography level.

    Examples:
        parse_region_selectors(("CMA:59933", "BC", "5915"))
        -> {"CMA": ["59933"], "PR": ["59"], "CD": ["5915"]}
    """
    grouped: dict[str, list[str]] = defaultdict(list)
    for selector in regions:
        if ":" in selector:
            level, uid = selector.split(":", 1)
            grouped[level.strip().upper()].append(uid.strip())
            continue
        uid = selector.strip()
        if not uid.replace(".", "").isdigit():
            uid = resolve_region(uid) or uid
        grouped[region_type(uid)].append(uid)
    return dict(grouped)


class CensusSource(BaseSource):
    """Census data, region lists and vector lists from the CensusMapper API."""

    name = "CensusMapper"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self._base_url = (base_url or settings.census_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.census_api_key

    @property
    def _site_url(self) -> str:
        return self._base_url.removesuffix("/api/v1")

    @staticmethod
    def _split(identifier: str) -> tuple[str, str]:
        m = _CENSUS_RE.match(identifier)
        if not m:
            raise ValueError(f"Not a census identifier: {identifier!r}")
        return m.group(1), m.group(2) or "data"

    # ------------------------------------------------------------------
    # BaseSource interface
    # ------------------------------------------------------------------

    def handles(self, identifier: str) -> bool:
        return bool(_CENSUS_RE.match(identifier))

    async def retrieve(self, identifier: str, selectors: Selectors) -> bytes:
        dataset, kind = self._split(identifier)

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            if kind == "regions":
                url = f"{self._site_url}/data_sets/{dataset}/place_names.csv"
                self._log.info("census_regions_fetch", url=url, dataset=dataset)
                response = await client.get(url)
            elif kind == "vectors":
                url = f"{self._base_url}/vector_info/{dataset}.csv"
                self._log.info("census_vectors_fetch", url=url, dataset=dataset)
                response = await client.get(url)
            else:
                response = await client.post(
                    f"{self._base_url}/data.csv",
                    data=self._data_params(dataset, selectors),
                )
            response.raise_for_status()
            return response.content

    def _data_params(self, dataset: str, selectors: Selectors) -> dict[str, str]:
        if not self._api_key:
            raise ValueError("Census API key is not set (CANSTAT_CENSUS_API_KEY)")
        if not selectors.regions:
            raise ValueError("Census data requests need at least one region selector")
        params = {
            "dataset": dataset,
            "level": selectors.level or "Regions",
            "regions": json.dumps(parse_region_selectors(selectors.regions)),
            "vectors": json.dumps(list(selectors.fields)),
            "geo_hierarchy": "true",
            "api_key": self._api_key,
        }
        self._log.info(
            "census_data_fetch",
            dataset=dataset,
            level=params["level"],
            regions=params["regions"],
            vectors=len(selectors.fields),
        )
        return params

    def parse(
        self,
        payload: bytes,
        identifier: str,
        selectors: Selectors,
    ) -> pl.DataFrame:
        _, kind = self._split(identifier)
        try:
            df = pl.read_csv(
                payload,
                null_values=_NULL_VALUES,
                infer_schema_length=0,
                truncate_ragged_lines=True,
            )
        except pl.exceptions.PolarsError as exc:
            raise ValueError(f"Census payload for {identifier} is not CSV: {exc}") from exc

        if kind == "data":
            return self._parse_data(df, selectors)

        df = self._normalize_columns(df)
        if kind == "regions":
            if "region" in df.columns and "geo_uid" not in df.columns:
                df = df.rename({"region": "geo_uid"})
            if "geo_uid" not in df.columns:
                raise ValueError(f"Region list has no geo_uid column. Columns: {df.columns}")
            df = df.with_columns(pl.col("geo_uid").cast(pl.String))
            if selectors.level and "type" in df.columns:
                df = df.filter(pl.col("type") == selectors.level)
            df = _cast_numeric(df)
        elif "vector" not in df.columns:
            raise ValueError(f"Vector list has no vector column. Columns: {df.columns}")
        return df

    def _parse_data(self, df: pl.DataFrame, selectors: Selectors) -> pl.DataFrame:
        """Rename "v_CA21_1: Population, 2021" to "v_CA21_1"; snake_case the rest."""
        renames: dict[str, str] = {}
        for col in df.columns:
            m = _VECTOR_COL_RE.match(col)
            renames[col] = m.group(1) if m else self._to_snake_case(col)
        df = df.rename(renames)

        if "geo_uid" not in df.columns:
            raise ValueError(f"Census data has no GeoUID column. Columns: {df.columns}")

        missing = [v for v in selectors.fields if v not in df.columns]
        if missing:
            raise ValueError(f"Census response is missing vector(s) {missing}")
        return _cast_numeric(df)

    async def get_metadata(self) -> dict[str, Any]:
        return {
            "source_name": self.name,
            "base_url": self._base_url,
            "description": "CensusMapper API: census data, regions and vectors",
        }
