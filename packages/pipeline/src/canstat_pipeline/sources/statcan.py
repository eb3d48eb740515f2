"""
sources/statcan.py — Statistics Canada WDS data source adapters.

Three kinds of StatCan resources are retrievable:

  StatCanTableSource    — full-table CSV bundles, identifier "18-10-0004-01"
  StatCanVectorSource   — single series from WDS JSON, identifier "v41690973"
  StatCanCubeListSource — the WDS cube list, identifier "statcan/cubes",
                          used to build the catalog snapshot

StatCan CSV format notes:
  - First row is the header (may carry a UTF-8 BOM)
  - Standard columns: REF_DATE, GEO, DGUID, <dimensions…>, UOM, UOM_ID,
    SCALAR_FACTOR, SCALAR_ID, VECTOR, COORDINATE, VALUE, STATUS, SYMBOL,
    TERMINATED, DECIMALS
  - VALUE is numeric or suppressed ('..' / 'x' / 'F')
  - The zip holds {pid}.csv and {pid}_MetaData.csv

Usage:
    source = StatCanTableSource()
    payload = await source.retrieve("18-10-0004-01", Selectors())
    df = source.parse(payload, "18-10-0004-01", Selectors(regions=("ON",)))
    # columns: ref_date, geo, geo_uid, <dimensions>, uom, scalar_factor, vector, value
"""

from __future__ import annotations

import io
import json
import re
import zipfile
from datetime import date
from typing import Any

import httpx
import polars as pl

from canstat_shared.config import settings
from canstat_shared.constants import STATCAN_METADATA_COLUMNS
from canstat_shared.geo import normalize_geo_column, region_codes
from canstat_shared.models import Selectors
from canstat_shared.time_utils import parse_statcan_date_expr
from canstat_pipeline.sources.base import BaseSource

_TABLE_RE = re.compile(r"^\d{2}-?\d{2}-?\d{4}(-?\d{2})?$")
_VECTOR_RE = re.compile(r"^[vV]\d+$")

CUBE_LIST_IDENTIFIER = "statcan/cubes"

# Earliest reference period requested when a vector fetch has no start date
_VECTOR_EPOCH = date(1900, 1, 1)


def format_table_id(product_id: str | int) -> str:
    """
    Render a StatCan product ID in its canonical dashed form.

    Examples:
        format_table_id("3610043401")  -> "36-10-0434-01"
        format_table_id(18100004)      -> "18-10-0004-01"
    """
    digits = str(product_id).replace("-", "")
    if len(digits) == 8:
        digits += "01"
    if len(digits) != 10 or not digits.isdigit():
        raise ValueError(f"Not a StatCan product ID: {product_id!r}")
    return f"{digits[:2]}-{digits[2:4]}-{digits[4:8]}-{digits[8:]}"


def _filter_selectors(df: pl.DataFrame, selectors: Selectors) -> pl.DataFrame:
    """Apply date-range and region selectors to a frame with ref_date / geo_uid."""
    if selectors.start or selectors.end:
        parsed = parse_statcan_date_expr("ref_date")
        if selectors.start:
            df = df.filter(parsed >= selectors.start)
        if selectors.end:
            df = df.filter(parsed <= selectors.end)
    if selectors.regions and "geo_uid" in df.columns:
        codes = region_codes(selectors.regions)
        names = {r.casefold() for r in selectors.regions}
        df = df.filter(
            pl.col("geo_uid").is_in(list(codes))
            | pl.col("geo").str.to_lowercase().is_in(list(names))
        )
    return df


class StatCanTableSource(BaseSource):
    """Downloads and parses Statistics Canada full-table CSV bundles."""

    name = "StatCan"
    scale_field = "scalar_factor"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self._base_url = (base_url or settings.statcan_base_url).rstrip("/")

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_table_id(table_pid: str) -> str:
        """
        Convert a StatCan PID to an 8-digit table file ID.

        StatCan PIDs come in three forms:
          - 10-digit: "3610043401" (full PID including revision suffix)
          - 8-digit:  "36100434" (table file ID, no revision suffix)
          - dashed:   "36-10-0434-01" (canonical dash form)

        The bulk CSV download URL uses only the 8-digit form.
        """
        return table_pid.replace("-", "")[:8]

    def _csv_zip_url(self, table_pid: str) -> str:
        """Bulk CSV download URL: /n1/tbl/csv/{table_id}-eng.zip"""
        return f"{self._base_url}/n1/tbl/csv/{self._to_table_id(table_pid)}-eng.zip"

    # ------------------------------------------------------------------
    # BaseSource interface
    # ------------------------------------------------------------------

    def handles(self, identifier: str) -> bool:
        return bool(_TABLE_RE.match(identifier))

    async def retrieve(self, identifier: str, selectors: Selectors) -> bytes:
        url = self._csv_zip_url(identifier)
        self._log.info("downloading", url=url, table_pid=identifier)
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content

    @staticmethod
    def _read_csv_zip(payload: bytes, table_pid: str) -> pl.DataFrame:
        """
        Extract and parse the data CSV from a StatCan zip bundle.

        Every column is read as a string; numeric coercion belongs to the
        normalizer so suppression markers survive until then.
        """
        try:
            zf = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile as exc:
            raise ValueError(f"StatCan payload for pid={table_pid} is not a zip") from exc

        with zf:
            data_files = [
                n for n in zf.namelist()
                if n.endswith(".csv") and "MetaData" not in n
            ]
            if not data_files:
                raise ValueError(f"No data CSV found in StatCan zip for pid={table_pid}")
            raw = zf.read(data_files[0])

        if raw.startswith(b"\xef\xbb\xbf"):
            raw = raw[3:]

        return pl.read_csv(
            raw,
            infer_schema_length=0,
            missing_utf8_is_empty_string=True,
            truncate_ragged_lines=True,
        )

    def parse(
        self,
        payload: bytes,
        identifier: str,
        selectors: Selectors,
    ) -> pl.DataFrame:
        """
        Parse a full-table bundle into raw rows.

        Output columns:
            ref_date      String  — reference period as published
            geo           String  — original GEO string
            geo_uid       String  — SGC code for Canada / provinces, else null
            <dimensions>  String  — one column per table dimension
            uom           String  — unit of measure
            scalar_factor String  — "units", "thousands", …
            vector        String  — series vector (V-number)
            value         String  — raw VALUE, suppression markers included
        """
        df = self._normalize_columns(self._read_csv_zip(payload, identifier))

        if "ref_date" not in df.columns or "value" not in df.columns:
            raise ValueError(f"REF_DATE/VALUE columns not found. Columns: {df.columns}")

        # Footnote rows at the end of the file have no REF_DATE
        df = df.filter(pl.col("ref_date").is_not_null() & (pl.col("ref_date") != ""))
        df = df.drop([c for c in df.columns if c in STATCAN_METADATA_COLUMNS])
        if "scalar_factor" in df.columns:
            df = df.with_columns(pl.col("scalar_factor").str.to_lowercase())

        if "geo" in df.columns:
            df = normalize_geo_column(df, "geo")

        df = _filter_selectors(df, selectors)
        df = self._select_fields(
            df,
            selectors.fields,
            required=("ref_date", "geo", "geo_uid", "scalar_factor", "value"),
        )

        self._log.debug(
            "parse_stats",
            table_pid=identifier,
            output_rows=len(df),
            unmapped_geos=df["geo_uid"].null_count() if "geo_uid" in df.columns else 0,
        )
        return df

    async def get_metadata(self) -> dict[str, Any]:
        return {
            "source_name": self.name,
            "base_url": self._base_url,
            "description": "Statistics Canada full-table CSV downloads",
        }


class StatCanVectorSource(BaseSource):
    """Pulls single series from the WDS getDataFromVectorByReferencePeriodRange endpoint."""

    name = "StatCanWDS"
    scale_field = "scalar_factor"

    def __init__(
        self,
        *,
        wds_url: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self._wds_url = (wds_url or settings.statcan_wds_url).rstrip("/")

    def handles(self, identifier: str) -> bool:
        return bool(_VECTOR_RE.match(identifier))

    async def retrieve(self, identifier: str, selectors: Selectors) -> bytes:
        """
        WDS takes quoted vector ids and an inclusive reference-period range:

          ?vectorIds="41690973"&startRefPeriod=2020-01-01&endReferencePeriod=2024-12-01
        """
        vector_id = identifier[1:]
        params = {
            "vectorIds": f'"{vector_id}"',
            "startRefPeriod": (selectors.start or _VECTOR_EPOCH).isoformat(),
            "endReferencePeriod": (selectors.end or date.today()).isoformat(),
        }
        url = f"{self._wds_url}/getDataFromVectorByReferencePeriodRange"
        self._log.info("wds_fetch", url=url, vector=identifier, params=params)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.content

    def parse(
        self,
        payload: bytes,
        identifier: str,
        selectors: Selectors,
    ) -> pl.DataFrame:
        """
        Flatten a WDS response into one row per data point.

        Response shape:
          [{"status": "SUCCESS",
            "object": {"vectorId": 41690973, "productId": 18100004,
                       "coordinate": "2.2.0…",
                       "vectorDataPoint": [{"refPer": "2024-01-01",
                                            "value": 158.3,
                                            "scalarFactorCode": 0,
                                            "symbolCode": 0, …}]}}]
        """
        try:
            body = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(f"WDS payload for {identifier} is not JSON") from exc

        if not isinstance(body, list) or not body:
            raise ValueError(f"Unexpected WDS response shape for {identifier}")

        rows: list[dict[str, str | None]] = []
        for item in body:
            if item.get("status") != "SUCCESS":
                raise ValueError(
                    f"WDS returned status {item.get('status')!r} for {identifier}: "
                    f"{item.get('object')}"
                )
            obj = item.get("object") or {}
            product_id = obj.get("productId")
            for point in obj.get("vectorDataPoint", []):
                value = point.get("value")
                rows.append(
                    {
                        "ref_date": point.get("refPer"),
                        "vector": f"v{obj.get('vectorId')}",
                        "table_id": format_table_id(product_id) if product_id else None,
                        "coordinate": obj.get("coordinate"),
                        "scalar_factor": str(point.get("scalarFactorCode", 0)),
                        "value": None if value is None else str(value),
                    }
                )

        df = pl.DataFrame(
            rows,
            schema={
                "ref_date": pl.String,
                "vector": pl.String,
                "table_id": pl.String,
                "coordinate": pl.String,
                "scalar_factor": pl.String,
                "value": pl.String,
            },
        )
        if selectors.regions:
            self._log.debug("regions_ignored_for_vector", vector=identifier)
        df = _filter_selectors(df, selectors)
        return self._select_fields(
            df, selectors.fields, required=("ref_date", "scalar_factor", "value")
        )

    async def get_metadata(self) -> dict[str, Any]:
        return {
            "source_name": self.name,
            "base_url": self._wds_url,
            "description": "Statistics Canada WDS: single vector series",
        }


class StatCanCubeListSource(BaseSource):
    """The WDS cube list; feeds the catalog snapshot rather than analysis."""

    name = "StatCanCubes"

    def __init__(
        self,
        *,
        wds_url: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self._wds_url = (wds_url or settings.statcan_wds_url).rstrip("/")

    def handles(self, identifier: str) -> bool:
        return identifier == CUBE_LIST_IDENTIFIER

    async def retrieve(self, identifier: str, selectors: Selectors) -> bytes:
        url = f"{self._wds_url}/getAllCubesList"
        self._log.info("cube_list_fetch", url=url)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content

    def parse(
        self,
        payload: bytes,
        identifier: str,
        selectors: Selectors,
    ) -> pl.DataFrame:
        """
        Output columns: product_id, title, subject, survey, frequency, archived.
        """
        try:
            cubes = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError("Cube list payload is not JSON") from exc
        if not isinstance(cubes, list):
            raise ValueError("Cube list payload is not a JSON array")

        def joined(value: Any) -> str:
            if isinstance(value, list):
                return "; ".join(str(v) for v in value if v)
            return str(value or "")

        rows = [
            {
                "product_id": format_table_id(cube["productId"]),
                "title": cube.get("cubeTitleEn") or "",
                "subject": joined(cube.get("subjectEn")),
                "survey": joined(cube.get("surveyEn")),
                "frequency": str(cube.get("frequencyCode") or ""),
                "archived": str(cube.get("archived") or ""),
            }
            for cube in cubes
            if cube.get("productId")
        ]
        return pl.DataFrame(
            rows,
            schema={
                "product_id": pl.String,
                "title": pl.String,
                "subject": pl.String,
                "survey": pl.String,
                "frequency": pl.String,
                "archived": pl.String,
            },
        )

    async def get_metadata(self) -> dict[str, Any]:
        return {
            "source_name": self.name,
            "base_url": self._wds_url,
            "description": "Statistics Canada WDS: cube list for the catalog",
        }
