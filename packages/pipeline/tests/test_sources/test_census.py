"""
tests/test_sources/test_census.py — Unit tests for CensusSource.

All HTTP is mocked via respx; no real network calls are made.
"""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import polars as pl
import pytest
import respx

from canstat_shared.models import Selectors
from canstat_pipeline.sources.census import (
    CensusSource,
    parse_region_selectors,
    region_type,
)

BASE = "https://census.test/api/v1"

DATA_CSV = (
    '"GeoUID","Type","Region Name","Area (sq km)","Population","Dwellings","Households",'
    '"v_CA21_1: Population, 2021","v_CA21_906: Median total income of household in 2020 ($)"\n'
    '"59","PR","British Columbia","922503.01","5000879","2224861","2041835","5000879","85000"\n'
    '"35","PR","Ontario","892411.76","14223942","5929250","5491200","14223942","NA"\n'
).encode()

REGIONS_CSV = (
    "name,type,region,population\n"
    "British Columbia,PR,59,5000879\n"
    "Vancouver,CMA,59933,2642825\n"
).encode()

VECTORS_CSV = (
    "vector,type,label,units,parent_vector,aggregation,details\n"
    'v_CA21_1,Total,"Population, 2021",Number,,Additive,"Population; Population, 2021"\n'
    'v_CA21_906,Total,Median total income of household in 2020 ($),Currency,,Median,"Income"\n'
).encode()


@pytest.fixture
def source() -> CensusSource:
    return CensusSource(base_url=BASE, api_key="test-key")


class TestRegionSelectors:
    def test_region_type_from_uid_shape(self):
        assert region_type("01") == "C"
        assert region_type("59") == "PR"
        assert region_type("5915") == "CD"
        assert region_type("59933") == "CMA"
        assert region_type("5915022") == "CSD"
        assert region_type("9330069.01") == "CT"

    def test_parse_region_selectors(self):
        grouped = parse_region_selectors(("CMA:59933", "BC", "5915"))
        assert grouped == {"CMA": ["59933"], "PR": ["59"], "CD": ["5915"]}


class TestCensusRetrieve:
    def test_handles(self, source: CensusSource):
        assert source.handles("CA21")
        assert source.handles("CA16/regions")
        assert source.handles("CA21/vectors")
        assert not source.handles("18-10-0004-01")
        assert not source.handles("CA21/other")

    @pytest.mark.asyncio
    async def test_data_request_is_form_post(self, source: CensusSource):
        sel = Selectors(regions=("PR:59", "Ontario"), fields=("v_CA21_1",), level="PR")
        with respx.mock() as router:
            route = router.post(f"{BASE}/data.csv").mock(
                return_value=httpx.Response(200, content=DATA_CSV)
            )
            payload = await source.retrieve("CA21", sel)

        assert payload == DATA_CSV
        form = parse_qs(route.calls.last.request.content.decode())
        assert form["dataset"] == ["CA21"]
        assert form["level"] == ["PR"]
        assert json.loads(form["regions"][0]) == {"PR": ["59", "35"]}
        assert json.loads(form["vectors"][0]) == ["v_CA21_1"]
        assert form["api_key"] == ["test-key"]

    @pytest.mark.asyncio
    async def test_data_request_needs_api_key(self):
        source = CensusSource(base_url=BASE, api_key="")
        with pytest.raises(ValueError, match="API key"):
            await source.retrieve("CA21", Selectors(regions=("PR:59",)))

    @pytest.mark.asyncio
    async def test_data_request_needs_regions(self, source: CensusSource):
        with pytest.raises(ValueError, match="region"):
            await source.retrieve("CA21", Selectors())

    @pytest.mark.asyncio
    async def test_region_list_url(self, source: CensusSource):
        with respx.mock() as router:
            route = router.get("https://census.test/data_sets/CA21/place_names.csv").mock(
                return_value=httpx.Response(200, content=REGIONS_CSV)
            )
            await source.retrieve("CA21/regions", Selectors())
        assert route.called

    @pytest.mark.asyncio
    async def test_vector_list_url(self, source: CensusSource):
        with respx.mock() as router:
            route = router.get(f"{BASE}/vector_info/CA21.csv").mock(
                return_value=httpx.Response(200, content=VECTORS_CSV)
            )
            await source.retrieve("CA21/vectors", Selectors())
        assert route.called


class TestCensusParse:
    def test_parse_data_renames_vectors(self, source: CensusSource):
        sel = Selectors(regions=("PR:59",), fields=("v_CA21_1",))
        df = source.parse(DATA_CSV, "CA21", sel)
        assert "v_CA21_1" in df.columns
        assert "v_CA21_906" in df.columns
        assert "geo_uid" in df.columns
        assert "region_name" in df.columns
        assert "area_sq_km" in df.columns

    def test_parse_data_keeps_uid_strings_and_casts_numbers(self, source: CensusSource):
        df = source.parse(DATA_CSV, "CA21", Selectors(regions=("PR:59",)))
        assert df["geo_uid"].dtype == pl.String
        assert df["geo_uid"].to_list() == ["59", "35"]
        assert df["v_CA21_1"].dtype == pl.Float64
        assert df["v_CA21_906"].to_list() == [85000.0, None]

    def test_parse_data_missing_vector_raises(self, source: CensusSource):
        sel = Selectors(regions=("PR:59",), fields=("v_CA21_2",))
        with pytest.raises(ValueError, match="missing vector"):
            source.parse(DATA_CSV, "CA21", sel)

    def test_parse_regions_filters_level(self, source: CensusSource):
        df = source.parse(REGIONS_CSV, "CA21/regions", Selectors(level="CMA"))
        assert df["geo_uid"].to_list() == ["59933"]
        assert df["name"].to_list() == ["Vancouver"]

    def test_parse_vectors(self, source: CensusSource):
        df = source.parse(VECTORS_CSV, "CA21/vectors", Selectors())
        assert df["vector"].to_list() == ["v_CA21_1", "v_CA21_906"]
        assert df["label"][0] == "Population, 2021"

    def test_parse_vectors_requires_vector_column(self, source: CensusSource):
        with pytest.raises(ValueError, match="vector column"):
            source.parse(b"a,b\n1,2\n", "CA21/vectors", Selectors())

    def test_census_records_are_unscaled(self, source: CensusSource):
        df = source.parse(DATA_CSV, "CA21", Selectors(regions=("PR:59",)))
        records = source.to_records(df)
        assert all(r.scale_field is None for r in records)
