"""
tests/conftest.py — Shared pytest fixtures for the canstat test suite.

Provides:
  fetcher_config    — FetcherConfig whose cache lives in tmp_path
  sample_catalog    — small in-memory Catalog (StatCan tables + census vectors)
  statcan_csv       — StatCan full-table CSV bytes (2 periods x 2 regions)
  statcan_zip       — the same CSV wrapped in a StatCan-style zip bundle
  mock_http         — configured respx router for faking HTTP responses
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest
import respx

from canstat_shared.db import reset_duckdb_connections
from canstat_shared.models import CatalogEntry
from canstat_pipeline.catalog import Catalog
from canstat_pipeline.fetcher import FetcherConfig

STATCAN_BASE = "https://statcan.test"
STATCAN_WDS = "https://statcan.test/t1/wds/rest"
CENSUS_BASE = "https://census.test/api/v1"


def make_zip(csv_bytes: bytes, pid: str = "18100004") -> bytes:
    """Wrap CSV bytes in a zip file as StatCan would serve."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(f"{pid}.csv", csv_bytes)
        zf.writestr(f"{pid}_MetaData.csv", "metadata placeholder")
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Cache isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _close_duckdb():
    yield
    reset_duckdb_connections()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def fetcher_config(cache_dir: Path) -> FetcherConfig:
    return FetcherConfig(
        cache_path=cache_dir,
        timeout=5.0,
        statcan_base_url=STATCAN_BASE,
        statcan_wds_url=STATCAN_WDS,
        census_base_url=CENSUS_BASE,
        census_api_key="test-key",
    )


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_catalog() -> Catalog:
    return Catalog(
        [
            CatalogEntry(
                identifier="T1",
                title="Household income statistics",
                keywords=("income", "household"),
                family="statcan",
            ),
            CatalogEntry(
                identifier="18-10-0004-01",
                title="Consumer Price Index, monthly, not seasonally adjusted",
                keywords=("prices", "inflation"),
                family="statcan",
            ),
            CatalogEntry(
                identifier="14-10-0287-01",
                title="Labour force characteristics by province, monthly",
                keywords=("labour", "employment", "unemployment"),
                family="statcan",
            ),
            CatalogEntry(
                identifier="v_CA21_1",
                title="Population, 2021",
                keywords=("Number", "Total"),
                family="CA21",
            ),
            CatalogEntry(
                identifier="v_CA21_906",
                title="Median total income of household in 2020 ($)",
                keywords=("Currency", "Median"),
                family="CA21",
            ),
        ]
    )


@pytest.fixture
def statcan_csv() -> bytes:
    """StatCan CSV: CPI-style table, values in thousands, one suppressed cell."""
    return (
        "\ufeff"
        '"REF_DATE","GEO","DGUID","Products and product groups","UOM","UOM_ID",'
        '"SCALAR_FACTOR","SCALAR_ID","VECTOR","COORDINATE","VALUE","STATUS",'
        '"SYMBOL","TERMINATED","DECIMALS"\n'
        '"2023-01","Canada","2016A000011124","All-items","Number","223",'
        '"thousands","3","v41690973","2.2","42","","","","1"\n'
        '"2023-01","Ontario","2016A000235","All-items","Number","223",'
        '"thousands","3","v41691074","35.2","10.5","","","","1"\n'
        '"2023-02","Canada","2016A000011124","All-items","Number","223",'
        '"thousands","3","v41690973","2.2","..","","","","1"\n'
        '"2023-02","Ontario","2016A000235","All-items","Number","223",'
        '"thousands","3","v41691074","35.2","12","","","","1"\n'
    ).encode("utf-8")


@pytest.fixture
def statcan_zip(statcan_csv: bytes) -> bytes:
    return make_zip(statcan_csv)


# ---------------------------------------------------------------------------
# respx HTTP mock router
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_http():
    """
    Activate the respx mock router for all httpx requests.

    Usage in tests:
        def test_something(mock_http):
            mock_http.get("https://...").mock(return_value=httpx.Response(200, json={...}))
    """
    with respx.mock(assert_all_called=False) as router:
        yield router
