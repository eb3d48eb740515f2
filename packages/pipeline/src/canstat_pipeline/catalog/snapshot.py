"""
catalog/snapshot.py — Build, save and load catalog snapshots.

A snapshot is a parquet file of CatalogEntry rows. It is rebuilt from the
StatCan cube list and the census vector lists by refresh_catalog(), which
goes through the Fetcher like any other retrieval.

Writers hold a file lock and replace the file in one rename, so readers
never see a half-written snapshot.

Usage:
    catalog = await refresh_catalog(fetcher, ["statcan", "CA21"])
    save_snapshot(catalog, cache_path / SNAPSHOT_FILENAME)
    catalog = load_snapshot(cache_path / SNAPSHOT_FILENAME)
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

import polars as pl
import structlog
from filelock import FileLock

from canstat_shared.models import CatalogEntry, RetrievalRequest
from canstat_pipeline.catalog.search import Catalog
from canstat_pipeline.sources.statcan import CUBE_LIST_IDENTIFIER
from canstat_pipeline.transforms.shape import records_to_frame

log = structlog.get_logger(__name__)

SNAPSHOT_FILENAME = "catalog.parquet"
STATCAN_FAMILY = "statcan"

_SCHEMA = {
    "identifier": pl.String,
    "title": pl.String,
    "keywords": pl.String,
    "family": pl.String,
}


def _lock_for(path: Path) -> FileLock:
    return FileLock(str(path) + ".lock")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def save_snapshot(catalog: Catalog, path: str | Path) -> Path:
    """Write *catalog* to *path* as parquet, replacing any previous snapshot."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pl.DataFrame([e.to_row() for e in catalog], schema=_SCHEMA)

    tmp = path.with_name(path.name + ".tmp")
    with _lock_for(path):
        df.write_parquet(tmp)
        os.replace(tmp, path)
    log.info("catalog_saved", path=str(path), entries=len(df))
    return path


def load_snapshot(path: str | Path) -> Catalog:
    """
    Read a snapshot written by save_snapshot().

    Raises:
        FileNotFoundError: no snapshot at *path*.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"No catalog snapshot at {path}")
    with _lock_for(path):
        df = pl.read_parquet(path)
    catalog = Catalog(CatalogEntry.from_row(row) for row in df.iter_rows(named=True))
    log.debug("catalog_loaded", path=str(path), entries=len(catalog))
    return catalog


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def entries_from_cube_list(df: pl.DataFrame) -> list[CatalogEntry]:
    """One entry per StatCan table; subjects and surveys become keywords."""
    entries = []
    for row in df.iter_rows(named=True):
        keywords = [
            k.strip()
            for col in ("subject", "survey")
            for k in (row.get(col) or "").split(";")
            if k.strip()
        ]
        entries.append(
            CatalogEntry(
                identifier=row["product_id"],
                title=row.get("title") or row["product_id"],
                keywords=tuple(dict.fromkeys(keywords)),
                family=STATCAN_FAMILY,
            )
        )
    return entries


def entries_from_census_vectors(df: pl.DataFrame, dataset: str) -> list[CatalogEntry]:
    """One entry per census vector; units, type and details become keywords."""
    entries = []
    for row in df.iter_rows(named=True):
        vector = row.get("vector")
        if not vector:
            continue
        keywords = [
            str(row[col]).strip()
            for col in ("units", "type", "details")
            if row.get(col) not in (None, "")
        ]
        entries.append(
            CatalogEntry(
                identifier=vector,
                title=row.get("label") or vector,
                keywords=tuple(dict.fromkeys(keywords)),
                family=dataset,
            )
        )
    return entries


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

async def refresh_catalog(
    fetcher,
    families: Iterable[str],
    *,
    refresh: bool = False,
) -> Catalog:
    """
    Build a catalog from the listed families.

    Args:
        fetcher:  Fetcher used for the list retrievals (and their cache).
        families: "statcan" and/or census datasets such as "CA21".
        refresh:  Bypass cached lists.

    Returns:
        New Catalog. Errors from any family propagate; nothing partial
        is returned.
    """
    entries: list[CatalogEntry] = []
    for family in families:
        if family == STATCAN_FAMILY:
            request = RetrievalRequest(identifier=CUBE_LIST_IDENTIFIER, refresh=refresh)
            df = records_to_frame(await fetcher.fetch(request))
            built = entries_from_cube_list(df) if len(df) else []
        else:
            request = RetrievalRequest(identifier=f"{family}/vectors", refresh=refresh)
            df = records_to_frame(await fetcher.fetch(request))
            built = entries_from_census_vectors(df, family) if len(df) else []
        log.info("catalog_family_loaded", family=family, entries=len(built))
        entries.extend(built)
    return Catalog(entries)
