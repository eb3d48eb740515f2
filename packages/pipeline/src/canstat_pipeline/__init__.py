"""
canstat_pipeline — retrieval pipeline for Statistics Canada and census data.

Architecture:
  catalog/     — in-memory catalog search and parquet snapshots
  sources/     — one adapter per upstream API (StatCan WDS, CensusMapper)
  cache/       — fingerprint-addressed DuckDB payload cache
  fetcher.py   — cached, coalescing retrieval over the sources
  transforms/  — scale/unit normalization and reshaping (wide/long/joined)
  pipelines/   — search → fetch → normalize → shape orchestration
  utils/       — structlog configuration, caller-side retry decorator

Quick start:
    import asyncio
    from canstat_pipeline.catalog import Catalog
    from canstat_pipeline.fetcher import Fetcher
    from canstat_pipeline.pipelines import RetrievalPipeline

    pipeline = RetrievalPipeline(Catalog(), Fetcher())
    result = asyncio.run(pipeline.run_identifier("18-10-0004-01", target="long"))

CLI:
    canstat catalog refresh --family statcan
    canstat search "consumer price index"
    canstat fetch 18-10-0004-01 --start 2020-01 --region Canada

Shared code from canstat_shared:
    from canstat_shared.config import settings
    from canstat_shared.models import CatalogEntry, RetrievalRequest, Selectors
    from canstat_shared.geo import resolve_region
    from canstat_shared.constants import SCALE_MULTIPLIERS
"""

__version__ = "0.1.0"
