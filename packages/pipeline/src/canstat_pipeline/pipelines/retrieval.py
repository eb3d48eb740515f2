"""
pipelines/retrieval.py — Search → Fetch → Normalize → Shape.

Orchestrates:
  1. Catalog search → top-ranked CatalogEntry (run() only)
  2. Entry → RetrievalRequest (census vectors become a dataset request
     with the vector as a field selector)
  3. Fetcher → RawRecords (cache first unless refresh)
  4. ValueNormalizer → NormalizedRecords
  5. reshape → polars DataFrame

Stages run strictly in that order. Any stage failure propagates unchanged
and no partial result is returned. Nothing here retries.

Usage:
    from canstat_pipeline.pipelines.retrieval import RetrievalPipeline

    pipeline = RetrievalPipeline(catalog, Fetcher())
    result = await pipeline.run("household income", target="long")
    result.table.head()

    result = await pipeline.run_identifier(
        "v_CA21_1", selectors=Selectors(regions=("PR:59",)), target="wide",
        index=["geo_uid"],
    )
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import polars as pl

from canstat_shared.constants import MatchType, NormalizeMode, ShapeTarget
from canstat_shared.models import (
    CatalogEntry,
    NormalizedRecord,
    RetrievalRequest,
    Selectors,
)
from canstat_pipeline.catalog import Catalog
from canstat_pipeline.catalog.snapshot import STATCAN_FAMILY
from canstat_pipeline.fetcher import Fetcher
from canstat_pipeline.transforms.normalize import CodeTable, ValueNormalizer
from canstat_pipeline.transforms.shape import reshape
from canstat_pipeline.utils.logging import get_logger

log = get_logger(__name__, pipeline="retrieval")


@dataclass
class PipelineResult:
    """Outcome of one pipeline invocation."""

    query: str | None
    entry: CatalogEntry | None
    request: RetrievalRequest | None
    records: list[NormalizedRecord] = field(default_factory=list)
    table: pl.DataFrame = field(default_factory=pl.DataFrame)
    duration_ms: int = 0

    @property
    def matched(self) -> bool:
        return self.entry is not None or self.request is not None


def request_for(
    entry: CatalogEntry,
    selectors: Selectors | None = None,
    refresh: bool = False,
) -> RetrievalRequest:
    """
    Turn a catalog entry into the request that retrieves it.

    Census vectors ("v_CA21_1" in family "CA21") are fetched through their
    dataset with the vector added to the field selectors; everything else
    is fetched by its own identifier.
    """
    selectors = selectors or Selectors()
    if entry.family != STATCAN_FAMILY and entry.identifier.startswith("v_"):
        fields = tuple(dict.fromkeys((*selectors.fields, entry.identifier)))
        return RetrievalRequest(
            identifier=entry.family,
            selectors=selectors.model_copy(update={"fields": fields}),
            refresh=refresh,
        )
    return RetrievalRequest(identifier=entry.identifier, selectors=selectors, refresh=refresh)


class RetrievalPipeline:
    """Wires the four stages for one catalog and one Fetcher."""

    def __init__(
        self,
        catalog: Catalog,
        fetcher: Fetcher,
        codes: CodeTable | None = None,
    ) -> None:
        self.catalog = catalog
        self.fetcher = fetcher
        self.normalizer = ValueNormalizer(codes)

    async def run(
        self,
        query: str,
        *,
        scope: str | None = None,
        match_type: MatchType = "contains",
        selectors: Selectors | None = None,
        refresh: bool = False,
        mode: NormalizeMode = "numeric",
        target: ShapeTarget = "long",
        join_key: str | None = None,
        reference: Mapping[Any, Any] | pl.DataFrame | None = None,
        strict: bool = False,
        index: Sequence[str] | None = None,
        on: str = "variable",
        values: str = "value",
    ) -> PipelineResult:
        """
        Search the catalog and retrieve the top-ranked entry.

        A search with no hits returns an unmatched, empty result.

        Raises:
            InvalidQuery, UnknownScope, RetrievalError, UnknownUnit,
            JoinKeyMismatch: from the failing stage, unchanged.
        """
        t0 = time.monotonic()
        hits = self.catalog.search(query, dataset_scope=scope, match_type=match_type)
        if not hits:
            log.info("search_no_match", query=query, scope=scope)
            return PipelineResult(
                query=query,
                entry=None,
                request=None,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

        entry = hits[0]
        log.info("search_resolved", query=query, identifier=entry.identifier, hits=len(hits))
        request = request_for(entry, selectors, refresh)
        result = await self._execute(
            request,
            entry,
            mode=mode,
            target=target,
            join_key=join_key,
            reference=reference,
            strict=strict,
            index=index,
            on=on,
            values=values,
        )
        result.query = query
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        return result

    async def run_identifier(
        self,
        identifier: str,
        *,
        selectors: Selectors | None = None,
        refresh: bool = False,
        mode: NormalizeMode = "numeric",
        target: ShapeTarget = "long",
        join_key: str | None = None,
        reference: Mapping[Any, Any] | pl.DataFrame | None = None,
        strict: bool = False,
        index: Sequence[str] | None = None,
        on: str = "variable",
        values: str = "value",
    ) -> PipelineResult:
        """
        Retrieve a known identifier, skipping search.

        The catalog is still consulted for provenance: when *identifier* is
        a catalog entry, the entry is attached and census vectors resolve
        to their dataset.
        """
        t0 = time.monotonic()
        entry = self.catalog.get(identifier)
        if entry is not None:
            request = request_for(entry, selectors, refresh)
        else:
            request = RetrievalRequest(
                identifier=identifier,
                selectors=selectors or Selectors(),
                refresh=refresh,
            )
        result = await self._execute(
            request,
            entry,
            mode=mode,
            target=target,
            join_key=join_key,
            reference=reference,
            strict=strict,
            index=index,
            on=on,
            values=values,
        )
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        return result

    async def _execute(
        self,
        request: RetrievalRequest,
        entry: CatalogEntry | None,
        *,
        mode: NormalizeMode,
        target: ShapeTarget,
        join_key: str | None,
        reference: Mapping[Any, Any] | pl.DataFrame | None,
        strict: bool,
        index: Sequence[str] | None,
        on: str,
        values: str,
    ) -> PipelineResult:
        run_log = log.bind(identifier=request.identifier, target=target)
        run_log.info("pipeline_start", mode=mode, refresh=request.refresh)

        t0 = time.monotonic()
        raw = await self.fetcher.fetch(request, entry=entry)
        fetch_ms = int((time.monotonic() - t0) * 1000)

        records = self.normalizer.normalize(raw, mode)

        if records:
            table = reshape(
                records,
                target,
                join_key,
                index=index,
                on=on,
                values=values,
                reference=reference,
                strict=strict,
            )
        else:
            table = pl.DataFrame()

        run_log.info(
            "pipeline_complete",
            records=len(records),
            rows=len(table),
            fetch_ms=fetch_ms,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return PipelineResult(
            query=None,
            entry=entry,
            request=request,
            records=records,
            table=table,
        )
