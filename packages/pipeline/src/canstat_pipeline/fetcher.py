"""
fetcher.py — Cached, coalescing resource fetcher.

The Fetcher resolves an identifier to the source that handles it, returns
the cached payload when one exists, and otherwise retrieves, validates and
caches a fresh one.

Cache policy:
  - A cached entry is always used unless the request sets refresh=True.
  - Entries never expire by age; they go away on refresh, invalidate(),
    or when the cache path changes.
  - A payload is only written after it parsed successfully. Failed or
    cancelled retrievals write nothing.

Concurrency:
  - Concurrent fetches with the same fingerprint share one external call.
  - A cancelled caller detaches from the shared call; the call itself is
    cancelled only when its last waiter is gone.

Usage:
    fetcher = Fetcher(FetcherConfig(cache_path="./data/cache"))
    records = await fetcher.fetch(RetrievalRequest(identifier="18-10-0004-01"))
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from canstat_shared.config import Settings, settings
from canstat_shared.models import CatalogEntry, RawRecord, RetrievalRequest
from canstat_pipeline.cache import CacheStore
from canstat_pipeline.errors import RetrievalError
from canstat_pipeline.sources import (
    BaseSource,
    CensusSource,
    StatCanCubeListSource,
    StatCanTableSource,
    StatCanVectorSource,
)

log = structlog.get_logger(__name__)


class FetcherConfig(BaseModel):
    """Explicit Fetcher configuration; the caller owns its lifecycle."""

    model_config = ConfigDict(frozen=True)

    cache_path: Path
    timeout: float = 120.0
    statcan_base_url: str = "https://www150.statcan.gc.ca"
    statcan_wds_url: str = "https://www150.statcan.gc.ca/t1/wds/rest"
    census_base_url: str = "https://censusmapper.ca/api/v1"
    census_api_key: str = ""

    @classmethod
    def from_settings(cls, s: Settings | None = None, **overrides: Any) -> "FetcherConfig":
        s = s or settings
        values: dict[str, Any] = {
            "cache_path": Path(s.cache_path),
            "timeout": s.http_timeout,
            "statcan_base_url": s.statcan_base_url,
            "statcan_wds_url": s.statcan_wds_url,
            "census_base_url": s.census_base_url,
            "census_api_key": s.census_api_key,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def default_sources(config: FetcherConfig) -> list[BaseSource]:
    """The StatCan and census sources, configured from *config*."""
    return [
        StatCanTableSource(base_url=config.statcan_base_url, timeout=config.timeout),
        StatCanVectorSource(wds_url=config.statcan_wds_url, timeout=config.timeout),
        StatCanCubeListSource(wds_url=config.statcan_wds_url, timeout=config.timeout),
        CensusSource(
            base_url=config.census_base_url,
            api_key=config.census_api_key,
            timeout=config.timeout,
        ),
    ]


@dataclass
class _Inflight:
    task: asyncio.Future[list[RawRecord]]
    waiters: int = 0


class Fetcher:
    """Retrieves resources through the payload cache."""

    def __init__(
        self,
        config: FetcherConfig | None = None,
        *,
        sources: Sequence[BaseSource] | None = None,
    ) -> None:
        self.config = config or FetcherConfig.from_settings()
        self._sources = list(sources) if sources is not None else default_sources(self.config)
        self._store = CacheStore(self.config.cache_path)
        self._inflight: dict[str, _Inflight] = {}
        self._log = log.bind(cache_path=str(self.config.cache_path))

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def cache_path(self) -> Path:
        return self._store.cache_path

    def set_cache_path(self, cache_path: str | Path) -> None:
        """
        Point the Fetcher at another cache directory.

        The current in-memory handle is dropped; entries already on disk
        under the old path are left alone.
        """
        old = self._store
        self._store = CacheStore(cache_path)
        self.config = self.config.model_copy(update={"cache_path": Path(cache_path)})
        self._log = log.bind(cache_path=str(cache_path))
        old.close()
        self._log.info("cache_path_changed", previous=str(old.cache_path))

    def invalidate(self, identifier: str | None = None) -> int:
        """Delete cached entries for *identifier* (or all entries)."""
        return self._store.delete(identifier=identifier)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def source_for(self, identifier: str) -> BaseSource:
        for source in self._sources:
            if source.handles(identifier):
                return source
        raise RetrievalError(identifier, "no source handles this identifier")

    async def fetch(
        self,
        request: RetrievalRequest,
        *,
        entry: CatalogEntry | None = None,
    ) -> list[RawRecord]:
        """
        Return the records for *request*, from cache when possible.

        Args:
            request: Identifier, selectors and refresh flag.
            entry:   Catalog entry attached to each record for provenance.

        Returns:
            list of RawRecord.

        Raises:
            RetrievalError: unknown identifier, transport failure or
                            malformed payload.
        """
        key = request.fingerprint
        fetch_log = self._log.bind(identifier=request.identifier, fingerprint=key[:12])
        source = self.source_for(request.identifier)

        if not request.refresh:
            cached = self._store.get(key)
            if cached is not None:
                fetch_log.info(
                    "cache_hit",
                    retrieved_at=cached.retrieved_at.isoformat(),
                    bytes=cached.size,
                )
                return self._parse(source, cached.payload, request, entry)
            fetch_log.debug("cache_miss")

        records = await self._coalesced(
            key,
            functools.partial(self._retrieve_and_store, source, request, entry),
            fetch_log,
        )
        return list(records)

    async def _coalesced(
        self,
        key: str,
        factory: Callable[[], Awaitable[list[RawRecord]]],
        fetch_log: Any,
    ) -> list[RawRecord]:
        inflight = self._inflight.get(key)
        if inflight is None:
            inflight = _Inflight(asyncio.ensure_future(factory()))
            self._inflight[key] = inflight
            inflight.task.add_done_callback(functools.partial(self._forget, key, inflight))
        else:
            fetch_log.info("fetch_coalesced", waiters=inflight.waiters)

        inflight.waiters += 1
        try:
            return await asyncio.shield(inflight.task)
        finally:
            inflight.waiters -= 1
            if inflight.waiters == 0 and not inflight.task.done():
                fetch_log.info("fetch_cancelled")
                # Unregister now; a caller arriving before the task unwinds starts afresh
                self._forget(key, inflight, inflight.task)
                inflight.task.cancel()

    def _forget(self, key: str, inflight: _Inflight, _task: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is inflight:
            del self._inflight[key]

    async def _retrieve_and_store(
        self,
        source: BaseSource,
        request: RetrievalRequest,
        entry: CatalogEntry | None,
    ) -> list[RawRecord]:
        fetch_log = self._log.bind(
            identifier=request.identifier,
            fingerprint=request.fingerprint[:12],
            source_name=source.name,
        )
        fetch_log.info("fetch_start", refresh=request.refresh, **await source.get_metadata())

        t0 = time.monotonic()
        try:
            payload = await source.retrieve(request.identifier, request.selectors)
        except Exception as exc:
            fetch_log.error(
                "fetch_failed",
                error=str(exc),
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
            raise RetrievalError(request.identifier, exc) from exc

        # Validate before caching: a payload that doesn't parse is never stored
        records = self._parse(source, payload, request, entry)
        # The current store, which set_cache_path may have swapped mid-fetch
        self._store.put(request.identifier, request.fingerprint, payload, request.selectors)

        fetch_log.info(
            "fetch_complete",
            bytes=len(payload),
            records=len(records),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return records

    def _parse(
        self,
        source: BaseSource,
        payload: bytes,
        request: RetrievalRequest,
        entry: CatalogEntry | None,
    ) -> list[RawRecord]:
        try:
            df = source.parse(payload, request.identifier, request.selectors)
        except Exception as exc:
            self._log.error(
                "payload_malformed",
                identifier=request.identifier,
                source_name=source.name,
                error=str(exc),
            )
            raise RetrievalError(request.identifier, exc) from exc
        return source.to_records(df, entry)
