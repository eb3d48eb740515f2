"""
sources/base.py — Abstract base class for all data source adapters.

A source is the external collaborator behind the Fetcher. Each concrete
source must implement:
  handles()      — whether an identifier belongs to this source
  retrieve()     — fetch the raw payload bytes over HTTP
  parse()        — turn payload bytes into a raw polars DataFrame,
                   applying the request's selectors
  get_metadata() — return dict with source info for logging

The Fetcher caches what retrieve() returns and calls parse() on both fresh
and cached payloads, so parse() must be a pure function of its arguments.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any

import polars as pl
import structlog

from canstat_shared.models import CatalogEntry, RawRecord, Selectors

log = structlog.get_logger(__name__)


class BaseSource(ABC):
    """Abstract base for all canstat data source adapters."""

    # Override in subclass
    name: str = "unknown"

    # Column carrying the scale code in parsed frames, None if the source has none
    scale_field: str | None = None
    value_field: str = "value"

    def __init__(self, *, timeout: float = 120.0) -> None:
        self._timeout = timeout
        self._log = log.bind(source_name=self.name)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def handles(self, identifier: str) -> bool:
        """Return True if this source can retrieve *identifier*."""
        ...

    @abstractmethod
    async def retrieve(self, identifier: str, selectors: Selectors) -> bytes:
        """
        Fetch the raw payload for an identifier from the external source.

        Implementations should:
        - Make HTTP calls via httpx and raise on HTTP errors
        - Return the response body unchanged so it can be cached verbatim

        Args:
            identifier: Resource identifier handled by this source.
            selectors:  Sub-selection; sources push it to the API where
                        the API supports it.

        Returns:
            Raw payload bytes.
        """
        ...

    @abstractmethod
    def parse(
        self,
        payload: bytes,
        identifier: str,
        selectors: Selectors,
    ) -> pl.DataFrame:
        """
        Parse a payload into a raw DataFrame.

        Implementations should:
        - Rename columns to snake_case
        - Keep values as delivered (suppression markers included)
        - Apply region / date / field selectors not handled by the API
        - Raise ValueError on a malformed payload

        Args:
            payload:    Bytes returned by retrieve() (fresh or cached).
            identifier: Resource identifier.
            selectors:  Sub-selection for this request.

        Returns:
            polars DataFrame, one row per RawRecord.
        """
        ...

    @abstractmethod
    async def get_metadata(self) -> dict[str, Any]:
        """Return source-level metadata; logged with every fetch_start event."""
        ...

    # ------------------------------------------------------------------
    # Shared helpers available to all subclasses
    # ------------------------------------------------------------------

    def to_records(
        self,
        df: pl.DataFrame,
        entry: CatalogEntry | None = None,
    ) -> list[RawRecord]:
        """Wrap each DataFrame row in a RawRecord carrying this source's scale column."""
        scale_field = self.scale_field if self.scale_field in df.columns else None
        return [
            RawRecord(
                data=row,
                value_field=self.value_field,
                scale_field=scale_field,
                source=entry,
            )
            for row in df.iter_rows(named=True)
        ]

    @staticmethod
    def _to_snake_case(name: str) -> str:
        """Convert 'REF_DATE', 'Ref Date' or 'GeoUID' to 'ref_date' / 'geo_uid'."""
        s = name.strip().lstrip("\ufeff")
        s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", s)
        s = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s)
        s = re.sub(r"[\s\-/()]+", "_", s.lower())
        return s.strip("_")

    @classmethod
    def _normalize_columns(cls, df: pl.DataFrame) -> pl.DataFrame:
        """Rename all columns to snake_case."""
        return df.rename({col: cls._to_snake_case(col) for col in df.columns})

    @staticmethod
    def _select_fields(
        df: pl.DataFrame,
        fields: tuple[str, ...],
        required: tuple[str, ...] = (),
    ) -> pl.DataFrame:
        """Keep *required* columns plus the requested subset (case-insensitive)."""
        if not fields:
            return df
        available = {c.lower(): c for c in df.columns}
        missing = [f for f in fields if f.lower() not in available]
        if missing:
            raise ValueError(f"Unknown field(s) {missing}. Columns: {df.columns}")
        keep = [c for c in required if c in df.columns]
        keep += [available[f.lower()] for f in fields if available[f.lower()] not in keep]
        return df.select(keep)
