"""
models/records.py — Pydantic models for retrieval requests and retrieved rows.

A RawRecord is one row as the source delivered it. The Normalizer turns it
into a NormalizedRecord whose value column is an absolute number and whose
scale column is gone.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from canstat_shared.models.catalog import CatalogEntry
from canstat_shared.time_utils import coerce_date


class Selectors(BaseModel):
    """Sub-selection applied to a retrievable resource."""

    model_config = ConfigDict(frozen=True)

    regions: tuple[str, ...] = ()
    start: date | None = None
    end: date | None = None
    fields: tuple[str, ...] = ()
    level: str | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return coerce_date(v)

    @field_validator("regions", "fields", mode="before")
    @classmethod
    def as_tuple(cls, v: Any) -> Any:
        if isinstance(v, str):
            return (v,)
        return v

    @model_validator(mode="after")
    def check_range(self) -> "Selectors":
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")
        return self

    def canonical(self) -> dict[str, Any]:
        """Order-independent form used for fingerprinting."""
        return {
            "regions": sorted(self.regions),
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "fields": sorted(self.fields),
            "level": self.level,
        }


def fingerprint(identifier: str, selectors: Selectors | None = None) -> str:
    """Deterministic cache / coalescing key for identifier + selectors."""
    body = {
        "identifier": identifier,
        "selectors": (selectors or Selectors()).canonical(),
    }
    encoded = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class RetrievalRequest(BaseModel):
    """One call to the Fetcher. Built per call, never persisted."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(min_length=1)
    selectors: Selectors = Field(default_factory=Selectors)
    refresh: bool = False

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.identifier, self.selectors)


class RawRecord(BaseModel):
    """
    One retrieved row.

    `data` maps column name to the raw value (string, number or coded
    category). `scale_field` names the column holding the scale/unit code,
    when the source has one. `source` is a provenance back-reference only.
    """

    model_config = ConfigDict(frozen=True)

    data: dict[str, Any]
    value_field: str = "value"
    scale_field: str | None = None
    source: CatalogEntry | None = None

    @property
    def scale_code(self) -> Any:
        if self.scale_field is None:
            return None
        return self.data.get(self.scale_field)

    @property
    def is_scaled(self) -> bool:
        """True while the scale column is still present."""
        return self.scale_field is not None and self.scale_field in self.data


class NormalizedRecord(BaseModel):
    """A RawRecord after unit resolution. Same row identity, numeric value."""

    model_config = ConfigDict(frozen=True)

    data: dict[str, Any]
    value_field: str = "value"
    source: CatalogEntry | None = None

    @property
    def value(self) -> float | None:
        return self.data.get(self.value_field)
