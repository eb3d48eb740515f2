"""
canstat_shared.models — Pydantic models shared by every pipeline stage.

  CatalogEntry      — one searchable dataset / series / census variable
  Selectors         — region, date-range and field sub-selection
  RetrievalRequest  — identifier + selectors + refresh flag
  RawRecord         — one retrieved row with its scale metadata
  NormalizedRecord  — a RawRecord after unit resolution
"""

from canstat_shared.models.catalog import CatalogEntry, tokenize
from canstat_shared.models.records import (
    NormalizedRecord,
    RawRecord,
    RetrievalRequest,
    Selectors,
    fingerprint,
)

__all__ = [
    "CatalogEntry",
    "tokenize",
    "Selectors",
    "RetrievalRequest",
    "RawRecord",
    "NormalizedRecord",
    "fingerprint",
]
