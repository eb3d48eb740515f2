"""
models/catalog.py — Pydantic model for catalog snapshot rows.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

_WORD_RE = re.compile(r"[\w'-]+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Split free text into casefolded words."""
    return [w.casefold() for w in _WORD_RE.findall(text or "")]


class CatalogEntry(BaseModel):
    """
    One searchable dataset, table, series or census variable.

    `family` is the dataset family/version tag used as the search scope
    ("statcan" for WDS tables, "CA21" for the 2021 census, …).
    """

    model_config = ConfigDict(frozen=True)

    identifier: str
    title: str
    keywords: tuple[str, ...] = ()
    family: str

    @field_validator("keywords", mode="before")
    @classmethod
    def split_keywords(cls, v: Any) -> Any:
        # Snapshots store keywords as a single "; "-joined string
        if isinstance(v, str):
            return tuple(k.strip() for k in v.split(";") if k.strip())
        return v

    @property
    def words(self) -> set[str]:
        """All casefolded words of identifier, title and keywords."""
        return {
            *tokenize(self.identifier),
            *tokenize(self.title),
            *(w for k in self.keywords for w in tokenize(k)),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CatalogEntry":
        return cls(**row)

    def to_row(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "title": self.title,
            "keywords": "; ".join(self.keywords),
            "family": self.family,
        }
