"""
catalog/search.py — In-memory catalog search.

The catalog is a read-only snapshot of CatalogEntry rows loaded at refresh
time. search() never touches the network.

Match types:
  exact     the query equals an identifier, a title or a keyword
  contains  every query word occurs in the identifier, title or keywords
  fuzzy     at least one query word is close to a word of the entry

Results are ranked by score (keyword overlap plus substring hits), highest
first, ties broken by identifier ascending.

Usage:
    catalog = Catalog(entries)
    catalog.search("household income")
    catalog.search("populaton", dataset_scope="CA21", match_type="fuzzy")
"""

from __future__ import annotations

import difflib
from collections.abc import Iterable, Iterator

import structlog

from canstat_shared.constants import MatchType
from canstat_shared.models import CatalogEntry, tokenize
from canstat_pipeline.errors import InvalidQuery, UnknownScope

log = structlog.get_logger(__name__)

FUZZY_CUTOFF = 0.8


def _haystack(entry: CatalogEntry) -> str:
    return " ".join([entry.identifier, entry.title, *entry.keywords]).casefold()


def _score(entry: CatalogEntry, query: str, match_type: MatchType) -> float | None:
    """Score *entry* against *query*; None means no match."""
    tokens = tokenize(query)
    words = entry.words
    haystack = _haystack(entry)
    overlap = len(set(tokens) & words)

    if match_type == "exact":
        q = query.strip().casefold()
        candidates = {entry.identifier.casefold(), entry.title.casefold()}
        candidates.update(k.casefold() for k in entry.keywords)
        return 1.0 + overlap if q in candidates else None

    if match_type == "contains":
        if not tokens or not all(t in haystack for t in tokens):
            return None
        phrase = 1.0 if query.strip().casefold() in haystack else 0.0
        return overlap + len(tokens) + phrase

    # fuzzy
    closeness = 0.0
    for token in tokens:
        close = difflib.get_close_matches(token, words, n=1, cutoff=FUZZY_CUTOFF)
        if close:
            closeness += difflib.SequenceMatcher(None, token, close[0]).ratio()
    return closeness + overlap if closeness else None


class Catalog:
    """A searchable, read-only set of CatalogEntry rows."""

    def __init__(self, entries: Iterable[CatalogEntry] = ()) -> None:
        self._entries: dict[str, CatalogEntry] = {e.identifier: e for e in entries}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries.values())

    @property
    def scopes(self) -> set[str]:
        """Dataset families present in the catalog."""
        return {e.family for e in self._entries.values()}

    def get(self, identifier: str) -> CatalogEntry | None:
        return self._entries.get(identifier)

    def search(
        self,
        query: str,
        dataset_scope: str | None = None,
        match_type: MatchType = "contains",
    ) -> list[CatalogEntry]:
        """
        Find entries matching *query*.

        Args:
            query:         Free-text query.
            dataset_scope: Restrict to one family ("statcan", "CA21", …).
            match_type:    "exact", "contains" or "fuzzy".

        Returns:
            Matching entries, best first. Empty when nothing matches.

        Raises:
            InvalidQuery: query is empty or whitespace.
            UnknownScope: no entry belongs to *dataset_scope*.
        """
        if not query or not query.strip():
            raise InvalidQuery(query)
        if match_type not in ("exact", "contains", "fuzzy"):
            raise ValueError(f"Unknown match type: {match_type!r}")
        if dataset_scope is not None and dataset_scope not in self.scopes:
            raise UnknownScope(dataset_scope, self.scopes)

        scored: list[tuple[float, CatalogEntry]] = []
        for entry in self._entries.values():
            if dataset_scope is not None and entry.family != dataset_scope:
                continue
            score = _score(entry, query, match_type)
            if score is not None:
                scored.append((score, entry))

        scored.sort(key=lambda pair: (-pair[0], pair[1].identifier))
        log.debug(
            "catalog_search",
            query=query,
            scope=dataset_scope,
            match_type=match_type,
            hits=len(scored),
        )
        return [entry for _, entry in scored]
