"""
tests/test_catalog/test_search.py — Unit tests for Catalog.search().
"""

from __future__ import annotations

import pytest

from canstat_shared.models import CatalogEntry
from canstat_pipeline.catalog import Catalog
from canstat_pipeline.errors import InvalidQuery, UnknownScope


def ids(entries: list[CatalogEntry]) -> list[str]:
    return [e.identifier for e in entries]


class TestContains:
    def test_keyword_query(self, sample_catalog: Catalog):
        hits = sample_catalog.search("household income", dataset_scope="statcan")
        assert ids(hits) == ["T1"]

    def test_across_families_ranked(self, sample_catalog: Catalog):
        hits = sample_catalog.search("household income")
        # T1 matches both words as keywords; the census vector only in its title
        assert ids(hits) == ["T1", "v_CA21_906"]

    def test_case_insensitive(self, sample_catalog: Catalog):
        assert ids(sample_catalog.search("CONSUMER PRICE")) == ["18-10-0004-01"]

    def test_identifier_substring(self, sample_catalog: Catalog):
        assert ids(sample_catalog.search("18-10-0004")) == ["18-10-0004-01"]

    def test_no_match_is_empty(self, sample_catalog: Catalog):
        assert sample_catalog.search("xyz-no-match") == []

    def test_ties_broken_by_identifier(self):
        catalog = Catalog(
            [
                CatalogEntry(identifier="B", title="Wheat production", family="statcan"),
                CatalogEntry(identifier="A", title="Wheat production", family="statcan"),
                CatalogEntry(identifier="C", title="Wheat production", family="statcan"),
            ]
        )
        assert ids(catalog.search("wheat")) == ["A", "B", "C"]


class TestExact:
    def test_identifier(self, sample_catalog: Catalog):
        assert ids(sample_catalog.search("v_CA21_1", match_type="exact")) == ["v_CA21_1"]

    def test_keyword(self, sample_catalog: Catalog):
        assert ids(sample_catalog.search("Inflation", match_type="exact")) == ["18-10-0004-01"]

    def test_partial_is_not_exact(self, sample_catalog: Catalog):
        assert sample_catalog.search("household inc", match_type="exact") == []


class TestFuzzy:
    def test_misspelling(self, sample_catalog: Catalog):
        hits = sample_catalog.search("populaton", match_type="fuzzy")
        assert ids(hits) == ["v_CA21_1"]

    def test_far_off_query_is_empty(self, sample_catalog: Catalog):
        assert sample_catalog.search("zzzzzz", match_type="fuzzy") == []


class TestErrors:
    @pytest.mark.parametrize("query", ["", "   ", "\t\n"])
    def test_empty_query(self, sample_catalog: Catalog, query: str):
        with pytest.raises(InvalidQuery):
            sample_catalog.search(query)

    def test_unknown_scope(self, sample_catalog: Catalog):
        with pytest.raises(UnknownScope) as exc_info:
            sample_catalog.search("income", dataset_scope="CA99")
        assert exc_info.value.scope == "CA99"
        assert "CA21" in exc_info.value.known

    def test_unknown_match_type(self, sample_catalog: Catalog):
        with pytest.raises(ValueError):
            sample_catalog.search("income", match_type="regex")  # type: ignore[arg-type]


class TestCatalogAccessors:
    def test_get_and_scopes(self, sample_catalog: Catalog):
        assert sample_catalog.get("T1").title == "Household income statistics"
        assert sample_catalog.get("missing") is None
        assert sample_catalog.scopes == {"statcan", "CA21"}
        assert len(sample_catalog) == 5
