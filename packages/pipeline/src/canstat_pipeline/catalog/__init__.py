"""
canstat_pipeline.catalog — searchable catalog of retrievable resources.
"""

from canstat_pipeline.catalog.search import Catalog
from canstat_pipeline.catalog.snapshot import (
    entries_from_census_vectors,
    entries_from_cube_list,
    load_snapshot,
    refresh_catalog,
    save_snapshot,
)

__all__ = [
    "Catalog",
    "entries_from_census_vectors",
    "entries_from_cube_list",
    "load_snapshot",
    "refresh_catalog",
    "save_snapshot",
]
