"""
canstat_pipeline.sources — data source adapters behind the Fetcher.

Each source wraps one external resource family:
  StatCanTableSource    — Statistics Canada full-table CSV bundles
  StatCanVectorSource   — Statistics Canada WDS single-vector series
  StatCanCubeListSource — Statistics Canada WDS cube list (catalog input)
  CensusSource          — CensusMapper census data, regions and vectors
"""

from canstat_pipeline.sources.base import BaseSource
from canstat_pipeline.sources.census import CensusSource
from canstat_pipeline.sources.statcan import (
    StatCanCubeListSource,
    StatCanTableSource,
    StatCanVectorSource,
)

__all__ = [
    "BaseSource",
    "StatCanTableSource",
    "StatCanVectorSource",
    "StatCanCubeListSource",
    "CensusSource",
]
