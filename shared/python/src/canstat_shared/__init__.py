"""
canstat_shared — shared configuration, models and lookup helpers for canstat.

Usage:
    from canstat_shared.config import settings
    from canstat_shared.db import get_duckdb_connection
    from canstat_shared.models import CatalogEntry, RetrievalRequest, RawRecord
    from canstat_shared.geo import resolve_region
    from canstat_shared.constants import SCALE_MULTIPLIERS, PROVINCES
"""

__version__ = "0.1.0"
