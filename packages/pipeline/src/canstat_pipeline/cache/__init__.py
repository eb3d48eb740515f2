"""
canstat_pipeline.cache — fingerprint-addressed payload cache.
"""

from canstat_pipeline.cache.store import CacheEntry, CacheStore

__all__ = ["CacheEntry", "CacheStore"]
