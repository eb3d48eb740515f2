"""
db.py — DuckDB connection registry for the on-disk cache.

One connection per database file per process. The cache store asks for a
connection by cache directory; changing the cache path simply opens a
connection to another file and leaves the old one on disk.

Usage:
    from canstat_shared.db import get_duckdb_connection

    duck = get_duckdb_connection("./data/cache")
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import duckdb
import structlog

from canstat_shared.config import settings

logger = structlog.get_logger(__name__)

DB_FILENAME = "canstat.duckdb"

_duckdb_lock = threading.Lock()
_connections: dict[Path, duckdb.DuckDBPyConnection] = {}


def cache_db_path(cache_path: str | Path | None = None) -> Path:
    """Return the DuckDB file that backs a cache directory."""
    return Path(cache_path or settings.cache_path).expanduser().resolve() / DB_FILENAME


def get_duckdb_connection(
    cache_path: str | Path | None = None,
) -> duckdb.DuckDBPyConnection:
    """
    Return the singleton DuckDB connection for a cache directory.

    Creates the directory if it doesn't exist.

    Args:
        cache_path: Cache directory. Defaults to settings.cache_path.

    Returns:
        duckdb.DuckDBPyConnection
    """
    db_path = cache_db_path(cache_path)
    with _duckdb_lock:
        conn: Optional[duckdb.DuckDBPyConnection] = _connections.get(db_path)
        if conn is None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(str(db_path))
            _connections[db_path] = conn
            logger.info("duckdb_connected", path=str(db_path))
        return conn


def close_duckdb_connection(cache_path: str | Path | None = None) -> None:
    """Close and forget the connection for one cache directory."""
    db_path = cache_db_path(cache_path)
    with _duckdb_lock:
        conn = _connections.pop(db_path, None)
        if conn is not None:
            conn.close()
            logger.debug("duckdb_closed", path=str(db_path))


def reset_duckdb_connections() -> None:
    """Close every open connection (useful in tests)."""
    with _duckdb_lock:
        for conn in _connections.values():
            conn.close()
        _connections.clear()
