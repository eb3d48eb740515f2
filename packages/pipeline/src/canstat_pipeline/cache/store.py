"""
cache/store.py — DuckDB-backed payload cache.

Entries are keyed by request fingerprint and hold the payload bytes exactly
as the source returned them, plus the identifier, the selectors that
produced them and the retrieval timestamp.

There is no time-based expiry. An entry lives until it is replaced by a
forced refresh, deleted through invalidate(), or the cache path changes.

Writes are a single INSERT OR REPLACE statement, so a reader sees either
the previous entry or the complete new one.

Usage:
    store = CacheStore("./data/cache")
    store.put("18-10-0004-01", key, payload, selectors)
    entry = store.get(key)
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import duckdb
import structlog

from canstat_shared.db import close_duckdb_connection, get_duckdb_connection
from canstat_shared.models import Selectors

log = structlog.get_logger(__name__)

CACHE_TABLE = "canstat_cache"


@dataclass(frozen=True)
class CacheEntry:
    """One cached payload."""

    identifier: str
    fingerprint: str
    payload: bytes
    selectors: dict[str, Any]
    retrieved_at: datetime

    @property
    def size(self) -> int:
        return len(self.payload)


class CacheStore:
    """Fingerprint-addressed payload store in a DuckDB file under *cache_path*."""

    def __init__(self, cache_path: str | Path) -> None:
        self.cache_path = Path(cache_path)
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = threading.Lock()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            conn = get_duckdb_connection(self.cache_path)
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {CACHE_TABLE} (
                    fingerprint  TEXT PRIMARY KEY,
                    identifier   TEXT NOT NULL,
                    selectors    TEXT NOT NULL,
                    payload      BLOB NOT NULL,
                    retrieved_at TIMESTAMP NOT NULL
                )
                """
            )
            self._conn = conn
        return self._conn

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, fingerprint: str) -> CacheEntry | None:
        with self._lock:
            row = self.conn.execute(
                f"""
                SELECT identifier, fingerprint, payload, selectors, retrieved_at
                FROM {CACHE_TABLE} WHERE fingerprint = ?
                """,
                [fingerprint],
            ).fetchone()
        if row is None:
            return None
        return self._to_entry(row)

    def entries(self, identifier: str | None = None) -> list[dict[str, Any]]:
        """List cached entries without their payloads, newest first."""
        sql = f"""
            SELECT identifier, fingerprint, selectors, octet_length(payload), retrieved_at
            FROM {CACHE_TABLE}
        """
        params: list[Any] = []
        if identifier is not None:
            sql += " WHERE identifier = ?"
            params.append(identifier)
        sql += " ORDER BY retrieved_at DESC, fingerprint"
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [
            {
                "identifier": ident,
                "fingerprint": key,
                "selectors": json.loads(selectors),
                "size": size,
                "retrieved_at": retrieved_at.replace(tzinfo=UTC),
            }
            for ident, key, selectors, size, retrieved_at in rows
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(
        self,
        identifier: str,
        fingerprint: str,
        payload: bytes,
        selectors: Selectors | None = None,
    ) -> CacheEntry:
        """Store *payload*, replacing any entry with the same fingerprint."""
        retrieved_at = datetime.now(UTC)
        canonical = (selectors or Selectors()).canonical()
        with self._lock:
            self.conn.execute(
                f"""
                INSERT OR REPLACE INTO {CACHE_TABLE}
                    (fingerprint, identifier, selectors, payload, retrieved_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    fingerprint,
                    identifier,
                    json.dumps(canonical, sort_keys=True),
                    payload,
                    retrieved_at.replace(tzinfo=None),
                ],
            )
        log.debug(
            "cache_written",
            identifier=identifier,
            fingerprint=fingerprint[:12],
            bytes=len(payload),
        )
        return CacheEntry(identifier, fingerprint, payload, canonical, retrieved_at)

    def delete(
        self,
        *,
        identifier: str | None = None,
        fingerprint: str | None = None,
    ) -> int:
        """Delete matching entries (all entries when both filters are None)."""
        clauses: list[str] = []
        params: list[Any] = []
        if identifier is not None:
            clauses.append("identifier = ?")
            params.append(identifier)
        if fingerprint is not None:
            clauses.append("fingerprint = ?")
            params.append(fingerprint)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock:
            (count,) = self.conn.execute(
                f"SELECT count(*) FROM {CACHE_TABLE}{where}", params
            ).fetchone()
            self.conn.execute(f"DELETE FROM {CACHE_TABLE}{where}", params)
        log.info("cache_deleted", identifier=identifier, fingerprint=fingerprint, count=count)
        return count

    def close(self) -> None:
        """Drop the in-memory handle; on-disk entries are kept."""
        with self._lock:
            if self._conn is not None:
                close_duckdb_connection(self.cache_path)
                self._conn = None

    @staticmethod
    def _to_entry(row: tuple[Any, ...]) -> CacheEntry:
        identifier, fingerprint, payload, selectors, retrieved_at = row
        return CacheEntry(
            identifier=identifier,
            fingerprint=fingerprint,
            payload=bytes(payload),
            selectors=json.loads(selectors),
            retrieved_at=retrieved_at.replace(tzinfo=UTC),
        )
