"""DuckDB-backed string key-value store with prefix listing."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import duckdb
import orjson

LOGGER = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000


@dataclass(frozen=True)
class ListedKey:
    """One key returned by a prefix listing, with its put-time metadata."""

    name: str
    metadata: dict[str, Any] | None


@dataclass(frozen=True)
class ListPage:
    """One page of a prefix listing; pass `cursor` back to continue."""

    keys: list[ListedKey]
    cursor: str | None
    list_complete: bool


class KeyValueStore(Protocol):
    """Durable string store: no transactions and no conditional writes."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str, metadata: dict[str, Any] | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str, cursor: str | None = None, limit: int = DEFAULT_LIST_LIMIT) -> ListPage: ...


class DuckDBKeyValueStore:
    """Key-value store persisted in a single DuckDB table.

    One connection is shared by every thread in the process; a lock
    serialises statements on it.
    """

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        self._lock = threading.Lock()
        self._connection = duckdb.connect(str(database_path))
        self.ensure_schema()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._connection.close()

    def ensure_schema(self) -> None:
        """Create the key-value table when missing."""
        with self._lock:
            _ = self._connection.execute(
                """
CREATE TABLE IF NOT EXISTS kv_entries (
    key VARCHAR PRIMARY KEY,
    value VARCHAR NOT NULL,
    metadata VARCHAR,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
                """
            )

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._connection.execute("SELECT value FROM kv_entries WHERE key = ?", [key]).fetchone()
        if row is None:
            return None
        return str(row[0])

    def get_metadata(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._connection.execute("SELECT metadata FROM kv_entries WHERE key = ?", [key]).fetchone()
        if row is None:
            return None
        return _decode_metadata(key, row[0])

    def put(self, key: str, value: str, metadata: dict[str, Any] | None = None) -> None:
        """Insert or overwrite one entry (last writer wins)."""
        encoded_metadata = orjson.dumps(metadata).decode("utf-8") if metadata is not None else None
        with self._lock:
            _ = self._connection.execute(
                """
INSERT INTO kv_entries (key, value, metadata)
VALUES (?, ?, ?)
ON CONFLICT (key)
DO UPDATE SET
    value = EXCLUDED.value,
    metadata = EXCLUDED.metadata,
    updated_at = NOW()
                """,
                [key, value, encoded_metadata],
            )

    def delete(self, key: str) -> None:
        with self._lock:
            _ = self._connection.execute("DELETE FROM kv_entries WHERE key = ?", [key])

    def list(self, prefix: str, cursor: str | None = None, limit: int = DEFAULT_LIST_LIMIT) -> ListPage:
        """List keys starting with `prefix` in key order, `limit` per page."""
        if limit <= 0:
            raise ValueError("limit must be > 0")
        query = "SELECT key, metadata FROM kv_entries WHERE starts_with(key, ?)"
        params: list[Any] = [prefix]
        if cursor is not None:
            query += " AND key > ?"
            params.append(cursor)
        query += " ORDER BY key LIMIT ?"
        params.append(limit + 1)

        with self._lock:
            rows = self._connection.execute(query, params).fetchall()

        has_more = len(rows) > limit
        page_rows = rows[:limit]
        keys = [ListedKey(name=str(row[0]), metadata=_decode_metadata(str(row[0]), row[1])) for row in page_rows]
        next_cursor = keys[-1].name if has_more and keys else None
        return ListPage(keys=keys, cursor=next_cursor, list_complete=not has_more)


def _decode_metadata(key: str, raw: Any) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        decoded = orjson.loads(raw)
    except orjson.JSONDecodeError:
        LOGGER.warning("Ignoring malformed metadata stored for key %s.", key)
        return None
    return decoded if isinstance(decoded, dict) else None
