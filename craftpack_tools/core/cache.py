"""Persistent metadata cache keyed by content digest.

Records live in a single SQLite table keyed by ``(namespace, hash)``,
where the namespace is the resource kind. The cache is an optimisation:
every failure is logged and reported to the error sink, and reads that
fail or return undecodable rows behave as misses.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

import pydantic
import structlog

from craftpack_tools.core.errors import ErrorSink, FileSystemError, log_error
from craftpack_tools.core.types import ResourceMetadata

logger = structlog.get_logger()


class ResourceCache:
    """SQLite-backed ``(namespace, digest) -> ResourceMetadata`` store.

    A single connection is shared across threads and serialised with a
    lock, which keeps concurrent readers and independent-key writers safe.

    Args:
        db_path: Database file, ``":memory:"`` for a transient cache
        error_sink: Receives write/read failures, logs them by default
    """

    def __init__(self, db_path: Path | str, error_sink: ErrorSink | None = None):
        self.db_path = db_path
        self.error_sink = error_sink or log_error
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._init_db()
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        assert self._conn is not None
        with self._conn:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS resource_cache (
                    namespace TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    json_data TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (namespace, hash)
                );

                CREATE INDEX IF NOT EXISTS idx_resource_cache_updated
                    ON resource_cache(updated_at);
            """)

    def _report(self, action: str, namespace: str, digest: str | None, error: Exception) -> None:
        logger.warning(
            "cache_operation_failed",
            action=action,
            namespace=namespace,
            digest=digest,
            error=str(error),
        )
        self.error_sink(FileSystemError(f"Cache {action} failed: {error}", path=str(self.db_path)))

    def get(self, namespace: str, digest: str) -> ResourceMetadata | None:
        """Look up a record.

        Returns:
            The cached metadata, or None on miss, storage failure or a
            row that no longer decodes
        """
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT json_data FROM resource_cache WHERE namespace = ? AND hash = ?",
                    (namespace, digest),
                ).fetchone()
        except (sqlite3.Error, OSError) as e:
            self._report("read", namespace, digest, e)
            return None

        if row is None:
            return None

        try:
            return ResourceMetadata.model_validate_json(row[0])
        except pydantic.ValidationError as e:
            logger.debug("cache_entry_undecodable", namespace=namespace, digest=digest, error=str(e))
            return None

    def set(self, namespace: str, digest: str, metadata: ResourceMetadata) -> bool:
        """Insert or replace a record, keeping its original creation time.

        Returns:
            True when the write was committed
        """
        now = time.time()
        payload = metadata.model_dump_json()
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO resource_cache (namespace, hash, json_data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(namespace, hash) DO UPDATE SET
                        json_data = excluded.json_data,
                        updated_at = excluded.updated_at
                    """,
                    (namespace, digest, payload, now, now),
                )
        except (sqlite3.Error, OSError) as e:
            self._report("write", namespace, digest, e)
            return False
        return True

    def update_file_name(self, namespace: str, digest: str, file_name: str) -> bool:
        """Point an existing record at a new file name. Last writer wins."""
        metadata = self.get(namespace, digest)
        if metadata is None:
            return False
        if metadata.file_name == file_name:
            return True
        metadata.file_name = file_name
        return self.set(namespace, digest, metadata)

    def remove(self, namespace: str, digest: str) -> bool:
        """Delete a record if present."""
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    "DELETE FROM resource_cache WHERE namespace = ? AND hash = ?",
                    (namespace, digest),
                )
        except (sqlite3.Error, OSError) as e:
            self._report("delete", namespace, digest, e)
            return False
        return True

    def count(self, namespace: str | None = None) -> int:
        """Number of cached records, optionally within one namespace."""
        query = "SELECT COUNT(*) FROM resource_cache"
        params: tuple[Any, ...] = ()
        if namespace is not None:
            query += " WHERE namespace = ?"
            params = (namespace,)
        try:
            with self._lock:
                return int(self.conn.execute(query, params).fetchone()[0])
        except (sqlite3.Error, OSError) as e:
            self._report("count", namespace or "*", None, e)
            return 0

    def clear(self, namespace: str | None = None) -> int:
        """Remove all records (or one namespace). Returns rows removed."""
        query = "DELETE FROM resource_cache"
        params: tuple[Any, ...] = ()
        if namespace is not None:
            query += " WHERE namespace = ?"
            params = (namespace,)
        try:
            with self._lock, self.conn:
                cursor = self.conn.execute(query, params)
                removed = cursor.rowcount
        except (sqlite3.Error, OSError) as e:
            self._report("clear", namespace or "*", None, e)
            return 0
        logger.info("cache_cleared", namespace=namespace, removed=removed)
        return removed

    def stats(self) -> dict[str, Any]:
        """Per-namespace record counts."""
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT namespace, COUNT(*) FROM resource_cache GROUP BY namespace"
                ).fetchall()
        except (sqlite3.Error, OSError) as e:
            self._report("stats", "*", None, e)
            rows = []
        namespaces = {ns: count for ns, count in rows}
        return {
            "path": str(self.db_path),
            "total": sum(namespaces.values()),
            "namespaces": namespaces,
        }

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> ResourceCache:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
