"""
Key-value storage port for the intent engine.

Preferences, outcomes, learned choices and continuity history are persisted as
small JSON payloads under namespaced string keys. Every store receives a
storage object through its constructor, so the same decision code runs against
SQLite on disk, plain memory in tests, or nothing at all.

Adapters:
- MemoryStorage: dict-backed, per process
- NullStorage: always empty, writes are dropped (storage unavailable)
- SqliteStorage: single key/value table in a local SQLite file

SafeStorage wraps any adapter and turns failures into "no data" plus a logged
warning. Persistence must never change a routing decision.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Default database location (user's home directory)
DEFAULT_STATE_DIR = Path.home() / ".intent_engine"
DEFAULT_DB_PATH = DEFAULT_STATE_DIR / "state.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class StorageError(Exception):
    """Raised by adapters when the backing store cannot be read or written."""
    pass


class StoragePort(ABC):
    """Minimal key-value interface shared by all persisted stores."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the raw string stored under key, or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a raw string under key."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key if present."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with prefix."""

    def get_json(self, key: str) -> Any | None:
        """Load and decode a JSON payload, None when absent or corrupt."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable payload at {key}")
            return None

    def set_json(self, key: str, payload: Any) -> None:
        """Encode payload as JSON and store it."""
        self.set(key, json.dumps(payload, ensure_ascii=False))


class MemoryStorage(StoragePort):
    """In-process dict storage."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class NullStorage(StoragePort):
    """Storage that holds nothing. Used when persistence is unavailable."""

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str) -> None:
        return None

    def remove(self, key: str) -> None:
        return None

    def keys(self, prefix: str = "") -> list[str]:
        return []


class SqliteStorage(StoragePort):
    """Key-value table in a local SQLite database.

    A connection is opened per operation so the store can be shared freely;
    schema creation is idempotent.
    """

    def __init__(self, db_path: Path | str | None = None, timeout: float = 5.0):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.timeout = timeout
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            if not self._schema_ready:
                conn.executescript(SCHEMA)
                conn.commit()
                self._schema_ready = True
            return conn
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open state database {self.db_path}: {e}") from e

    def get(self, key: str) -> str | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
            return row[0] if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Read failed for {key}: {e}") from e
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Write failed for {key}: {e}") from e
        finally:
            conn.close()

    def remove(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Delete failed for {key}: {e}") from e
        finally:
            conn.close()

    def keys(self, prefix: str = "") -> list[str]:
        conn = self._connect()
        try:
            # LIKE treats _ and % as wildcards, so filter in Python
            rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
            return [r[0] for r in rows if r[0].startswith(prefix)]
        except sqlite3.Error as e:
            raise StorageError(f"Key listing failed: {e}") from e
        finally:
            conn.close()


class SafeStorage(StoragePort):
    """Wrapper that never lets a storage failure escape.

    Reads that fail return None (treated as "no data"); writes that fail are
    dropped. Each failure is logged at WARNING level.
    """

    def __init__(self, inner: StoragePort):
        self.inner = inner

    def get(self, key: str) -> str | None:
        try:
            return self.inner.get(key)
        except Exception as e:
            logger.warning(f"Storage read failed (treated as empty): {e}")
            return None

    def set(self, key: str, value: str) -> None:
        try:
            self.inner.set(key, value)
        except Exception as e:
            logger.warning(f"Storage write dropped: {e}")

    def remove(self, key: str) -> None:
        try:
            self.inner.remove(key)
        except Exception as e:
            logger.warning(f"Storage delete dropped: {e}")

    def keys(self, prefix: str = "") -> list[str]:
        try:
            return self.inner.keys(prefix)
        except Exception as e:
            logger.warning(f"Storage key listing failed (treated as empty): {e}")
            return []


def ensure_safe(storage: StoragePort | None) -> StoragePort:
    """Return storage wrapped in SafeStorage, or a safe NullStorage if None."""
    if storage is None:
        return SafeStorage(NullStorage())
    if isinstance(storage, SafeStorage):
        return storage
    return SafeStorage(storage)


def create_storage(backend: str = "sqlite", db_path: Path | str | None = None) -> StoragePort:
    """Build a storage adapter by backend name.

    Args:
        backend: "sqlite", "memory" or "null"
        db_path: Database file for the sqlite backend

    Returns:
        SafeStorage-wrapped adapter
    """
    if backend == "memory":
        return SafeStorage(MemoryStorage())
    if backend == "null":
        return SafeStorage(NullStorage())
    if backend == "sqlite":
        return SafeStorage(SqliteStorage(db_path))
    raise ValueError(f"Unknown storage backend: '{backend}'. Available: sqlite, memory, null")
