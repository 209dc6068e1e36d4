"""Key-value persistence for settings and progress blobs."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from .config import MAX_STORAGE_BYTES
from .errors import PersistenceError

SCHEMA_VERSION = 1


class KeyValueStore(Protocol):
    """Minimal string key-value interface used for persisted state."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store, used for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqliteKeyValueStore:
    """SQLite-backed key-value store."""

    def __init__(self, db_path: Path | str) -> None:
        """Open the database and apply schema migrations."""
        if isinstance(db_path, Path):
            try:
                db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PersistenceError(f"Could not create data directory {db_path.parent}: {exc}") from exc
            target = str(db_path)
        else:
            target = db_path
        try:
            self._conn = sqlite3.connect(target)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open database {target}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to the latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise PersistenceError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )

    def _migrate_to_v1(self) -> None:
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """)

    def get(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not read '{key}': {exc}") from exc
        if row is None:
            return None
        return str(row["value"])

    def set(self, key: str, value: str) -> None:
        now = datetime.now(UTC).isoformat()
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not write '{key}': {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not delete '{key}': {exc}") from exc

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


def dump_blob(store: KeyValueStore, key: str, payload: object) -> None:
    """Serialize payload to JSON and write it, enforcing the storage size cap."""
    serialized = json.dumps(payload, separators=(",", ":"))
    if len(serialized.encode("utf-8")) > MAX_STORAGE_BYTES:
        raise PersistenceError(f"'{key}' data too large (max {MAX_STORAGE_BYTES} bytes)")
    store.set(key, serialized)


def load_blob(store: KeyValueStore, key: str) -> object | None:
    """Read and decode one JSON blob; None when the key is absent."""
    raw = store.get(key)
    if raw is None:
        return None
    if len(raw.encode("utf-8")) > MAX_STORAGE_BYTES:
        raise PersistenceError(f"'{key}' data too large (max {MAX_STORAGE_BYTES} bytes)")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"'{key}' is not valid JSON: {exc}") from exc


def coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce a decoded JSON value to int."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def coerce_float(value: object, default: float | None = None) -> float | None:
    """Coerce a decoded JSON value to float."""
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default
