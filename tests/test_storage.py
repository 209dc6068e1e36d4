import sqlite3
from pathlib import Path

import pytest

from dialogtrainer.config import MAX_STORAGE_BYTES
from dialogtrainer.errors import PersistenceError
from dialogtrainer.storage import (
    MemoryKeyValueStore,
    SqliteKeyValueStore,
    coerce_float,
    coerce_int,
    dump_blob,
    load_blob,
)


def test_sqlite_store_get_set_delete() -> None:
    store = SqliteKeyValueStore(":memory:")
    assert store.get("missing") is None
    store.set("k", "v1")
    store.set("k", "v2")
    assert store.get("k") == "v2"
    store.delete("k")
    assert store.get("k") is None
    store.close()


def test_migration_sets_user_version_and_schema_history() -> None:
    store = SqliteKeyValueStore(":memory:")
    version = int(store._conn.execute("PRAGMA user_version").fetchone()[0])  # noqa: SLF001
    assert version == 1
    rows = store._conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()  # noqa: SLF001
    assert [int(row["version"]) for row in rows] == [1]


def test_path_database_creation_persists_across_connections(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "progress.db"
    store = SqliteKeyValueStore(db_path)
    store.set("app_progress", "{}")
    store.close()
    assert db_path.exists()

    reopened = SqliteKeyValueStore(db_path)
    assert reopened.get("app_progress") == "{}"
    reopened.close()


def test_newer_schema_version_is_rejected(tmp_path: Path) -> None:
    db_path = tmp_path / "future.db"
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA user_version = 99")
    conn.commit()
    conn.close()

    with pytest.raises(PersistenceError, match="newer than supported"):
        SqliteKeyValueStore(db_path)


def test_closed_connection_raises_persistence_error() -> None:
    store = SqliteKeyValueStore(":memory:")
    store.close()
    with pytest.raises(PersistenceError):
        store.set("k", "v")
    with pytest.raises(PersistenceError):
        store.get("k")


def test_blob_round_trip_and_missing_key() -> None:
    store = MemoryKeyValueStore()
    assert load_blob(store, "absent") is None
    dump_blob(store, "blob", {"a": [1, 2]})
    assert load_blob(store, "blob") == {"a": [1, 2]}


def test_oversized_blob_is_rejected_not_truncated() -> None:
    store = MemoryKeyValueStore()
    with pytest.raises(PersistenceError, match="too large"):
        dump_blob(store, "blob", "x" * (MAX_STORAGE_BYTES + 1))
    assert store.get("blob") is None


def test_invalid_json_blob_raises() -> None:
    store = MemoryKeyValueStore({"blob": "{not json"})
    with pytest.raises(PersistenceError, match="not valid JSON"):
        load_blob(store, "blob")


def test_coerce_helpers() -> None:
    assert coerce_int(True) == 1
    assert coerce_int(3.9) == 3
    assert coerce_int("7") == 7
    assert coerce_int("x", default=-1) == -1
    assert coerce_int(None) is None
    assert coerce_float("1.5") == 1.5
    assert coerce_float(2) == 2.0
    assert coerce_float("fast", default=None) is None
