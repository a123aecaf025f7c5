from __future__ import annotations

from pathlib import Path

import pytest

from mantis.agent.nervous_system.kv_store import InMemoryKeyValueStore, SqliteKeyValueStore
from mantis.agent.nervous_system.paths import resolve_mantis_db_path


def test_sqlite_store_round_trips_and_overwrites(tmp_path: Path) -> None:
    store = SqliteKeyValueStore(tmp_path / "kv.db")

    assert store.get("missing") is None

    store.set("insights", {"topic_histogram": {"projects": 2}})
    store.set("insights", {"topic_histogram": {"projects": 3}})

    assert store.get("insights") == {"topic_histogram": {"projects": 3}}
    reopened = SqliteKeyValueStore(tmp_path / "kv.db")
    assert reopened.get("insights") == {"topic_histogram": {"projects": 3}}


def test_sqlite_store_uses_env_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "nested" / "store.db"
    monkeypatch.setenv("MANTIS_DB_PATH", str(target))

    store = SqliteKeyValueStore()
    store.set("k", [1, 2])

    assert store.db_path == target
    assert target.exists()
    assert resolve_mantis_db_path() == target


def test_in_memory_store_returns_copies() -> None:
    store = InMemoryKeyValueStore()
    value = {"a": [1]}
    store.set("k", value)
    value["a"].append(2)

    loaded = store.get("k")
    assert loaded == {"a": [1]}
    assert store.get("other") is None


def test_sqlite_store_defers_disk_access_until_used(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    store = SqliteKeyValueStore(blocker / "sub" / "kv.db")

    with pytest.raises(OSError):
        store.ensure_ready()
    with pytest.raises(OSError):
        store.get("insights")
