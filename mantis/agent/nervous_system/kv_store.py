from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from mantis.agent.nervous_system.paths import resolve_mantis_db_path


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._items.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._items[key] = json.dumps(value, ensure_ascii=False)


class SqliteKeyValueStore:
    """JSON values keyed by string in a single sqlite table.

    The database file and its schema are created on first access, so an
    unusable path surfaces from ``get``/``set`` rather than the constructor.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = Path(db_path) if db_path else resolve_mantis_db_path()
        self._schema_ready = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    def ensure_ready(self) -> None:
        """Open the database once, creating the file and schema; raises when unusable."""
        self._connect().close()

    def get(self, key: str) -> Any | None:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT value_json FROM kv_store WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        return json.loads(row["value_json"])

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, default=str)
        now = datetime.now(timezone.utc).isoformat()
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json,
                                               updated_at = excluded.updated_at
                """,
                (key, payload, now),
            )

    def _connect(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        if not self._schema_ready:
            try:
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS kv_store (
                          key TEXT PRIMARY KEY,
                          value_json TEXT NOT NULL,
                          updated_at TEXT NOT NULL
                        )
                        """
                    )
            except sqlite3.Error:
                conn.close()
                raise
            self._schema_ready = True
        return conn
