"""
Keyed storage for contract state.

Values are JSON-compatible. Writes for one operation are staged in a
``WriteBatch`` and applied all-or-nothing, so no partial state is ever
visible after a failed call.
"""

from __future__ import annotations

import json
import os
import sqlite3
from pathlib import Path
from typing import Any, Optional, Protocol


_REMOVED = object()


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


class WriteBatch:
    """Staged sets and removes, applied together by a store."""

    def __init__(self) -> None:
        self._ops: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._ops[key] = value

    def remove(self, key: str) -> None:
        self._ops[key] = _REMOVED

    def staged(self, key: str, default: Any = None) -> Any:
        """Value staged for ``key``, or ``default`` if untouched or removed."""
        value = self._ops.get(key, _REMOVED)
        return default if value is _REMOVED else value

    def removals(self) -> list[str]:
        return [k for k, v in self._ops.items() if v is _REMOVED]

    def writes(self) -> dict[str, Any]:
        return {k: v for k, v in self._ops.items() if v is not _REMOVED}

    def __len__(self) -> int:
        return len(self._ops)

    def __bool__(self) -> bool:
        return bool(self._ops)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def scan(self, prefix: str) -> list[tuple[str, Any]]: ...

    def apply(self, batch: WriteBatch) -> None: ...


class MemoryStore:
    """Dict-backed store for tests and embedding."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def scan(self, prefix: str) -> list[tuple[str, Any]]:
        return [
            (k, json.loads(v))
            for k, v in sorted(self._data.items())
            if k.startswith(prefix)
        ]

    def apply(self, batch: WriteBatch) -> None:
        # Serialize everything first so an unencodable value leaves the store untouched.
        encoded = {k: json.dumps(v) for k, v in batch.writes().items()}
        for key in batch.removals():
            self._data.pop(key, None)
        self._data.update(encoded)


class SqliteStore:
    """
    SQLite-backed store.

    Each batch is applied inside a BEGIN IMMEDIATE transaction, so a batch
    either lands completely or not at all.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        ensure_private_dir(self.db_path.parent)
        self._init_db()
        ensure_private_file(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> Optional[Any]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else json.loads(row["value"])

    def set(self, key: str, value: Any) -> None:
        batch = WriteBatch()
        batch.set(key, value)
        self.apply(batch)

    def remove(self, key: str) -> None:
        batch = WriteBatch()
        batch.remove(key)
        self.apply(batch)

    def scan(self, prefix: str) -> list[tuple[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key, value FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [(row["key"], json.loads(row["value"])) for row in rows]

    def apply(self, batch: WriteBatch) -> None:
        if not batch:
            return
        encoded = [(k, json.dumps(v)) for k, v in batch.writes().items()]
        removals = [(k,) for k in batch.removals()]
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if removals:
                    conn.executemany("DELETE FROM kv WHERE key = ?", removals)
                if encoded:
                    conn.executemany(
                        """
                        INSERT INTO kv (key, value) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value
                        """,
                        encoded,
                    )
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
