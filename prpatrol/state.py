"""Key/value state persisted in SQLite.

Values are JSON documents stored whole; a key is never patched field by field,
so readers always see either the previous or the next version of a document.
"""

from __future__ import annotations

import datetime as dt
import json
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from . import db

_MISSING = object()


class StateStore:
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=False)
        db.initialize_schema(self.conn)
        self._lock = threading.RLock()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self.conn.execute(
                "SELECT value_json FROM kv_state WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return json.loads(row["value_json"])

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for ``keys``; absent keys are omitted."""
        wanted = list(keys)
        if not wanted:
            return {}
        placeholders = ",".join(["?"] * len(wanted))
        with self._lock:
            rows = self.conn.execute(
                f"SELECT key, value_json FROM kv_state WHERE key IN ({placeholders})",
                wanted,
            ).fetchall()
        return {str(row["key"]): json.loads(row["value_json"]) for row in rows}

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def remove(self, *keys: str) -> None:
        self.update({}, remove=keys)

    def update(
        self,
        values: Mapping[str, Any],
        *,
        remove: Iterable[str] = (),
    ) -> None:
        """Write ``values`` and delete ``remove`` in a single transaction."""
        now = dt.datetime.now(dt.UTC).isoformat()
        with self._lock, self.conn:
            for key, value in values.items():
                self.conn.execute(
                    """
                    INSERT INTO kv_state(key, value_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json = excluded.value_json,
                        updated_at = excluded.updated_at
                    """,
                    (key, json.dumps(value, ensure_ascii=False), now),
                )
            for key in remove:
                self.conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            rows = self.conn.execute("SELECT key, value_json FROM kv_state").fetchall()
        return {str(row["key"]): json.loads(row["value_json"]) for row in rows}
