"""
Fallback store using SQLite.

Local key-value persistence behind the sync client. It serves two roles:
- write-through backup of everything read from or written to the remote
- the only source of truth while the remote is unreachable

Values are JSON documents under flat string keys (``"<collection>_<id>"``
for documents, ``"<collection>"`` for listings). The store also keeps the
set of documents whose local writes the remote has not yet confirmed; it is
a dirty set, not an ordered queue, and only the latest local value of each
document is ever replayed.

Calls are synchronous and never retried.
"""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class FallbackStore:
    """
    SQLite-backed key-value store with an unsynced-writes set.

    Args:
        store_path: Path to SQLite database file (":memory:" for tests)
    """

    def __init__(self, store_path: Path):
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        if str(self._db_path) != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        # WAL keeps readers from blocking the writer
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS unsynced (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                op TEXT NOT NULL,
                marked_at TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)
        self._conn.commit()

    def _now(self) -> str:
        """Current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat()

    # -------------------------------------------------------------------------
    # Key-value
    # -------------------------------------------------------------------------

    def read(self, key: str) -> Any:
        """Return the stored value for ``key``, or None if absent."""
        cursor = self._conn.execute(
            "SELECT value_json FROM kv WHERE key = ?", (key,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["value_json"])

    def write(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under ``key``, replacing any old one."""
        self._conn.execute("""
            INSERT OR REPLACE INTO kv (key, value_json, updated_at)
            VALUES (?, ?, ?)
        """, (key, json.dumps(value, ensure_ascii=False), self._now()))
        self._conn.commit()

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""
        cursor = self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``, sorted."""
        if prefix:
            escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            cursor = self._conn.execute(
                "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",),
            )
        else:
            cursor = self._conn.execute("SELECT key FROM kv ORDER BY key")
        return [row["key"] for row in cursor]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]

    # -------------------------------------------------------------------------
    # Unsynced writes
    # -------------------------------------------------------------------------

    def mark_unsynced(self, collection: str, id: str, op: str) -> None:
        """
        Remember that a document's latest local write is not on the remote.

        A create stays a create until it is synced, so a later local update
        to a never-synced document still replays as a create. Deleting a
        never-synced create leaves nothing to replay.
        """
        existing = self.is_unsynced(collection, id)
        if existing == "create":
            if op == "delete":
                self.clear_unsynced(collection, id)
                return
            op = "create"
        self._conn.execute("""
            INSERT OR REPLACE INTO unsynced (collection, id, op, marked_at)
            VALUES (?, ?, ?, ?)
        """, (collection, id, op, self._now()))
        self._conn.commit()

    def clear_unsynced(self, collection: str, id: str) -> None:
        self._conn.execute(
            "DELETE FROM unsynced WHERE collection = ? AND id = ?", (collection, id)
        )
        self._conn.commit()

    def is_unsynced(self, collection: str, id: str) -> Optional[str]:
        """Return the pending op for a document, or None if it is in sync."""
        row = self._conn.execute(
            "SELECT op FROM unsynced WHERE collection = ? AND id = ?",
            (collection, id),
        ).fetchone()
        return row["op"] if row else None

    def list_unsynced(self, collection: Optional[str] = None) -> list[tuple[str, str, str]]:
        """List (collection, id, op) for unsynced documents."""
        if collection is None:
            cursor = self._conn.execute(
                "SELECT collection, id, op FROM unsynced ORDER BY collection, id"
            )
        else:
            cursor = self._conn.execute(
                "SELECT collection, id, op FROM unsynced WHERE collection = ? ORDER BY id",
                (collection,),
            )
        return [(row["collection"], row["id"], row["op"]) for row in cursor]

    def count_unsynced(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM unsynced").fetchone()[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
