"""
Sync State Management

Maintains a SQLite database of mapping records (local reminder id ↔ Google
task id plus last-known completion state) and an audit log of passes.

Every call opens its own connection, so a read always reflects the latest
committed write and the store can be shared between worker threads.
"""

import sqlite3
from pathlib import Path
from datetime import datetime
from typing import Optional
import json

from .exceptions import MappingNotFoundError
from .models import SyncedItem, utc_now
from . import config

# Columns a caller may change through patch()
PATCHABLE_FIELDS = ("remote_item_id", "remote_list_id", "title", "completed")


class MappingStore:
    """
    Manages mapping persistence in a SQLite database.

    Schema:
    - synced_items: One row per reconciled task, keyed by local_id
    - sync_log: Audit log of sync passes and notable actions
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize the mapping database.

        Args:
            db_path: Path to the SQLite database (env: SYNC_STATE_DB)
        """
        if db_path is None:
            db_path = config.SYNC_STATE_DB

        self.db_path = Path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Create database tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS synced_items (
                    local_id TEXT PRIMARY KEY,
                    remote_item_id TEXT NOT NULL,
                    remote_list_id TEXT,
                    title TEXT,
                    completed INTEGER NOT NULL DEFAULT 0,
                    synced_at TEXT NOT NULL,
                    last_modified TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    local_id TEXT,
                    details TEXT
                )
            """)

            # Pull path looks mappings up by remote id
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_remote_item_id
                ON synced_items(remote_item_id)
            """)

            conn.commit()

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> SyncedItem:
        return SyncedItem(
            local_id=row["local_id"],
            remote_item_id=row["remote_item_id"],
            remote_list_id=row["remote_list_id"],
            title=row["title"] or "",
            completed=bool(row["completed"]),
            synced_at=row["synced_at"],
            last_modified=row["last_modified"],
        )

    def get(self, local_id: str) -> Optional[SyncedItem]:
        """Get a mapping record by local id."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM synced_items WHERE local_id = ?",
                (local_id,)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def get_by_remote_id(self, remote_item_id: str) -> Optional[SyncedItem]:
        """Find a mapping record by Google task id."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM synced_items WHERE remote_item_id = ?",
                (remote_item_id,)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def get_all(self) -> list[tuple[str, SyncedItem]]:
        """Get all mapping records as (local_id, record) pairs, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM synced_items ORDER BY synced_at, local_id"
            ).fetchall()
        return [(row["local_id"], self._row_to_item(row)) for row in rows]

    def remote_item_ids(self) -> set[str]:
        """Every remote id referenced by any mapping record."""
        with self._connect() as conn:
            rows = conn.execute("SELECT remote_item_id FROM synced_items").fetchall()
        return {row["remote_item_id"] for row in rows}

    def put(self, item: SyncedItem):
        """Insert or replace the mapping record for item.local_id."""
        with self._connect() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO synced_items
                (local_id, remote_item_id, remote_list_id, title, completed, synced_at, last_modified)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                item.local_id,
                item.remote_item_id,
                item.remote_list_id,
                item.title,
                int(item.completed),
                item.synced_at.isoformat(),
                item.last_modified.isoformat(),
            ))
            conn.commit()

    def patch(self, local_id: str, **fields) -> SyncedItem:
        """
        Merge-update an existing mapping record.

        Raises:
            MappingNotFoundError: if no record exists for local_id
            ValueError: if a field is not patchable
        """
        unknown = set(fields) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot patch fields: {', '.join(sorted(unknown))}")

        values = dict(fields)
        if "completed" in values:
            values["completed"] = int(bool(values["completed"]))
        values["last_modified"] = utc_now().isoformat()

        assignments = ", ".join(f"{name} = ?" for name in values)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE synced_items SET {assignments} WHERE local_id = ?",
                (*values.values(), local_id)
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise MappingNotFoundError(local_id)

        return self.get(local_id)

    def delete(self, local_id: str):
        """Delete a mapping record."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM synced_items WHERE local_id = ?",
                (local_id,)
            )
            conn.commit()

    def log_action(self, action: str, local_id: Optional[str] = None, details: Optional[dict] = None):
        """Log a sync action for auditing."""
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO sync_log (timestamp, action, local_id, details)
                VALUES (?, ?, ?, ?)
            """, (
                int(datetime.now().timestamp()),
                action,
                local_id,
                json.dumps(details) if details else None,
            ))
            conn.commit()

    def get_recent_logs(self, limit: int = 100) -> list[dict]:
        """Get recent sync log entries."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_log ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,)
            ).fetchall()
        return [
            {
                "id": row["id"],
                "timestamp": datetime.fromtimestamp(row["timestamp"]),
                "action": row["action"],
                "local_id": row["local_id"],
                "details": json.loads(row["details"]) if row["details"] else None,
            }
            for row in rows
        ]

    def clear_all(self):
        """Clear all mapping records. Use with caution!"""
        with self._connect() as conn:
            conn.execute("DELETE FROM synced_items")
            conn.commit()

    def get_stats(self) -> dict:
        """Get mapping statistics."""
        with self._connect() as conn:
            total = conn.execute("SELECT COUNT(*) FROM synced_items").fetchone()[0]
            completed = conn.execute(
                "SELECT COUNT(*) FROM synced_items WHERE completed = 1"
            ).fetchone()[0]
            lists = conn.execute(
                "SELECT COUNT(DISTINCT remote_list_id) FROM synced_items"
            ).fetchone()[0]

        return {
            "total_records": total,
            "completed": completed,
            "open": total - completed,
            "remote_lists": lists,
        }
