"""
Pin storage backend (SQLite).

Loads a user's pinned_items rows at session start and applies each store
transition as a single database transaction.

A PinStore keeps each user's pins in memory after the first load, so one
process should own a database file. Inserts still re-check uniqueness and,
when max_pins is given, the per-user row count inside the transaction, so a
second writer on the same file gets a DuplicatePin or CapacityExceeded
instead of silently going over the limit.
"""
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional

from .errors import CapacityExceeded, DuplicatePin, PersistenceError
from .schema import EntityType, PinChangeSet

logger = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SQLitePinRepository:
    """SQLite-backed persistence collaborator for PinStore."""

    def __init__(self, db_path: str = None, max_pins: Optional[int] = None):
        """Initialize repository and create tables if needed."""
        self.max_pins = max_pins
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "pinboard" / "pins.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        allowed = ", ".join(f"'{t}'" for t in EntityType.values())
        with _connect(self.db_path) as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS pinned_items (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL CHECK (entity_type IN ({allowed})),
                    entity_id TEXT NOT NULL,
                    display_order INTEGER NOT NULL DEFAULT 0,
                    pinned_at TEXT NOT NULL,
                    last_accessed_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, entity_type, entity_id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_pinned_items_user_id ON pinned_items(user_id)")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_pinned_items_entity
                ON pinned_items(entity_type, entity_id)
            """)
            conn.commit()

    def load(self, user_id: str) -> List[Dict[str, Any]]:
        """All of a user's rows, in display order."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM pinned_items
                    WHERE user_id = ?
                    ORDER BY display_order ASC, pinned_at ASC
                    """,
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error loading pins for user {user_id}: {e}")
            raise PersistenceError(str(e)) from e
        return [dict(row) for row in rows]

    def apply(self, user_id: str, changes: PinChangeSet) -> None:
        """Write one change set atomically; deletes first so freed slots can be reused."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            with _connect(self.db_path) as conn:
                for item in changes.deleted:
                    conn.execute(
                        "DELETE FROM pinned_items WHERE id = ? AND user_id = ?",
                        (item.id, user_id),
                    )
                for item in changes.updated:
                    conn.execute(
                        """
                        UPDATE pinned_items
                        SET display_order = ?, last_accessed_at = ?
                        WHERE id = ? AND user_id = ?
                        """,
                        (item.display_order, item.last_accessed_at.isoformat(), item.id, user_id),
                    )
                for item in changes.created:
                    row = item.to_row(user_id)
                    taken = conn.execute(
                        """
                        SELECT 1 FROM pinned_items
                        WHERE user_id = ? AND entity_type = ? AND entity_id = ?
                        """,
                        (user_id, row["entity_type"], row["entity_id"]),
                    ).fetchone()
                    if taken:
                        raise DuplicatePin(row["entity_type"], row["entity_id"])
                    conn.execute(
                        """
                        INSERT INTO pinned_items
                        (id, user_id, entity_type, entity_id, display_order,
                         pinned_at, last_accessed_at, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            row["id"],
                            row["user_id"],
                            row["entity_type"],
                            row["entity_id"],
                            row["display_order"],
                            row["pinned_at"],
                            row["last_accessed_at"],
                            now,
                        ),
                    )
                if changes.created and self.max_pins is not None:
                    count = conn.execute(
                        "SELECT COUNT(*) FROM pinned_items WHERE user_id = ?", (user_id,)
                    ).fetchone()[0]
                    if count > self.max_pins:
                        raise CapacityExceeded(self.max_pins)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error saving pins for user {user_id}: {e}")
            raise PersistenceError(str(e)) from e

