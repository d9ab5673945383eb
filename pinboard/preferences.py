"""
Per-user UI preferences (e.g. whether the pinned section is collapsed).

Load-once, write-through key-value store. Concurrent writers resolve by last
write wins; hosts that share a database call refresh() when they receive a
preference_changed notification from another writer.
"""
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from .errors import PersistenceError
from .events import PinEventBridge
from .persistence import _connect

logger = logging.getLogger(__name__)

PINS_COLLAPSED = "pins-collapsed"


class PreferenceStore:
    """SQLite-backed string preferences, cached per user."""

    def __init__(self, db_path: str, events: Optional[PinEventBridge] = None):
        self.db_path = db_path
        self.events = events or PinEventBridge()
        self._cache: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS preferences (
                    user_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, key)
                )
            """)
            conn.commit()

    def get(self, user_id: str, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            prefs = self._cache.get(user_id)
            if prefs is None:
                prefs = self._cache[user_id] = self._read(user_id)
            return prefs.get(key, default)

    def get_bool(self, user_id: str, key: str, default: bool = False) -> bool:
        value = self.get(user_id, key)
        if value is None:
            return default
        return value.strip().lower() == "true"

    def set(self, user_id: str, key: str, value) -> str:
        """Write through to the database, then update the cache and notify."""
        if isinstance(value, bool):
            value = "true" if value else "false"
        value = str(value)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                with _connect(self.db_path) as conn:
                    conn.execute("""
                        INSERT INTO preferences (user_id, key, value, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(user_id, key) DO UPDATE
                        SET value=excluded.value, updated_at=excluded.updated_at
                    """, (user_id, key, value, now))
                    conn.commit()
            except sqlite3.Error as e:
                logger.error(f"Error saving preference {key} for user {user_id}: {e}")
                raise PersistenceError(str(e)) from e
            if user_id in self._cache:
                self._cache[user_id][key] = value
        self.events.emit("preference_changed", user_id=user_id, key=key, value=value)
        return value

    def refresh(self, user_id: str) -> Dict[str, str]:
        """Drop the cached copy and reload from the database."""
        with self._lock:
            prefs = self._cache[user_id] = self._read(user_id)
            return dict(prefs)

    def _read(self, user_id: str) -> Dict[str, str]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT key, value FROM preferences WHERE user_id = ?",
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error loading preferences for user {user_id}: {e}")
            raise PersistenceError(str(e)) from e
        return {row["key"]: row["value"] for row in rows}
