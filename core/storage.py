# core/storage.py
import json
import os
import sqlite3
from typing import Optional

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .models import Snapshot, now_utc_iso
from .logger import get_logger

logger = get_logger(__name__)

DB_PATH = os.getenv("DB_PATH", "/data/openrouter_monitor.sqlite3")
STORAGE_WRITE_ATTEMPTS = int(os.getenv("STORAGE_WRITE_ATTEMPTS", "3"))

MODELS_DATA_KEY = "models_data"
LAST_UPDATE_KEY = "last_update"
LAST_TRIGGER_KEY = "last_monitor_trigger"
SETTINGS_KEY = "app_settings"


class StorageError(Exception):
    """Read or write failure against the key-value store."""


class KVStore:
    """
    Minimal string key-value store on a single SQLite table.
    Each put replaces one key; there are no multi-key transactions.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH

    def _connect(self):
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        return sqlite3.connect(self.db_path)

    def ensure_db(self):
        try:
            with self._connect() as con:
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT
                    )
                """
                )
                con.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to initialize store at {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            with self._connect() as con:
                row = con.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e
        return row[0] if row else None

    @retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        wait=wait_exponential_jitter(initial=0.2, max=2),
        stop=stop_after_attempt(STORAGE_WRITE_ATTEMPTS),
    )
    def _write(self, key: str, value: str):
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
            """,
                (key, value, now_utc_iso()),
            )
            con.commit()

    def put(self, key: str, value: str):
        try:
            self._write(key, value)
        except RetryError as e:
            raise StorageError(
                f"Failed to write '{key}' after {STORAGE_WRITE_ATTEMPTS} attempts: "
                f"{e.last_attempt.exception()}"
            ) from e
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

    def delete(self, key: str):
        try:
            with self._connect() as con:
                con.execute("DELETE FROM kv WHERE key=?", (key,))
                con.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e


class SnapshotStore:
    """Holds the single live snapshot plus its last-update timestamp."""

    def __init__(self, kv: KVStore):
        self.kv = kv

    def load(self) -> Optional[Snapshot]:
        """
        Return the last saved snapshot, or None when there is none.
        Unreadable data is treated as a cold start rather than an error.
        """
        try:
            raw = self.kv.get(MODELS_DATA_KEY)
        except StorageError as e:
            logger.error("Error retrieving previous snapshot: %s", e)
            return None
        if not raw:
            return None
        try:
            return Snapshot.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error("Stored snapshot is unreadable; treating as cold start: %s", e)
            return None

    def save(self, snapshot: Snapshot):
        # Two separate writes: a crash in between leaves last_update stale.
        self.kv.put(MODELS_DATA_KEY, json.dumps(snapshot.to_dict(), ensure_ascii=False))
        self.kv.put(LAST_UPDATE_KEY, snapshot.timestamp)
        logger.debug(
            "Saved snapshot %s (%d models, %d free).",
            snapshot.timestamp, snapshot.total_items, len(snapshot.free_items),
        )

    def last_update(self) -> Optional[str]:
        try:
            return self.kv.get(LAST_UPDATE_KEY)
        except StorageError as e:
            logger.error("Error retrieving last update timestamp: %s", e)
            return None
