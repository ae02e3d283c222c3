"""SQLite-backed store for saved WARP+ license keys."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 50

SCHEMA = """
CREATE TABLE IF NOT EXISTS keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key_id VARCHAR(50) NOT NULL
)
"""


class KeyRecord(BaseModel):
    """A saved license key."""

    id: int
    key_id: str = Field(min_length=1, max_length=MAX_KEY_LENGTH)


class KeyStoreError(Exception):
    """Error initializing the key database."""

    pass


class KeyStore:
    """Single-table key persistence.

    Only ``initialize`` raises; the CRUD calls log failures and report
    them through their return value.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the database file and schema.

        Raises:
            KeyStoreError: If the database cannot be opened or created
        """
        logger.info("Initializing key database at %s", self.db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            logger.error("Failed to initialize database: %s", e, exc_info=True)
            raise KeyStoreError(f"Failed to initialize database at {self.db_path}") from e

    def add_key(self, key_id: str) -> bool:
        key_id = key_id.strip()
        if not key_id or len(key_id) > MAX_KEY_LENGTH:
            logger.warning("Rejected key with invalid length: %r", key_id)
            return False
        try:
            with self._connect() as conn:
                conn.execute("INSERT INTO keys (key_id) VALUES (?)", (key_id,))
        except sqlite3.Error as e:
            logger.error("Failed to add key: %s. Error: %s", key_id, e)
            return False
        logger.info("Added key: %s", key_id)
        return True

    def list_keys(self) -> list[KeyRecord]:
        """Return all saved keys in insertion order."""
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT id, key_id FROM keys ORDER BY id").fetchall()
        except sqlite3.Error as e:
            logger.error("Failed to retrieve keys. Error: %s", e)
            return []
        keys = [KeyRecord(id=row["id"], key_id=row["key_id"]) for row in rows]
        logger.debug("Retrieved %d keys", len(keys))
        return keys

    def get_key(self, id: int) -> KeyRecord | None:
        for record in self.list_keys():
            if record.id == id:
                return record
        return None

    def delete_key(self, id: int) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM keys WHERE id = ?", (id,))
        except sqlite3.Error as e:
            logger.error("Failed to delete key with id: %s. Error: %s", id, e)
            return False
        if cursor.rowcount == 0:
            logger.warning("No key with id: %s", id)
            return False
        logger.info("Deleted key with id: %s", id)
        return True
