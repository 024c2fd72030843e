from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from store.db import Database, transaction

logger = logging.getLogger(__name__)

INCIDENTS_KEY = "incidents"
USER_KEY = "user"
NOTIFICATIONS_KEY = "notifications"
LAST_SYNC_KEY = "last_sync"
ANALYSIS_CACHE_KEY = "analysis_cache"

SESSION_KEYS = (
    INCIDENTS_KEY,
    USER_KEY,
    NOTIFICATIONS_KEY,
    LAST_SYNC_KEY,
    ANALYSIS_CACHE_KEY,
)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


class BlobStore:
    """JSON values under fixed keys.

    Reads never raise: a missing or unreadable blob yields the default. Writes
    report failure through their return value and the log.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def load(self, key: str, default: Any = None) -> Any:
        try:
            with self._db.lock:
                row = self._db.conn.execute(
                    "SELECT value FROM blobs WHERE key = ?;", (key,)
                ).fetchone()
        except sqlite3.Error:
            logger.exception("Blob read failed for %s", key)
            return default
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt blob %s", key)
            return default

    def save(self, key: str, value: Any) -> bool:
        return self.save_many({key: value})

    def save_many(self, values: Mapping[str, Any]) -> bool:
        """Write every value or none of them."""
        try:
            rows = [
                (key, json.dumps(value, ensure_ascii=False), _utc_now_iso())
                for key, value in values.items()
            ]
        except (TypeError, ValueError):
            logger.exception("Blob serialization failed for %s", sorted(values))
            return False

        try:
            with transaction(self._db) as conn:
                conn.executemany(
                    """
                    INSERT INTO blobs(key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                      value = excluded.value,
                      updated_at = excluded.updated_at;
                    """,
                    rows,
                )
        except sqlite3.Error:
            logger.exception("Blob write failed for %s", sorted(values))
            return False
        return True

    def delete(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        try:
            with transaction(self._db) as conn:
                conn.executemany("DELETE FROM blobs WHERE key = ?;", [(k,) for k in keys])
        except sqlite3.Error:
            logger.exception("Blob delete failed for %s", keys)
            return False
        return True
