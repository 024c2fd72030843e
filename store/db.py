from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Database:
    conn: sqlite3.Connection
    lock: threading.Lock


_MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          version INTEGER NOT NULL PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS blobs (
          key TEXT NOT NULL PRIMARY KEY,
          value TEXT NOT NULL,
          updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS connectors (
          connector_id TEXT NOT NULL PRIMARY KEY,
          name TEXT NOT NULL,

          last_fetch_at TEXT NULL,
          last_success_at TEXT NULL,
          last_error_at TEXT NULL,
          consecutive_failures INTEGER NOT NULL DEFAULT 0,
          success_count INTEGER NOT NULL DEFAULT 0,
          error_count INTEGER NOT NULL DEFAULT 0,
          last_item_count INTEGER NULL,
          last_error TEXT NULL
        );
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
          run_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
          started_at TEXT NOT NULL,
          finished_at TEXT NOT NULL,
          trigger TEXT NOT NULL,
          connector_count INTEGER NOT NULL,
          failed_count INTEGER NOT NULL,
          candidate_count INTEGER NOT NULL,
          new_count INTEGER NOT NULL,
          aborted INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS sync_runs_started_at_idx ON sync_runs(started_at);
        """,
    ),
]


def open_database(path: Path) -> Database:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    _apply_migrations(conn)
    return Database(conn=conn, lock=threading.Lock())


def close_database(db: Database) -> None:
    with db.lock:
        db.conn.close()


@contextmanager
def transaction(db: Database) -> Iterator[sqlite3.Connection]:
    """Hold the lock for one unit of work; commit on success, roll back on error."""
    with db.lock:
        try:
            yield db.conn
        except BaseException:
            db.conn.rollback()
            raise
        db.conn.commit()


def schema_version(db: Database) -> int:
    with db.lock:
        row = db.conn.execute(
            "SELECT COALESCE(MAX(version), 0) AS v FROM schema_migrations;"
        ).fetchone()
    return int(row["v"])


def _apply_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER NOT NULL PRIMARY KEY);"
    )
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) AS v FROM schema_migrations;"
    ).fetchone()
    current_version = int(row["v"])

    for version, sql in _MIGRATIONS:
        if version <= current_version:
            continue
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_migrations(version) VALUES (?);", (version,))
        conn.commit()
