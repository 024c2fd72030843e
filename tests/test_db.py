import sqlite3

import pytest

from store.db import close_database, open_database, schema_version, transaction


def test_migrations_apply_once(tmp_path) -> None:
    path = tmp_path / "nested" / "state.db"
    db = open_database(path)
    assert schema_version(db) == 2
    close_database(db)

    reopened = open_database(path)
    try:
        assert schema_version(reopened) == 2
        tables = {
            row["name"]
            for row in reopened.conn.execute("SELECT name FROM sqlite_master WHERE type='table';")
        }
        assert {"blobs", "connectors", "sync_runs"} <= tables
    finally:
        close_database(reopened)


def test_transaction_rolls_back_on_error(db) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        with transaction(db) as conn:
            conn.execute(
                "INSERT INTO blobs(key, value, updated_at) VALUES ('a', '1', 'now');"
            )
            conn.execute(
                "INSERT INTO blobs(key, value, updated_at) VALUES ('a', '2', 'now');"
            )

    count = db.conn.execute("SELECT COUNT(*) AS n FROM blobs;").fetchone()["n"]
    assert count == 0
