from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from classify.adapter import ClassificationAdapter
from classify.oracle import OracleError, text_part
from store.db import Database, transaction

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class SyncRun:
    started_at: str
    finished_at: str
    trigger: str
    connector_count: int
    failed_count: int
    candidate_count: int
    new_count: int
    aborted: bool = False


def record_connector_success(
    db: Database, *, connector_id: str, name: str, item_count: int
) -> None:
    now_iso = _utc_now_iso()
    with transaction(db) as conn:
        conn.execute(
            """
            INSERT INTO connectors(
              connector_id, name, last_fetch_at, last_success_at,
              consecutive_failures, success_count, last_item_count
            ) VALUES (?, ?, ?, ?, 0, 1, ?)
            ON CONFLICT(connector_id) DO UPDATE SET
              name = excluded.name,
              last_fetch_at = excluded.last_fetch_at,
              last_success_at = excluded.last_success_at,
              consecutive_failures = 0,
              success_count = success_count + 1,
              last_item_count = excluded.last_item_count,
              last_error = NULL;
            """,
            (connector_id, name, now_iso, now_iso, item_count),
        )


def record_connector_error(
    db: Database, *, connector_id: str, name: str, error: str
) -> int:
    """Returns the connector's consecutive failure count."""
    now_iso = _utc_now_iso()
    with transaction(db) as conn:
        conn.execute(
            """
            INSERT INTO connectors(
              connector_id, name, last_fetch_at, last_error_at,
              consecutive_failures, error_count, last_error
            ) VALUES (?, ?, ?, ?, 1, 1, ?)
            ON CONFLICT(connector_id) DO UPDATE SET
              name = excluded.name,
              last_fetch_at = excluded.last_fetch_at,
              last_error_at = excluded.last_error_at,
              consecutive_failures = consecutive_failures + 1,
              error_count = error_count + 1,
              last_error = excluded.last_error;
            """,
            (connector_id, name, now_iso, now_iso, error),
        )
        row = conn.execute(
            "SELECT consecutive_failures FROM connectors WHERE connector_id = ?;",
            (connector_id,),
        ).fetchone()
    return int(row["consecutive_failures"])


def list_connector_health(db: Database) -> list[dict]:
    with db.lock:
        rows = db.conn.execute(
            """
            SELECT connector_id, name, last_fetch_at, last_success_at, last_error_at,
                   consecutive_failures, success_count, error_count,
                   last_item_count, last_error
            FROM connectors
            ORDER BY connector_id;
            """
        ).fetchall()
    return [dict(r) for r in rows]


def record_sync_run(db: Database, run: SyncRun) -> None:
    with transaction(db) as conn:
        conn.execute(
            """
            INSERT INTO sync_runs(
              started_at, finished_at, trigger, connector_count,
              failed_count, candidate_count, new_count, aborted
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.started_at,
                run.finished_at,
                run.trigger,
                run.connector_count,
                run.failed_count,
                run.candidate_count,
                run.new_count,
                int(run.aborted),
            ),
        )


def list_sync_runs(db: Database, *, limit: int = 20) -> list[dict]:
    """Most recent runs first."""
    with db.lock:
        rows = db.conn.execute(
            """
            SELECT run_id, started_at, finished_at, trigger, connector_count,
                   failed_count, candidate_count, new_count, aborted
            FROM sync_runs
            ORDER BY run_id DESC
            LIMIT ?;
            """,
            (limit,),
        ).fetchall()
    return [{**dict(r), "aborted": bool(r["aborted"])} for r in rows]


async def check_oracle(adapter: ClassificationAdapter) -> dict:
    """One-token round trip; latency is 0 when the oracle is unreachable."""
    started = time.perf_counter()
    try:
        await adapter.call_with_retry([text_part("ping")], max_output_tokens=1)
    except OracleError as exc:
        logger.warning("Oracle check failed: %s", exc)
        return {"status": "error", "latency_ms": 0}
    return {
        "status": "connected",
        "latency_ms": int((time.perf_counter() - started) * 1000),
    }
