from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from health.health import (
    SyncRun,
    record_connector_error,
    record_connector_success,
    record_sync_run,
)
from ingest.connectors import Connector, ConnectorContext, default_connectors
from realtime.log import EventLog
from store.blobs import LAST_SYNC_KEY, BlobStore
from store.db import Database
from store.incidents import IncidentStore
from store.models import Incident, LocationContext

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass
class _Tally:
    failed: int = 0
    candidates: int = 0
    new: int = 0
    aborted: bool = False


class SyncOrchestrator:
    """Fans out to every connector and merges what comes back.

    At most one sync runs at a time; a call made while one is in flight is
    dropped. Results merge in connector declaration order, whatever order the
    connectors finish in.
    """

    def __init__(
        self,
        ctx: ConnectorContext,
        *,
        store: IncidentStore,
        log: EventLog,
        db: Database,
        blobs: BlobStore,
        connectors: list[Connector] | None = None,
        timeout_seconds: float | None = 120.0,
    ) -> None:
        self._ctx = ctx
        self._store = store
        self._log = log
        self._db = db
        self._blobs = blobs
        self._connectors = connectors if connectors is not None else default_connectors()
        self._timeout = timeout_seconds
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def connectors(self) -> list[Connector]:
        return list(self._connectors)

    async def sync(
        self, location: LocationContext | None = None, *, trigger: str = "manual"
    ) -> bool:
        """Run one sync cycle. Returns False if another cycle was in flight."""
        if self._in_progress:
            logger.info("Sync already in progress; dropping %s request", trigger)
            return False
        self._in_progress = True
        started_at = _utc_now_iso()
        tally = _Tally()
        try:
            self._log.add(
                f"Starting sync across {len(self._connectors)} connectors.", "INFO"
            )
            results = await asyncio.gather(
                *(self._run_connector(c, location) for c in self._connectors),
                return_exceptions=True,
            )
            for connector, result in zip(self._connectors, results):
                if isinstance(result, BaseException):
                    tally.failed += 1
                    self._report_failure(connector, result)
                else:
                    tally.candidates += len(result)
                    tally.new += self._report_success(connector, result)
            self._blobs.save(LAST_SYNC_KEY, int(time.time() * 1000))
        except Exception:
            tally.aborted = True
            logger.exception("Sync cycle aborted")
            self._log.add("Critical sync failure.", "ALERT")
        finally:
            self._in_progress = False
            self._record_run(started_at, trigger, tally)
        return True

    async def _run_connector(
        self, connector: Connector, location: LocationContext | None
    ) -> list[Incident]:
        if self._timeout is None:
            return await connector.fetch(self._ctx, location)
        try:
            return await asyncio.wait_for(
                connector.fetch(self._ctx, location), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"{connector.name} timed out after {self._timeout:g}s"
            ) from exc

    def _report_success(self, connector: Connector, candidates: list[Incident]) -> int:
        self._record_health(connector, item_count=len(candidates))
        if not candidates:
            return 0
        fresh = self._store.merge(candidates)
        self._log.add(
            f"{connector.name} uplink established: {len(fresh)} new of"
            f" {len(candidates)} signals.",
            "SUCCESS",
        )
        return len(fresh)

    def _report_failure(self, connector: Connector, error: BaseException) -> None:
        message = str(error) or error.__class__.__name__
        self._record_health(connector, error=message)
        self._log.add(f"{connector.name} error: {message}", "ALERT")

    def _record_health(
        self, connector: Connector, *, item_count: int = 0, error: str | None = None
    ) -> None:
        try:
            if error is None:
                record_connector_success(
                    self._db,
                    connector_id=connector.connector_id,
                    name=connector.name,
                    item_count=item_count,
                )
            else:
                record_connector_error(
                    self._db,
                    connector_id=connector.connector_id,
                    name=connector.name,
                    error=error,
                )
        except sqlite3.Error:
            logger.exception("Could not record health for %s", connector.connector_id)

    def _record_run(self, started_at: str, trigger: str, tally: _Tally) -> None:
        run = SyncRun(
            started_at=started_at,
            finished_at=_utc_now_iso(),
            trigger=trigger,
            connector_count=len(self._connectors),
            failed_count=tally.failed,
            candidate_count=tally.candidates,
            new_count=tally.new,
            aborted=tally.aborted,
        )
        try:
            record_sync_run(self._db, run)
        except sqlite3.Error:
            logger.exception("Could not record sync run")


async def run_scheduler(orchestrator: SyncOrchestrator, *, interval_seconds: int) -> None:
    while True:
        await orchestrator.sync(trigger="interval")
        await asyncio.sleep(interval_seconds)
