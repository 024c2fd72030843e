from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

import httpx

from app.settings import Settings
from classify.adapter import ClassificationAdapter
from classify.cache import ClassificationCache
from classify.oracle import OracleClient
from ingest.connectors import Connector, ConnectorContext
from ingest.scheduler import SyncOrchestrator
from realtime.bus import EventBus
from realtime.log import EventLog
from store.blobs import BlobStore
from store.db import Database, close_database, open_database
from store.incidents import IncidentStore
from store.models import User

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything one running session owns, created once and passed around."""

    settings: Settings
    db: Database
    client: httpx.AsyncClient
    bus: EventBus
    log: EventLog
    blobs: BlobStore
    cache: ClassificationCache
    oracle: OracleClient
    adapter: ClassificationAdapter
    ctx: ConnectorContext
    store: IncidentStore
    orchestrator: SyncOrchestrator

    async def aclose(self) -> None:
        await self.client.aclose()
        close_database(self.db)

    def logout(self) -> None:
        """Tear the session down: memory, persisted blobs and cache."""
        self.store.reset()
        self.cache.clear()
        self.log.clear()
        logger.info("Session state purged")


def operator_user(settings: Settings) -> User:
    return User(
        id=f"op-{uuid.uuid4().hex[:12]}",
        name=settings.operator_name,
        email=settings.operator_email,
    )


def build_state(
    settings: Settings,
    *,
    client: httpx.AsyncClient | None = None,
    connectors: list[Connector] | None = None,
) -> AppState:
    db = open_database(settings.db_path)
    client = client or httpx.AsyncClient(follow_redirects=True)
    bus = EventBus()
    log = EventLog(bus)
    blobs = BlobStore(db)
    cache = ClassificationCache(blobs)
    oracle = OracleClient(
        client,
        api_key=settings.oracle_api_key,
        model=settings.oracle_model,
        base_url=settings.oracle_base_url,
        timeout=settings.oracle_timeout_seconds,
    )
    adapter = ClassificationAdapter(
        oracle, base_delay=settings.oracle_retry_base_seconds
    )
    store = IncidentStore(blobs, log, bus=bus, default_user=operator_user(settings))
    store.load()

    ctx = ConnectorContext(
        client=client, settings=settings, oracle=oracle, adapter=adapter, cache=cache
    )
    orchestrator = SyncOrchestrator(
        ctx,
        store=store,
        log=log,
        db=db,
        blobs=blobs,
        connectors=connectors,
        timeout_seconds=settings.connector_timeout_seconds,
    )
    return AppState(
        settings=settings,
        db=db,
        client=client,
        bus=bus,
        log=log,
        blobs=blobs,
        cache=cache,
        oracle=oracle,
        adapter=adapter,
        ctx=ctx,
        store=store,
        orchestrator=orchestrator,
    )
