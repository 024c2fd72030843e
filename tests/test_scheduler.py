import asyncio
import json

import httpx
import pytest

from app.settings import Settings
from classify.adapter import ClassificationAdapter
from classify.cache import ClassificationCache
from classify.oracle import OracleClient
from health.health import list_connector_health, list_sync_runs
from ingest.connectors import Connector, ConnectorContext, ConnectorError, process_signal
from ingest.scheduler import SyncOrchestrator
from normalize.normalize import Signal
from realtime.log import EventLog
from store.blobs import LAST_SYNC_KEY
from store.incidents import IncidentStore
from store.models import Incident, IncidentSource, TriageLevel, User


def _incident(incident_id: str, source: IncidentSource = IncidentSource.NASA) -> Incident:
    return Incident(
        id=incident_id,
        author=source.value,
        timestamp=1_725_192_000_000,
        text=f"signal {incident_id}",
        status="YELLOW",
        risk_score=50,
        source=source,
    )


def _returns(*incidents: Incident, delay: float = 0.0):
    async def fetch(ctx, location=None) -> list[Incident]:
        if delay:
            await asyncio.sleep(delay)
        return list(incidents)

    return fetch


def _raises(exc: Exception):
    async def fetch(ctx, location=None) -> list[Incident]:
        raise exc

    return fetch


def _orchestrator(db, blobs, connectors, *, ctx=None, timeout_seconds=5.0):
    log = EventLog()
    store = IncidentStore(
        blobs, log, default_user=User(id="op", name="Op", email="op@example.org")
    )
    store.load()
    orchestrator = SyncOrchestrator(
        ctx,
        store=store,
        log=log,
        db=db,
        blobs=blobs,
        connectors=connectors,
        timeout_seconds=timeout_seconds,
    )
    return orchestrator, store, log


def _messages(log: EventLog, level: str) -> list[str]:
    return [e.message for e in reversed(log.entries()) if e.level == level]


@pytest.mark.asyncio
async def test_one_failing_connector_is_isolated(db, blobs) -> None:
    connectors = [
        Connector("NASA_FIRMS", "NASA FIRMS", IncidentSource.NASA, _returns(_incident("f1"))),
        Connector("NASA_EONET", "NASA EONET", IncidentSource.NASA, _returns(_incident("e1"))),
        Connector("USGS", "USGS", IncidentSource.USGS, _returns(_incident("u1"))),
        Connector("ReliefWeb", "ReliefWeb", IncidentSource.RELIEFWEB, _returns()),
        Connector(
            "Mastodon",
            "Mastodon",
            IncidentSource.MASTODON,
            _raises(ConnectorError("Mastodon sync failed: http_503")),
        ),
        Connector("AI_Monitor", "AI Monitor", IncidentSource.WEB_SCRAPER, _returns(_incident("w1"))),
    ]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    assert await orchestrator.sync() is True

    assert sorted(r.id for r in store.all()) == ["e1", "f1", "u1", "w1"]
    assert _messages(log, "ALERT") == ["Mastodon error: Mastodon sync failed: http_503"]
    assert len(_messages(log, "SUCCESS")) == 4
    assert orchestrator.in_progress is False
    assert isinstance(blobs.load(LAST_SYNC_KEY), int)

    health = {row["connector_id"]: row for row in list_connector_health(db)}
    assert health["Mastodon"]["consecutive_failures"] == 1
    assert health["Mastodon"]["last_error"] == "Mastodon sync failed: http_503"
    assert health["ReliefWeb"]["last_item_count"] == 0
    assert health["USGS"]["success_count"] == 1


@pytest.mark.asyncio
async def test_merges_follow_declaration_order(db, blobs) -> None:
    connectors = [
        Connector("slow", "Slow", IncidentSource.NASA, _returns(_incident("s1"), delay=0.05)),
        Connector("fast", "Fast", IncidentSource.USGS, _returns(_incident("q1"))),
    ]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    await orchestrator.sync()

    assert _messages(log, "SUCCESS") == [
        "Slow uplink established: 1 new of 1 signals.",
        "Fast uplink established: 1 new of 1 signals.",
    ]
    assert [r.id for r in store.all()] == ["q1", "s1"]


@pytest.mark.asyncio
async def test_repeat_sync_counts_only_new_signals(db, blobs) -> None:
    connectors = [
        Connector("USGS", "USGS", IncidentSource.USGS, _returns(_incident("u1"), _incident("u2")))
    ]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    await orchestrator.sync()
    await orchestrator.sync()

    assert len(store) == 2
    assert _messages(log, "SUCCESS")[-1] == "USGS uplink established: 0 new of 2 signals."


@pytest.mark.asyncio
async def test_fire_near_ridge_becomes_red_incident(db, blobs) -> None:
    verdict = {
        "is_relevant": True,
        "urgency": "RED",
        "risk_score": 90,
        "reasoning": "Fire front approaching structures.",
        "recommended_action": "Evacuate ridge residents.",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": json.dumps(verdict)}]}}]},
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    oracle = OracleClient(
        client, api_key="test-key", model="test-model", base_url="https://oracle.test"
    )
    ctx = ConnectorContext(
        client=client,
        settings=Settings(_env_file=None),
        oracle=oracle,
        adapter=ClassificationAdapter(oracle),
        cache=ClassificationCache(blobs),
    )

    async def hotspots(ctx, location=None) -> list[Incident]:
        signal = Signal(text="fire near ridge", author="NASA FIRMS", timestamp=1_725_192_000_000)
        incident = await process_signal(ctx, signal, IncidentSource.NASA)
        return [incident] if incident is not None else []

    connectors = [Connector("NASA_FIRMS", "NASA FIRMS", IncidentSource.NASA, hotspots)]
    orchestrator, store, log = _orchestrator(db, blobs, connectors, ctx=ctx)

    await orchestrator.sync()

    records = store.all()
    assert len(records) == 1
    assert records[0].status is TriageLevel.RED
    assert records[0].risk_score == 90
    successes = _messages(log, "SUCCESS")
    assert len(successes) == 1
    assert "NASA FIRMS" in successes[0]


@pytest.mark.asyncio
async def test_concurrent_sync_is_dropped(db, blobs) -> None:
    connectors = [
        Connector("USGS", "USGS", IncidentSource.USGS, _returns(_incident("u1"), delay=0.01))
    ]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    first, second = await asyncio.gather(orchestrator.sync(), orchestrator.sync())

    assert (first, second) == (True, False)
    assert len(_messages(log, "INFO")) == 1
    assert len(_messages(log, "SUCCESS")) == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_hanging_connector_times_out(db, blobs) -> None:
    connectors = [
        Connector("stuck", "Stuck", IncidentSource.GDACS, _returns(_incident("x"), delay=10)),
        Connector("USGS", "USGS", IncidentSource.USGS, _returns(_incident("u1"))),
    ]
    orchestrator, store, log = _orchestrator(db, blobs, connectors, timeout_seconds=0.05)

    await orchestrator.sync()

    assert [r.id for r in store.all()] == ["u1"]
    assert _messages(log, "ALERT") == ["Stuck error: Stuck timed out after 0.05s"]


@pytest.mark.asyncio
async def test_unexpected_failure_is_contained(db, blobs, monkeypatch) -> None:
    connectors = [Connector("USGS", "USGS", IncidentSource.USGS, _returns(_incident("u1")))]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    def broken_merge(candidates):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "merge", broken_merge)

    assert await orchestrator.sync() is True
    assert _messages(log, "ALERT") == ["Critical sync failure."]
    assert orchestrator.in_progress is False
    assert list_sync_runs(db)[0]["aborted"] is True


@pytest.mark.asyncio
async def test_error_without_message_uses_exception_name(db, blobs) -> None:
    connectors = [Connector("USGS", "USGS", IncidentSource.USGS, _raises(RuntimeError()))]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    await orchestrator.sync()

    assert _messages(log, "ALERT") == ["USGS error: RuntimeError"]


@pytest.mark.asyncio
async def test_each_cycle_is_recorded(db, blobs) -> None:
    connectors = [
        Connector("USGS", "USGS", IncidentSource.USGS, _returns(_incident("u1"), _incident("u2"))),
        Connector("GDACS", "GDACS", IncidentSource.GDACS, _raises(ConnectorError("GDACS sync failed: timeout"))),
    ]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    await orchestrator.sync()
    await orchestrator.sync(trigger="interval")

    latest, first = list_sync_runs(db)
    assert first["trigger"] == "manual"
    assert (first["connector_count"], first["failed_count"]) == (2, 1)
    assert (first["candidate_count"], first["new_count"]) == (2, 2)
    assert latest["trigger"] == "interval"
    assert latest["new_count"] == 0
    assert latest["aborted"] is False


@pytest.mark.asyncio
async def test_dropped_sync_is_not_recorded(db, blobs) -> None:
    connectors = [Connector("USGS", "USGS", IncidentSource.USGS, _returns(delay=0.01))]
    orchestrator, store, log = _orchestrator(db, blobs, connectors)

    await asyncio.gather(orchestrator.sync(), orchestrator.sync())

    assert len(list_sync_runs(db)) == 1
