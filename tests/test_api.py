import json

import pytest
from fastapi.testclient import TestClient

from app.main import app
from ingest.connectors import Connector
from ingest.scheduler import SyncOrchestrator
from store.models import Incident, IncidentSource


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("ORACLE_API_KEY", "")
    monkeypatch.setenv("OPERATOR_NAME", "Ranger Ortiz")
    with TestClient(app) as test_client:
        yield test_client


def _inject(client: TestClient, **overrides) -> dict:
    body = {"text": "Bridge collapse on Route 9", "status": "RED", "riskScore": 80}
    body.update(overrides)
    response = client.post("/api/incidents", json=body)
    assert response.status_code == 201
    return response.json()


def _install_connectors(client: TestClient, connectors: list[Connector]) -> None:
    state = client.app.state.app_state
    state.orchestrator = SyncOrchestrator(
        state.ctx,
        store=state.store,
        log=state.log,
        db=state.db,
        blobs=state.blobs,
        connectors=connectors,
    )


def test_inject_and_list_incidents(client: TestClient) -> None:
    created = _inject(client)
    assert created["id"].startswith("manual-")
    assert created["riskScore"] == 80
    assert created["source"] == "Manual"

    incidents = client.get("/api/incidents").json()["incidents"]
    assert [i["id"] for i in incidents] == [created["id"]]

    notifications = client.get("/api/notifications").json()["notifications"]
    assert [n["incidentId"] for n in notifications] == [created["id"]]

    logs = client.get("/api/logs").json()["logs"]
    assert logs[0]["level"] == "ALERT"
    assert logs[0]["message"] == f"Signal {created['id']} secured (RED)."


def test_resolve_credits_operator(client: TestClient) -> None:
    created = _inject(client)

    response = client.post(f"/api/incidents/{created['id']}/resolve")
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["name"] == "Ranger Ortiz"
    assert user["solvedIncidents"] == [created["id"]]
    assert user["totalRiskMitigated"] == 80
    assert client.get("/api/incidents").json()["incidents"] == []

    again = client.post(f"/api/incidents/{created['id']}/resolve")
    assert again.status_code == 404
    assert again.json()["detail"]["code"] == "incident_not_found"


def test_analyze_without_oracle_uses_fallback(client: TestClient) -> None:
    response = client.post("/api/incidents/analyze", json={"text": "Water rising in basement"})
    assert response.status_code == 200
    body = response.json()
    assert body["analysis"]["risk_score"] == 50
    assert body["incident"]["status"] == "YELLOW"
    assert body["incident"]["author"] == "Operator"


def test_analyze_rejects_bad_image(client: TestClient) -> None:
    response = client.post(
        "/api/incidents/analyze",
        json={"text": "Flooded road", "imageBase64": "not base64!"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_image"


def test_sources_list_default_connectors(client: TestClient) -> None:
    body = client.get("/api/sources").json()
    assert [s["connector_id"] for s in body["sources"]] == [
        "NASA_FIRMS",
        "NASA_EONET",
        "USGS",
        "ReliefWeb",
        "Mastodon",
        "AI_Monitor",
    ]
    assert body["syncing"] is False


def test_sync_passes_location_and_merges(client: TestClient) -> None:
    seen = []

    async def fetch(ctx, location=None):
        seen.append(location)
        return [
            Incident(
                id="usgs-1-1",
                author="USGS",
                timestamp=1,
                text="Quake M5.2 - Near Valencia",
                status="YELLOW",
                risk_score=60,
                source=IncidentSource.USGS,
            )
        ]

    _install_connectors(client, [Connector("USGS", "USGS", IncidentSource.USGS, fetch)])

    response = client.post("/api/sync", json={"lat": 39.47, "lng": -0.38, "city": "Valencia"})

    assert response.json() == {"synced": True, "incident_count": 1}
    assert seen[0].city == "Valencia"
    sources = client.get("/api/sources").json()["sources"]
    assert sources[0]["success_count"] == 1
    assert sources[0]["last_item_count"] == 1


def test_sync_without_body(client: TestClient) -> None:
    seen = []

    async def fetch(ctx, location=None):
        seen.append(location)
        return []

    _install_connectors(client, [Connector("USGS", "USGS", IncidentSource.USGS, fetch)])

    assert client.post("/api/sync").json()["synced"] is True
    assert seen == [None]


def test_export_then_import_restores_session(client: TestClient) -> None:
    created = _inject(client)
    export = client.get("/api/export")
    assert "triage_data_" in export.headers["content-disposition"]
    packet = export.json()

    assert client.post("/api/logout").json() == {"ok": True}
    assert client.get("/api/incidents").json()["incidents"] == []

    response = client.post("/api/import", content=json.dumps(packet))
    assert response.status_code == 200
    assert response.json()["incident_count"] == 1
    assert client.get("/api/incidents").json()["incidents"][0]["id"] == created["id"]
    assert client.get("/api/user").json()["user"]["name"] == "Ranger Ortiz"


def test_import_rejects_invalid_packet(client: TestClient) -> None:
    _inject(client)

    response = client.post("/api/import", content=json.dumps({"version": "1.0.0"}))

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_packet"
    assert len(client.get("/api/incidents").json()["incidents"]) == 1


def test_logout_then_sign_in(client: TestClient) -> None:
    created = _inject(client)
    client.post("/api/logout")

    assert client.get("/api/user").json() == {"user": None}
    assert client.get("/api/logs").json() == {"logs": []}

    response = client.put("/api/user", json={"name": "Unit 4", "email": "u4@example.org"})
    assert response.json()["user"]["name"] == "Unit 4"
    logs = client.get("/api/logs").json()["logs"]
    assert logs[0]["message"] == "Unit Unit 4 initialized."

    missing = client.post(f"/api/incidents/{created['id']}/resolve")
    assert missing.status_code == 404


def test_resolve_without_operator_is_rejected(client: TestClient) -> None:
    created = _inject(client)
    client.app.state.app_state.store.reset()
    client.app.state.app_state.store.insert(
        Incident.model_validate({**created, "id": "manual-2-2"})
    )

    response = client.post("/api/incidents/manual-2-2/resolve")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "no_operator"


def test_sync_runs_are_listed(client: TestClient) -> None:
    async def fetch(ctx, location=None):
        return []

    _install_connectors(client, [Connector("USGS", "USGS", IncidentSource.USGS, fetch)])
    client.post("/api/sync")
    client.post("/api/sync")

    runs = client.get("/api/syncs", params={"limit": 1}).json()["runs"]
    assert len(runs) == 1
    assert runs[0]["trigger"] == "manual"
    assert runs[0]["connector_count"] == 1


def test_oracle_check_without_key_reports_error(client: TestClient) -> None:
    response = client.get("/api/oracle")

    assert response.status_code == 200
    assert response.json() == {"status": "error", "latency_ms": 0}
