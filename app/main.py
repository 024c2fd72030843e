from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from contextlib import asynccontextmanager, suppress

from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.errors import bad_request, not_found
from app.log_config import configure_logging
from app.settings import Settings
from app.state import AppState, build_state
from health.health import check_oracle, list_connector_health, list_sync_runs
from ingest.connectors import classify_text
from ingest.scheduler import run_scheduler
from realtime.sse import router as sse_router
from store.models import (
    Coordinates,
    Incident,
    IncidentSource,
    LocationContext,
    TriageLevel,
    User,
    WireModel,
    make_incident_id,
)
from store.packet import generate_packet, import_packet

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    configure_logging(settings.log_level)
    state = build_state(settings)
    app.state.app_state = state

    scheduler_task = None
    if settings.sync_interval_seconds > 0:
        scheduler_task = asyncio.create_task(
            run_scheduler(
                state.orchestrator, interval_seconds=settings.sync_interval_seconds
            )
        )
        logger.info("Periodic sync every %ds", settings.sync_interval_seconds)
    try:
        yield
    finally:
        if scheduler_task is not None:
            scheduler_task.cancel()
            with suppress(asyncio.CancelledError):
                await scheduler_task
        await state.aclose()


app = FastAPI(lifespan=lifespan)
app.include_router(sse_router)


def _state(request: Request) -> AppState:
    return request.app.state.app_state


class InjectRequest(WireModel):
    """A pre-classified record, as produced by manual entry or voice dispatch."""

    text: str
    author: str = "Manual"
    status: TriageLevel = TriageLevel.YELLOW
    risk_score: int = 50
    reasoning: str = ""
    recommended_action: str = ""
    location: str | None = None
    coordinates: Coordinates | None = None
    image_url: str | None = None
    source: IncidentSource = IncidentSource.MANUAL
    timestamp: int | None = None


class AnalyzeRequest(WireModel):
    text: str
    author: str = "Operator"
    image_base64: str | None = None
    coordinates: Coordinates | None = None


class UserRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=1)


@app.get("/api/incidents")
async def api_incidents(request: Request) -> JSONResponse:
    store = _state(request).store
    return JSONResponse({"incidents": [i.to_wire() for i in store.all()]})


@app.post("/api/incidents", status_code=201)
async def api_inject_incident(request: Request, body: InjectRequest) -> dict:
    state = _state(request)
    timestamp = body.timestamp if body.timestamp is not None else _now_ms()
    incident = Incident(
        id=make_incident_id(
            body.source,
            timestamp,
            body.text,
            content_hash=state.settings.content_hash_ids,
        ),
        author=body.author,
        timestamp=timestamp,
        text=body.text,
        image_url=body.image_url,
        status=body.status,
        risk_score=body.risk_score,
        reasoning=body.reasoning,
        recommended_action=body.recommended_action,
        location=body.location,
        coordinates=body.coordinates,
        source=body.source,
    )
    state.store.insert(incident)
    return incident.to_wire()


@app.post("/api/incidents/analyze")
async def api_analyze_incident(request: Request, body: AnalyzeRequest) -> dict:
    state = _state(request)
    image = None
    if body.image_base64:
        try:
            image = base64.b64decode(body.image_base64, validate=True)
        except binascii.Error:
            bad_request("invalid_image", "image_base64 is not valid base64")

    if image is None:
        analysis = await classify_text(state.ctx, body.text)
    else:
        analysis = await state.adapter.classify(body.text, image)
    if not analysis.is_relevant:
        return {"incident": None, "analysis": analysis.model_dump(mode="json")}

    timestamp = _now_ms()
    incident = Incident(
        id=make_incident_id(
            IncidentSource.MANUAL,
            timestamp,
            body.text,
            content_hash=state.settings.content_hash_ids,
        ),
        author=body.author,
        timestamp=timestamp,
        text=body.text,
        status=analysis.urgency,
        risk_score=analysis.risk_score,
        reasoning=analysis.reasoning,
        recommended_action=analysis.recommended_action,
        location=analysis.location_detected,
        coordinates=body.coordinates,
        source=IncidentSource.MANUAL,
    )
    state.store.insert(incident)
    return {
        "incident": incident.to_wire(),
        "analysis": analysis.model_dump(mode="json"),
    }


@app.post("/api/incidents/{incident_id}/resolve")
async def api_resolve_incident(request: Request, incident_id: str) -> dict:
    store = _state(request).store
    if store.user is None:
        bad_request("no_operator", "no operator signed in")
    resolved = store.resolve(incident_id)
    if resolved is None:
        not_found("incident_not_found", f"no incident {incident_id}")
    return {"resolved": resolved.to_wire(), "user": store.user.to_wire()}


@app.post("/api/sync")
async def api_sync(
    request: Request, location: LocationContext | None = Body(default=None)
) -> dict:
    state = _state(request)
    ran = await state.orchestrator.sync(location)
    return {"synced": ran, "incident_count": len(state.store)}


@app.get("/api/logs")
async def api_logs(request: Request) -> dict:
    return {"logs": [e.model_dump() for e in _state(request).log.entries()]}


@app.get("/api/user")
async def api_user(request: Request) -> dict:
    user = _state(request).store.user
    return {"user": user.to_wire() if user is not None else None}


@app.put("/api/user")
async def api_sign_in(request: Request, body: UserRequest) -> dict:
    state = _state(request)
    current = state.store.user
    if current is not None and current.email == body.email:
        user = current.model_copy(update={"name": body.name})
    else:
        user = User(id=f"op-{_now_ms()}", name=body.name, email=body.email)
    state.store.set_user(user)
    state.log.add(f"Unit {user.name} initialized.", "SUCCESS")
    return {"user": user.to_wire()}


@app.get("/api/notifications")
async def api_notifications(request: Request) -> dict:
    store = _state(request).store
    return {"notifications": [n.to_wire() for n in store.notifications()]}


@app.post("/api/notifications/{notification_id}/read")
async def api_mark_notification_read(request: Request, notification_id: str) -> dict:
    if not _state(request).store.mark_notification_read(notification_id):
        not_found("notification_not_found", f"no notification {notification_id}")
    return {"ok": True}


@app.delete("/api/notifications")
async def api_clear_notifications(request: Request) -> dict:
    _state(request).store.clear_notifications()
    return {"ok": True}


@app.get("/api/sources")
async def api_sources(request: Request) -> dict:
    state = _state(request)
    health = {row["connector_id"]: row for row in list_connector_health(state.db)}
    return {
        "sources": [
            {
                "connector_id": c.connector_id,
                "name": c.name,
                "source": c.source.value,
                **(health.get(c.connector_id) or {}),
            }
            for c in state.orchestrator.connectors
        ],
        "syncing": state.orchestrator.in_progress,
    }


@app.get("/api/oracle")
async def api_oracle(request: Request) -> dict:
    return await check_oracle(_state(request).adapter)


@app.get("/api/syncs")
async def api_sync_runs(
    request: Request, limit: int = Query(default=20, ge=1, le=200)
) -> dict:
    return {"runs": list_sync_runs(_state(request).db, limit=limit)}


@app.get("/api/export")
async def api_export(request: Request) -> JSONResponse:
    packet = generate_packet(_state(request).blobs)
    filename = f"triage_data_{time.strftime('%Y-%m-%d', time.gmtime())}.json"
    return JSONResponse(
        packet, headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.post("/api/import")
async def api_import(request: Request) -> dict:
    state = _state(request)
    raw = await request.body()
    if not import_packet(state.blobs, raw):
        bad_request("invalid_packet", "packet rejected; persisted state unchanged")
    state.store.load()
    state.log.add("Data packet imported.", "SUCCESS")
    return {"ok": True, "incident_count": len(state.store)}


@app.post("/api/logout")
async def api_logout(request: Request) -> dict:
    _state(request).logout()
    return {"ok": True}
