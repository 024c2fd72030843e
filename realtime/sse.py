from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

from fastapi import APIRouter, Query, Request
from starlette.responses import StreamingResponse


router = APIRouter()

HEARTBEAT_SECONDS = 15


def _frame(event_type: str, data: dict) -> str:
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event_type}\ndata: {payload}\n\n"


@router.get("/sse")
async def sse(
    request: Request,
    types: str | None = Query(default=None),
    backlog: bool = Query(default=True),
) -> StreamingResponse:
    """Live pipeline events: `log`, `incident.new`, `incident.resolved`.

    ``types`` narrows the stream to a comma-separated subset. With ``backlog``
    the current log is replayed oldest-first before live events.
    """
    state = request.app.state.app_state
    wanted = {t.strip() for t in types.split(",") if t.strip()} if types else None
    subscription = await state.bus.subscribe(wanted)
    replay = []
    if backlog and (wanted is None or "log" in wanted):
        replay = list(reversed(state.log.entries()))

    async def event_stream():
        try:
            yield _frame("heartbeat", {})
            for entry in replay:
                yield _frame("log", entry.model_dump())
            while True:
                if await request.is_disconnected():
                    return
                try:
                    event = await asyncio.wait_for(
                        subscription.get(), timeout=HEARTBEAT_SECONDS
                    )
                except asyncio.TimeoutError:
                    ts = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
                    yield _frame("heartbeat", {"ts": ts})
                    continue
                yield _frame(event.type, event.data)
        finally:
            await state.bus.unsubscribe(subscription)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
