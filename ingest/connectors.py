from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

import httpx

from app.settings import Settings
from classify.adapter import ClassificationAdapter
from classify.cache import ClassificationCache
from classify.models import FALLBACK_ANALYSIS, AnalysisResponse
from classify.oracle import OracleClient, OracleError, text_part
from ingest.fetch import fetch
from ingest.parsers.geojson import parse_geojson
from ingest.parsers.json import parse_json_records
from normalize.normalize import (
    Signal,
    environmental_event_signal,
    news_signals,
    relief_bulletin_signal,
    seismic_event_signal,
    social_post_signal,
    thermal_hotspot_signal,
)
from store.models import Incident, IncidentSource, LocationContext, make_incident_id

logger = logging.getLogger(__name__)

EONET_BASE = "https://eonet.gsfc.nasa.gov/api/v3"
USGS_SIGNIFICANT_URL = (
    "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/4.5_day.geojson"
)
RELIEFWEB_REPORTS_URL = "https://api.reliefweb.int/v2/reports"


class ConnectorError(Exception):
    """Raised when a connector cannot retrieve its feed at all."""


@dataclass(frozen=True)
class ConnectorContext:
    client: httpx.AsyncClient
    settings: Settings
    oracle: OracleClient
    adapter: ClassificationAdapter
    cache: ClassificationCache


FetchFn = Callable[[ConnectorContext, LocationContext | None], Awaitable[list[Incident]]]
ParseFn = Callable[[bytes], list[dict]]
SignalFn = Callable[..., Signal]


@dataclass(frozen=True)
class Connector:
    connector_id: str
    name: str
    source: IncidentSource
    fetch: FetchFn


def _now_ms() -> int:
    return int(time.time() * 1000)


async def classify_text(ctx: ConnectorContext, text: str) -> AnalysisResponse:
    """Cache first; only relevant oracle verdicts are remembered."""
    cached = ctx.cache.lookup(text)
    if cached is not None:
        return cached
    analysis = await ctx.adapter.classify(text)
    if analysis.is_relevant and analysis is not FALLBACK_ANALYSIS:
        ctx.cache.store(text, analysis)
    return analysis


async def process_signal(
    ctx: ConnectorContext, signal: Signal, source: IncidentSource
) -> Incident | None:
    analysis = await classify_text(ctx, signal.text)
    if not analysis.is_relevant:
        return None

    return Incident(
        id=make_incident_id(
            source,
            signal.timestamp,
            signal.text,
            content_hash=ctx.settings.content_hash_ids,
        ),
        author=signal.author,
        timestamp=signal.timestamp,
        text=signal.text,
        image_url=signal.image_url,
        status=analysis.urgency,
        risk_score=analysis.risk_score,
        reasoning=analysis.reasoning,
        recommended_action=analysis.recommended_action,
        location=analysis.location_detected,
        coordinates=signal.coordinates,
        source=source,
        source_url=signal.source_url,
    )


async def _process_records(
    ctx: ConnectorContext,
    records: Iterable[dict],
    *,
    to_signal: SignalFn,
    source: IncidentSource,
) -> list[Incident]:
    fetched_at_ms = _now_ms()
    signals: list[Signal] = []
    for record in records:
        try:
            signals.append(to_signal(record=record, fetched_at_ms=fetched_at_ms))
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed %s item: %s", source.value, exc)
    return await _process_signals(ctx, signals, source=source)


async def _process_signals(
    ctx: ConnectorContext, signals: Iterable[Signal], *, source: IncidentSource
) -> list[Incident]:
    incidents: list[Incident] = []
    for signal in signals:
        try:
            incident = await process_signal(ctx, signal, source)
        except ValueError as exc:
            logger.warning("Skipping unbuildable %s item: %s", source.value, exc)
            continue
        if incident is not None:
            incidents.append(incident)
    return incidents


async def _fetch_records(
    ctx: ConnectorContext,
    *,
    label: str,
    url: str,
    parse: ParseFn,
    params: dict | None = None,
) -> list[dict]:
    try:
        status_code, content, _headers, elapsed_ms = await fetch(
            ctx.client,
            url=url,
            user_agent=ctx.settings.user_agent,
            params=params,
        )
    except httpx.TimeoutException as exc:
        raise ConnectorError(f"{label} sync failed: timeout") from exc
    except httpx.RequestError as exc:
        raise ConnectorError(
            f"{label} sync failed: request_error:{exc.__class__.__name__}"
        ) from exc

    logger.debug("%s responded http %d in %dms", label, status_code, elapsed_ms)
    if content is None:
        raise ConnectorError(f"{label} sync failed: http_{status_code}")

    try:
        return parse(content)
    except (ValueError, json.JSONDecodeError) as exc:
        raise ConnectorError(f"{label} sync failed: parse_error") from exc


async def fetch_thermal_hotspots(
    ctx: ConnectorContext, location: LocationContext | None = None
) -> list[Incident]:
    records = await _fetch_records(
        ctx,
        label="NASA FIRMS",
        url=f"{EONET_BASE}/categories/wildfires",
        params={"status": "open", "limit": 15},
        parse=lambda data: parse_json_records(data, limit=15),
    )
    return await _process_records(
        ctx, records, to_signal=thermal_hotspot_signal, source=IncidentSource.NASA
    )


async def fetch_environmental_events(
    ctx: ConnectorContext, location: LocationContext | None = None
) -> list[Incident]:
    records = await _fetch_records(
        ctx,
        label="NASA EONET",
        url=f"{EONET_BASE}/events",
        params={"status": "open", "limit": 30},
        parse=lambda data: parse_json_records(data, limit=30),
    )
    return await _process_records(
        ctx, records, to_signal=environmental_event_signal, source=IncidentSource.NASA
    )


async def fetch_seismic_events(
    ctx: ConnectorContext, location: LocationContext | None = None
) -> list[Incident]:
    features = await _fetch_records(
        ctx,
        label="USGS seismic",
        url=USGS_SIGNIFICANT_URL,
        parse=lambda data: parse_geojson(data, limit=10),
    )
    return await _process_records(
        ctx, features, to_signal=seismic_event_signal, source=IncidentSource.USGS
    )


async def fetch_relief_bulletins(
    ctx: ConnectorContext, location: LocationContext | None = None
) -> list[Incident]:
    records = await _fetch_records(
        ctx,
        label="ReliefWeb",
        url=RELIEFWEB_REPORTS_URL,
        params={
            "appname": ctx.settings.reliefweb_appname,
            "limit": 3,
            "sort[]": "date:desc",
            "fields[include][]": ["title", "body", "date"],
        },
        parse=lambda data: parse_json_records(data, limit=3),
    )
    return await _process_records(
        ctx, records, to_signal=relief_bulletin_signal, source=IncidentSource.RELIEFWEB
    )


async def fetch_social_posts(
    ctx: ConnectorContext, location: LocationContext | None = None
) -> list[Incident]:
    instance = ctx.settings.mastodon_instance.strip().rstrip("/")
    tag = ctx.settings.mastodon_tag.strip().lstrip("#")
    records = await _fetch_records(
        ctx,
        label="Mastodon",
        url=f"https://{instance}/api/v1/timelines/tag/{tag}",
        params={"limit": 5},
        parse=lambda data: parse_json_records(data, limit=5),
    )
    return await _process_records(
        ctx, records, to_signal=social_post_signal, source=IncidentSource.MASTODON
    )


async def fetch_news_scrape(
    ctx: ConnectorContext, location: LocationContext | None = None
) -> list[Incident]:
    scope = f"for {location.city}" if location is not None and location.city else "global"
    try:
        response = await ctx.adapter.call_with_retry(
            [text_part(f"Current disaster news {scope}.")], web_search=True
        )
    except OracleError as exc:
        raise ConnectorError(f"AI news scrape failed: {exc}") from exc

    signals = news_signals(
        text=response.text,
        grounding_urls=response.grounding_urls,
        fetched_at_ms=_now_ms(),
    )
    return await _process_signals(ctx, signals, source=IncidentSource.WEB_SCRAPER)


def default_connectors() -> list[Connector]:
    """All connectors in declaration order; merges follow this order."""
    return [
        Connector("NASA_FIRMS", "NASA FIRMS", IncidentSource.NASA, fetch_thermal_hotspots),
        Connector("NASA_EONET", "NASA EONET", IncidentSource.NASA, fetch_environmental_events),
        Connector("USGS", "USGS", IncidentSource.USGS, fetch_seismic_events),
        Connector("ReliefWeb", "ReliefWeb", IncidentSource.RELIEFWEB, fetch_relief_bulletins),
        Connector("Mastodon", "Mastodon", IncidentSource.MASTODON, fetch_social_posts),
        Connector("AI_Monitor", "AI Monitor", IncidentSource.WEB_SCRAPER, fetch_news_scrape),
    ]
