from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import UTC, datetime

from store.models import Coordinates


@dataclass(frozen=True)
class Signal:
    """One raw feed item reduced to what the classifier and store need."""

    text: str
    author: str
    timestamp: int
    source_url: str | None = None
    image_url: str | None = None
    coordinates: Coordinates | None = None


def _epoch_ms_from_iso(value: object, default_ms: int) -> int:
    if not value:
        return default_ms
    ts = str(value).strip()
    if ts.endswith("Z"):
        ts = ts.removesuffix("Z") + "+00:00"
    try:
        dt = datetime.fromisoformat(ts)
    except ValueError:
        return default_ms
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def _bbox_from_geojson(geom: dict) -> tuple[float, float, float, float] | None:
    geom_type = geom.get("type")
    coords = geom.get("coordinates")
    if geom_type is None or coords is None:
        return None

    points: list[tuple[float, float]] = []
    if geom_type == "Point":
        positions = [coords]
    elif geom_type == "Polygon":
        positions = [p for ring in coords for p in ring]
    elif geom_type == "MultiPolygon":
        positions = [p for polygon in coords for ring in polygon for p in ring]
    else:
        return None

    # Positions without both lon and lat are skipped.
    for position in positions:
        if isinstance(position, (list, tuple)) and len(position) >= 2:
            points.append((float(position[0]), float(position[1])))

    if not points:
        return None
    min_lon = min(p[0] for p in points)
    min_lat = min(p[1] for p in points)
    max_lon = max(p[0] for p in points)
    max_lat = max(p[1] for p in points)
    return (min_lon, min_lat, max_lon, max_lat)


def _coordinates_from_geojson(geom: object) -> Coordinates | None:
    if not isinstance(geom, dict):
        return None
    bbox = _bbox_from_geojson(geom)
    if bbox is None:
        return None
    min_lon, min_lat, max_lon, max_lat = bbox
    return Coordinates(lat=(min_lat + max_lat) / 2.0, lng=(min_lon + max_lon) / 2.0)


def _eonet_common(record: dict, fetched_at_ms: int) -> tuple[int, str | None, Coordinates | None]:
    geometries = record.get("geometry") or []
    first = geometries[0] if geometries and isinstance(geometries[0], dict) else {}
    timestamp = _epoch_ms_from_iso(first.get("date"), fetched_at_ms)

    source_url = None
    sources = record.get("sources") or []
    if sources and isinstance(sources[0], dict) and sources[0].get("url"):
        source_url = str(sources[0]["url"])

    return timestamp, source_url, _coordinates_from_geojson(first or None)


def thermal_hotspot_signal(*, record: dict, fetched_at_ms: int) -> Signal:
    title = str(record.get("title") or "Unnamed fire")
    timestamp, source_url, coordinates = _eonet_common(record, fetched_at_ms)
    return Signal(
        text=(
            f"Thermal hotspot: {title}. Satellite thermal anomaly detected by"
            " MODIS/VIIRS, consistent with an active wildfire."
        ),
        author="NASA FIRMS",
        timestamp=timestamp,
        source_url=source_url,
        coordinates=coordinates,
    )


def environmental_event_signal(*, record: dict, fetched_at_ms: int) -> Signal:
    title = str(record.get("title") or "Unnamed event")
    category_title = "Environmental Event"
    categories = record.get("categories") or []
    if categories and isinstance(categories[0], dict) and categories[0].get("title"):
        category_title = str(categories[0]["title"])

    timestamp, source_url, coordinates = _eonet_common(record, fetched_at_ms)
    return Signal(
        text=f"Satellite alert: {title}. Type: {category_title}. Reported by NASA EONET.",
        author="NASA EONET",
        timestamp=timestamp,
        source_url=source_url,
        coordinates=coordinates,
    )


def seismic_event_signal(*, record: dict, fetched_at_ms: int) -> Signal:
    properties = record.get("properties") or {}
    mag = properties.get("mag")
    place = str(properties.get("place") or "unknown location")
    time_ms = properties.get("time")

    return Signal(
        text=f"Quake M{mag} - {place}",
        author="USGS",
        timestamp=int(time_ms) if time_ms is not None else fetched_at_ms,
        source_url=str(properties["url"]) if properties.get("url") else None,
        coordinates=_coordinates_from_geojson(record.get("geometry")),
    )


def relief_bulletin_signal(*, record: dict, fetched_at_ms: int) -> Signal:
    fields = record.get("fields") or {}
    title = str(fields.get("title") or "").strip()
    body = str(fields.get("body") or "").strip()
    text = f"{title} - {body[:150]}" if body else title

    dates = fields.get("date")
    created = dates.get("created") if isinstance(dates, dict) else None

    return Signal(
        text=text,
        author="ReliefWeb",
        timestamp=_epoch_ms_from_iso(created, fetched_at_ms),
        source_url=str(record["href"]) if record.get("href") else None,
    )


_HTML_TAG_RE = re.compile(r"<[^>]+>", flags=re.UNICODE)
_WS_RE = re.compile(r"\s+", flags=re.UNICODE)


def strip_html(content_html: str) -> str:
    text = html.unescape(_HTML_TAG_RE.sub(" ", content_html))
    return _WS_RE.sub(" ", text).strip()


def social_post_signal(*, record: dict, fetched_at_ms: int) -> Signal:
    account = record.get("account") or {}
    username = str(account.get("username") or account.get("acct") or "unknown")

    image_url = None
    attachments = record.get("media_attachments") or []
    if attachments and isinstance(attachments[0], dict):
        image_url = attachments[0].get("preview_url") or None

    url = record.get("url") or record.get("uri")
    return Signal(
        text=strip_html(str(record.get("content") or "")),
        author=f"@{username}",
        timestamp=_epoch_ms_from_iso(record.get("created_at"), fetched_at_ms),
        source_url=str(url) if url else None,
        image_url=str(image_url) if image_url else None,
    )


_LIST_MARKER_RE = re.compile(r"^[\d\-*.#)\s]+")


def news_signals(
    *, text: str, grounding_urls: list[str], fetched_at_ms: int, limit: int = 3
) -> list[Signal]:
    lines = [line.strip() for line in text.splitlines()]
    lines = [line for line in lines if len(line) > 5]

    signals: list[Signal] = []
    for index, line in enumerate(lines[:limit]):
        url = None
        if grounding_urls:
            url = grounding_urls[index] if index < len(grounding_urls) else grounding_urls[0]
        signals.append(
            Signal(
                text=_LIST_MARKER_RE.sub("", line).strip() or line,
                author="AI Monitor",
                timestamp=fetched_at_ms,
                source_url=url,
            )
        )
    return signals
