from __future__ import annotations

import json


def parse_geojson(data: bytes, *, limit: int | None = None) -> list[dict]:
    doc = json.loads(data)
    if not isinstance(doc, dict) or doc.get("type") != "FeatureCollection":
        raise ValueError("not a GeoJSON FeatureCollection")
    features = [f for f in doc.get("features") or [] if isinstance(f, dict)]
    return features[:limit] if limit is not None else features
