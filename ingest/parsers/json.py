from __future__ import annotations

import json


_RECORD_LIST_KEYS = ("events", "data", "items", "statuses")


def parse_json_records(data: bytes, *, limit: int | None = None) -> list[dict]:
    doc = json.loads(data)
    records: list = []
    if isinstance(doc, list):
        records = doc
    elif isinstance(doc, dict):
        for key in _RECORD_LIST_KEYS:
            value = doc.get(key)
            if isinstance(value, list):
                records = value
                break
    else:
        raise ValueError(f"unexpected json root: {type(doc).__name__}")

    records = [r for r in records if isinstance(r, dict)]
    return records[:limit] if limit is not None else records
