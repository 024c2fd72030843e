from __future__ import annotations

import json
import re
from dataclasses import dataclass

from classify.models import FALLBACK_ANALYSIS, AnalysisResponse
from store.models import TriageLevel, clamp_risk_score


_JSON_CODE_FENCE_RE = re.compile(
    r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE
)

# Sub-fields tried, in order, when the oracle nests an object where a string
# was asked for.
_READABLE_KEYS = ("text", "location", "name", "description")


@dataclass(frozen=True)
class Ok:
    result: AnalysisResponse


@dataclass(frozen=True)
class Repaired:
    result: AnalysisResponse
    warnings: tuple[str, ...]


@dataclass(frozen=True)
class Failed:
    reason: str


ParseOutcome = Ok | Repaired | Failed


def extract_json_payload(raw_text: str) -> str | None:
    if not raw_text:
        return None
    stripped = raw_text.strip()
    if not stripped:
        return None
    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped
    match = _JSON_CODE_FENCE_RE.search(raw_text)
    if match:
        return match.group(1).strip()
    first = raw_text.find("{")
    last = raw_text.rfind("}")
    if first != -1 and last > first:
        return raw_text[first : last + 1].strip()
    return None


def flatten_value(value: object) -> object:
    """Replace a nested object by its most readable string form."""
    if isinstance(value, dict):
        for key in _READABLE_KEYS:
            sub = value.get(key)
            if sub:
                return str(sub)
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    if isinstance(value, list):
        return json.dumps(value, ensure_ascii=False)
    return value


def parse_analysis(raw_text: str) -> ParseOutcome:
    payload = extract_json_payload(raw_text)
    if payload is None:
        return Failed("no json object in oracle output")
    try:
        doc = json.loads(payload)
    except json.JSONDecodeError as exc:
        return Failed(f"invalid json: {exc.msg}")
    if not isinstance(doc, dict):
        return Failed(f"expected a json object, got {type(doc).__name__}")

    warnings: list[str] = []
    if payload != raw_text.strip():
        warnings.append("stripped non-json wrapping")

    fields: dict[str, object] = {}
    for key, value in doc.items():
        if isinstance(value, (dict, list)):
            warnings.append(f"{key}: flattened nested value")
        fields[key] = flatten_value(value)

    result = AnalysisResponse(
        is_relevant=_relevance(fields, warnings),
        urgency=_urgency(fields, warnings),
        risk_score=_risk_score(fields, warnings),
        reasoning=_text(fields, "reasoning", FALLBACK_ANALYSIS.reasoning, warnings),
        recommended_action=_text(
            fields,
            "recommended_action",
            FALLBACK_ANALYSIS.recommended_action,
            warnings,
        ),
        location_detected=_location(fields),
    )
    if warnings:
        return Repaired(result, tuple(warnings))
    return Ok(result)


def _relevance(fields: dict, warnings: list[str]) -> bool:
    value = fields.get("is_relevant")
    if isinstance(value, bool):
        return value
    if value is None:
        warnings.append("is_relevant: missing")
        return True
    warnings.append("is_relevant: coerced")
    if isinstance(value, str):
        return value.strip().casefold() not in {"false", "no", "0", ""}
    return bool(value)


def _urgency(fields: dict, warnings: list[str]) -> TriageLevel:
    value = fields.get("urgency")
    if isinstance(value, str) and value in TriageLevel.__members__:
        return TriageLevel(value)
    try:
        level = TriageLevel(str(value).strip().upper())
    except ValueError:
        warnings.append(f"urgency: unrecognized {value!r}")
        return TriageLevel.YELLOW
    warnings.append("urgency: normalized case")
    return level


def _risk_score(fields: dict, warnings: list[str]) -> int:
    value = fields.get("risk_score")
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 100:
        return value
    if isinstance(value, bool):
        value = None
    score = clamp_risk_score(value, default=FALLBACK_ANALYSIS.risk_score)
    warnings.append(f"risk_score: {value!r} -> {score}")
    return score


def _text(fields: dict, key: str, default: str, warnings: list[str]) -> str:
    value = fields.get(key)
    if value is None or value == "":
        warnings.append(f"{key}: missing")
        return default
    return str(value)


def _location(fields: dict) -> str | None:
    value = fields.get("location_detected")
    if value is None:
        return None
    text = str(value).strip()
    return text or None
