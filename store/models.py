from __future__ import annotations

import hashlib
import random
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TriageLevel(str, Enum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"


class IncidentSource(str, Enum):
    MANUAL = "Manual"
    MASTODON = "Mastodon"
    RELIEFWEB = "ReliefWeb"
    GDACS = "GDACS"
    WEB_SCRAPER = "WebScraper"
    BLUESKY = "Bluesky"
    GDELT = "GDELT"
    NASA = "NASA"
    USGS = "USGS"


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def clamp_risk_score(value: object, default: int = 50) -> int:
    try:
        score = int(round(float(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return default
    return max(0, min(100, score))


def coerce_triage_level(value: object) -> TriageLevel:
    if isinstance(value, TriageLevel):
        return value
    try:
        return TriageLevel(str(value).strip().upper())
    except ValueError:
        return TriageLevel.YELLOW


class Coordinates(WireModel):
    lat: float
    lng: float


class Incident(WireModel):
    id: str
    author: str
    timestamp: int
    text: str
    image_url: str | None = None
    status: TriageLevel
    risk_score: int
    reasoning: str = ""
    recommended_action: str = ""
    location: str | None = None
    coordinates: Coordinates | None = None
    source: IncidentSource
    source_url: str | None = None

    @field_validator("risk_score", mode="before")
    @classmethod
    def _clamp_risk(cls, value: object) -> int:
        return clamp_risk_score(value)

    @field_validator("status", mode="before")
    @classmethod
    def _known_tier(cls, value: object) -> TriageLevel:
        return coerce_triage_level(value)


class User(WireModel):
    id: str
    name: str
    email: str
    solved_incidents: list[str] = Field(default_factory=list)
    total_risk_mitigated: int = 0


class Notification(WireModel):
    id: str
    timestamp: int
    title: str
    message: str
    type: Literal["ALERT", "INFO", "SUCCESS"] = "INFO"
    read: bool = False
    incident_id: str | None = None


class LocationContext(WireModel):
    lat: float
    lng: float
    city: str | None = None
    country_code: str | None = None


def make_incident_id(
    source: IncidentSource, timestamp: int, text: str, *, content_hash: bool = False
) -> str:
    prefix = f"{source.value.lower()}-{timestamp}"
    if content_hash:
        digest = hashlib.sha256(
            f"{source.value}\n{text}\n{timestamp}".encode("utf-8")
        ).hexdigest()
        return f"{prefix}-{digest[:8]}"
    return f"{prefix}-{random.randrange(1000)}"
