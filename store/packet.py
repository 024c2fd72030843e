"""Versioned backup envelope for the persisted session state."""

from __future__ import annotations

import json
import logging
import time

from pydantic import Field, ValidationError

from store.blobs import INCIDENTS_KEY, NOTIFICATIONS_KEY, USER_KEY, BlobStore
from store.models import Incident, Notification, User, WireModel

logger = logging.getLogger(__name__)

PACKET_VERSION = "1.0.0"
ANONYMOUS_ORIGIN = "ANON_TERMINAL"


class PacketPayload(WireModel):
    incidents: list[Incident] = Field(default_factory=list)
    user: User | None = None
    notifications: list[Notification] = Field(default_factory=list)


class DataPacket(WireModel):
    version: str = Field(min_length=1)
    timestamp: int = 0
    origin: str = ANONYMOUS_ORIGIN
    payload: PacketPayload


def generate_packet(blobs: BlobStore) -> dict:
    raw_user = blobs.load(USER_KEY)
    user = None
    if raw_user is not None:
        try:
            user = User.model_validate(raw_user)
        except ValidationError:
            logger.warning("Exporting without corrupt persisted user")

    payload = PacketPayload.model_validate(
        {
            "incidents": _valid(Incident, blobs.load(INCIDENTS_KEY, default=[])),
            "user": user,
            "notifications": _valid(
                Notification, blobs.load(NOTIFICATIONS_KEY, default=[])
            ),
        }
    )
    packet = DataPacket(
        version=PACKET_VERSION,
        timestamp=int(time.time() * 1000),
        origin=user.name if user is not None else ANONYMOUS_ORIGIN,
        payload=payload,
    )
    return packet.model_dump(mode="json", by_alias=True)


def import_packet(blobs: BlobStore, raw: str | bytes | dict) -> bool:
    """Validate a packet completely, then write the keys it carries at once."""
    try:
        doc = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rejected packet: not json")
        return False
    if not isinstance(doc, dict) or not doc.get("version"):
        logger.warning("Rejected packet: missing version")
        return False
    if not isinstance(doc.get("payload"), dict):
        logger.warning("Rejected packet: missing payload")
        return False

    try:
        packet = DataPacket.model_validate(doc)
    except ValidationError as exc:
        logger.warning("Rejected packet: %d validation errors", exc.error_count())
        return False

    payload = packet.payload
    # Keys absent from the payload, and a null user, leave stored values alone.
    present = payload.model_fields_set
    values: dict = {}
    if "incidents" in present:
        values[INCIDENTS_KEY] = [r.to_wire() for r in payload.incidents]
    if payload.user is not None:
        values[USER_KEY] = payload.user.to_wire()
    if "notifications" in present:
        values[NOTIFICATIONS_KEY] = [n.to_wire() for n in payload.notifications]
    return blobs.save_many(values)


def _valid(model: type[WireModel], items: object) -> list:
    out = []
    for item in items if isinstance(items, list) else []:
        try:
            out.append(model.model_validate(item))
        except ValidationError:
            continue
    return out
