from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable

from pydantic import ValidationError

from realtime.bus import Event, EventBus
from realtime.log import EventLog
from store.blobs import (
    INCIDENTS_KEY,
    LAST_SYNC_KEY,
    NOTIFICATIONS_KEY,
    SESSION_KEYS,
    USER_KEY,
    BlobStore,
)
from store.models import Incident, Notification, TriageLevel, User

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 100


def _now_ms() -> int:
    return int(time.time() * 1000)


class IncidentStore:
    """Ordered incident set plus the operator profile and notifications.

    Order is insertion order, newest first; records are never re-sorted. Every
    mutation rewrites incidents, user and notifications in one transaction.
    """

    def __init__(
        self,
        blobs: BlobStore,
        log: EventLog,
        *,
        bus: EventBus | None = None,
        default_user: User | None = None,
    ) -> None:
        self._blobs = blobs
        self._log = log
        self._bus = bus
        self._default_user = default_user
        self._records: list[Incident] = []
        self._ids: set[str] = set()
        self._user: User | None = default_user
        self._notifications: list[Notification] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, incident_id: object) -> bool:
        return incident_id in self._ids

    @property
    def user(self) -> User | None:
        return self._user

    def all(self) -> list[Incident]:
        return list(self._records)

    def get(self, incident_id: str) -> Incident | None:
        for record in self._records:
            if record.id == incident_id:
                return record
        return None

    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    def load(self) -> None:
        records: list[Incident] = []
        ids: set[str] = set()
        for raw in self._blobs.load(INCIDENTS_KEY, default=[]) or []:
            try:
                record = Incident.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping corrupt persisted incident")
                continue
            if record.id in ids:
                continue
            ids.add(record.id)
            records.append(record)

        user = self._default_user
        raw_user = self._blobs.load(USER_KEY)
        if raw_user is not None:
            try:
                user = User.model_validate(raw_user)
            except ValidationError:
                logger.warning("Discarding corrupt persisted user")

        notifications: list[Notification] = []
        for raw in self._blobs.load(NOTIFICATIONS_KEY, default=[]) or []:
            try:
                notifications.append(Notification.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping corrupt persisted notification")

        self._records = records
        self._ids = ids
        self._user = user
        self._notifications = notifications[:MAX_NOTIFICATIONS]
        logger.info("Hydrated %d incidents", len(records))

    def insert(self, record: Incident) -> bool:
        """Prepend a single record. A known id is skipped, not an error."""
        if record.id in self._ids:
            logger.debug("Skipping duplicate incident %s", record.id)
            return False
        self._prepend([record])
        self.persist()
        self._log.add(f"Signal {record.id} secured ({record.status.value}).", "ALERT")
        return True

    def merge(self, candidates: Iterable[Incident]) -> list[Incident]:
        """Prepend unseen candidates, keeping their relative order."""
        fresh: list[Incident] = []
        seen = set(self._ids)
        for candidate in candidates:
            if candidate.id in seen:
                continue
            seen.add(candidate.id)
            fresh.append(candidate)
        if fresh:
            self._prepend(fresh)
            self.persist()
        return fresh

    def resolve(self, incident_id: str) -> Incident | None:
        """Remove an incident and credit it to the operator as one change."""
        record = self.get(incident_id)
        if record is None or self._user is None:
            return None

        remaining = [r for r in self._records if r.id != incident_id]
        user = self._user.model_copy(
            update={
                "solved_incidents": [*self._user.solved_incidents, incident_id],
                "total_risk_mitigated": self._user.total_risk_mitigated
                + record.risk_score,
            }
        )
        self._records = remaining
        self._ids.discard(incident_id)
        self._user = user

        self.persist()
        self._log.add(f"Threat {incident_id} neutralized.", "SUCCESS")
        self._publish("incident.resolved", {"id": incident_id})
        return record

    def set_user(self, user: User) -> None:
        self._user = user
        self.persist()

    def mark_notification_read(self, notification_id: str) -> bool:
        for index, notification in enumerate(self._notifications):
            if notification.id == notification_id:
                self._notifications[index] = notification.model_copy(
                    update={"read": True}
                )
                self.persist()
                return True
        return False

    def clear_notifications(self) -> None:
        self._notifications = []
        self.persist()

    def persist(self) -> bool:
        saved = self._blobs.save_many(
            {
                INCIDENTS_KEY: [r.to_wire() for r in self._records],
                USER_KEY: self._user.to_wire() if self._user is not None else None,
                NOTIFICATIONS_KEY: [n.to_wire() for n in self._notifications],
                LAST_SYNC_KEY: _now_ms(),
            }
        )
        if not saved:
            logger.warning("Persist failed; keeping in-memory state")
        return saved

    def reset(self) -> None:
        """Drop all session state, in memory and on disk."""
        self._records = []
        self._ids = set()
        self._user = None
        self._notifications = []
        self._blobs.delete(SESSION_KEYS)

    def _prepend(self, records: list[Incident]) -> None:
        self._records = [*records, *self._records]
        self._ids.update(r.id for r in records)

        alerts = [
            Notification(
                id=f"notif-{uuid.uuid4().hex[:12]}",
                timestamp=_now_ms(),
                title=f"RED signal from {r.author}",
                message=r.text[:200],
                type="ALERT",
                incident_id=r.id,
            )
            for r in records
            if r.status is TriageLevel.RED
        ]
        if alerts:
            self._notifications = [*alerts, *self._notifications][
                :MAX_NOTIFICATIONS
            ]

        for record in records:
            self._publish("incident.new", record.to_wire())

    def _publish(self, event_type: str, data: dict) -> None:
        if self._bus is not None:
            self._bus.publish_nowait(Event(type=event_type, data=data))
