from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from typing import Literal

from pydantic import BaseModel, ConfigDict

from realtime.bus import Event, EventBus

logger = logging.getLogger(__name__)

LogLevel = Literal["INFO", "SUCCESS", "ALERT"]

_STDLIB_LEVELS = {"INFO": logging.INFO, "SUCCESS": logging.INFO, "ALERT": logging.WARNING}


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int
    message: str
    level: LogLevel


class EventLog:
    """Operator-facing pipeline log, newest first."""

    def __init__(self, bus: EventBus | None = None, *, max_entries: int = 50) -> None:
        self._bus = bus
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)

    def add(self, message: str, level: LogLevel = "INFO") -> LogEntry:
        now_ms = int(time.time() * 1000)
        entry = LogEntry(
            id=f"log-{now_ms}-{uuid.uuid4().hex[:8]}",
            timestamp=now_ms,
            message=message,
            level=level,
        )
        self._entries.appendleft(entry)
        logger.log(_STDLIB_LEVELS[level], "[%s] %s", level, message)
        if self._bus is not None:
            self._bus.publish_nowait(Event(type="log", data=entry.model_dump()))
        return entry

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
