import logging

import pytest

from realtime.bus import EventBus
from realtime.log import EventLog


def test_entries_are_newest_first_and_capped() -> None:
    log = EventLog(max_entries=3)
    for i in range(5):
        log.add(f"message {i}")

    assert [e.message for e in log.entries()] == ["message 4", "message 3", "message 2"]
    assert all(e.level == "INFO" for e in log.entries())


def test_alerts_mirror_to_stdlib_logging_as_warnings(caplog) -> None:
    log = EventLog()
    with caplog.at_level(logging.INFO, logger="realtime.log"):
        log.add("USGS error: http_503", "ALERT")
        log.add("USGS uplink established: 1 new of 1 signals.", "SUCCESS")

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.WARNING, logging.INFO]
    assert "[ALERT] USGS error: http_503" in caplog.text


def test_clear_drops_entries() -> None:
    log = EventLog()
    log.add("one")
    log.clear()
    assert log.entries() == []


@pytest.mark.asyncio
async def test_entries_are_published_on_the_bus() -> None:
    bus = EventBus()
    subscription = await bus.subscribe()
    log = EventLog(bus)

    entry = log.add("Starting sync across 6 connectors.")

    event = subscription.queue.get_nowait()
    assert event.type == "log"
    assert event.data["id"] == entry.id
    assert event.data["message"] == "Starting sync across 6 connectors."
    await bus.unsubscribe(subscription)
