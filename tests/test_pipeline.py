import asyncio
import json
from datetime import timedelta

import pytest

from conftest import (
    GOOD_JSON,
    FakeBackend,
    FakeStream,
    MemorySink,
    RecordingNotifier,
    RecordingTransport,
    wait_until,
)
from weatherhub.domain.events import decode_event
from weatherhub.domain.alerts import AlertDispatcher
from weatherhub.domain.errors import MissingField
from weatherhub.domain.models import LinkState
from weatherhub.services.device_link import DeviceLinkManager
from weatherhub.services.hub import BroadcastHub
from weatherhub.services.pipeline import INVALID_DATA_MESSAGE, PipelineCoordinator
from weatherhub.storage.sqlite_repo import SQLiteRepository

HOT_JSON = '{"rainAnalog": 812, "rainDigital": 1, "lightValue": 412, "lightPercentage": 40.3, "temperature": 44.1}'


def _build(backend, notifier=None, sink=None, **kw):
    link = DeviceLinkManager(backend)
    hub = BroadcastHub(connected=lambda: link.is_open)
    alerts = AlertDispatcher(notifier or RecordingNotifier(), cooldown=timedelta(seconds=60))
    pipeline = PipelineCoordinator(link, hub, alerts, sink=sink, reconnect_interval=0.01, **kw)
    link.on_state_change = pipeline.on_link_state
    return pipeline, link, hub


def _events(transport: RecordingTransport) -> list[dict]:
    return [json.loads(t) for t in transport.sent]


def test_reconnects_after_two_failed_discoveries() -> None:
    stream = FakeStream([GOOD_JSON, GOOD_JSON])
    backend = FakeBackend([None, OSError("could not open port /dev/ttyACM0"), stream])
    pipeline, link, hub = _build(backend)
    watcher = RecordingTransport()
    seen_states: list[LinkState] = []

    async def scenario():
        hub.subscribe(watcher)
        await pipeline.start()
        await wait_until(lambda: pipeline.live.accepted == 2)
        seen_states.append(link.status)
        await hub.drain()
        events = _events(watcher)
        await pipeline.stop()
        return events

    events = asyncio.run(scenario())

    assert seen_states == [LinkState.OPEN]
    assert backend.list_calls == 3
    assert backend.open_calls == 2
    assert pipeline.live.last_error is not None

    kinds = [(e["type"], e.get("connected")) for e in events]
    # initial status, one status(false) per failed discovery, then connected and data
    assert kinds[:3] == [("status", False), ("status", False), ("status", False)]
    assert kinds[3:] == [("status", True), ("data", None), ("data", None)]


def test_link_drop_is_reported_and_retried() -> None:
    first = FakeStream([GOOD_JSON], fail_after=True)
    second = FakeStream([GOOD_JSON])
    backend = FakeBackend([first, second])
    pipeline, link, hub = _build(backend)
    watcher = RecordingTransport()

    async def scenario():
        hub.subscribe(watcher)
        await pipeline.start()
        await wait_until(lambda: pipeline.live.accepted == 2)
        await hub.drain()
        events = _events(watcher)
        await pipeline.stop()
        return events

    events = asyncio.run(scenario())

    statuses = [e["connected"] for e in events if e["type"] == "status"]
    assert statuses == [False, True, False, True]
    assert pipeline.live.reconnects == 1
    assert first.closed is True


def test_bad_line_reports_generic_error_and_loop_continues() -> None:
    raw = '{"rainAnalog": 812, "secret_debug": "wifi-password"'
    stream = FakeStream([raw, "garbage from bootloader", GOOD_JSON])
    pipeline, _, hub = _build(FakeBackend([stream]))
    watcher = RecordingTransport()

    async def scenario():
        hub.subscribe(watcher)
        await pipeline.start()
        await wait_until(lambda: pipeline.live.accepted == 1)
        await hub.drain()
        await pipeline.stop()

    asyncio.run(scenario())

    errors = [e for e in _events(watcher) if e["type"] == "error"]
    assert errors == [{"type": "error", "message": INVALID_DATA_MESSAGE}] * 2
    assert not any("wifi-password" in t for t in watcher.sent)
    assert pipeline.live.rejected == 2


def test_accepted_reading_is_stamped_broadcast_alerted_and_stored() -> None:
    notifier = RecordingNotifier()
    sink = MemorySink()
    pipeline, _, hub = _build(FakeBackend([None]), notifier=notifier, sink=sink)
    watcher = RecordingTransport()

    async def scenario():
        hub.subscribe(watcher)
        reading = await pipeline.ingest_line(HOT_JSON)
        await hub.drain()
        await pipeline.alerts.drain()
        return reading

    reading = asyncio.run(scenario())

    assert reading.timestamp is not None
    assert reading.timestamp.tzinfo is not None
    assert pipeline.live.latest == reading
    assert sink.stored == [reading]
    assert [s for s, _ in notifier.calls] == ["Extreme Heat Alert"]

    data = [t for t in watcher.sent if '"type":"data"' in t]
    assert len(data) == 1
    assert decode_event(data[0]).payload.to_reading() == reading


def test_persist_every_nth_reading() -> None:
    sink = MemorySink()
    pipeline, _, _ = _build(FakeBackend([None]), sink=sink, persist_every=3)

    async def scenario():
        for _ in range(7):
            await pipeline.ingest_line(GOOD_JSON)

    asyncio.run(scenario())
    assert len(sink.stored) == 2
    assert pipeline.live.accepted == 7


def test_storage_failure_is_not_fatal(caplog) -> None:
    pipeline, _, _ = _build(FakeBackend([None]), sink=MemorySink(fail=True))

    async def scenario():
        return await pipeline.ingest_line(GOOD_JSON)

    reading = asyncio.run(scenario())
    assert reading is not None
    assert "Storing reading failed" in caplog.text


def test_ingest_record_raises_for_the_caller() -> None:
    pipeline, _, _ = _build(FakeBackend([None]))

    async def scenario():
        with pytest.raises(MissingField):
            await pipeline.ingest_record({"rainAnalog": 1})
        return await pipeline.ingest_record(json.loads(GOOD_JSON))

    reading = asyncio.run(scenario())
    assert reading.rain_analog == 812
    assert pipeline.live.rejected == 1


def test_stop_while_device_missing() -> None:
    pipeline, link, hub = _build(FakeBackend([None]))
    watcher = RecordingTransport()

    async def scenario():
        hub.subscribe(watcher)
        await pipeline.start()
        await asyncio.sleep(0.05)
        await pipeline.stop()

    asyncio.run(scenario())
    assert link.status is LinkState.DISCONNECTED
    assert hub.subscriber_count == 0
    assert watcher.closed is True


def test_hostile_lines_never_stop_the_loop(tmp_path) -> None:
    depth = 200_000
    lines = [
        '{"rainAnalog": ' + "9" * 5000 + ', "rainDigital": 1, "lightValue": 1, "lightPercentage": 1}',
        '{"rainAnalog": ' + "[" * depth + "]" * depth + "}",
        '{"rainAnalog": 99999999999999999999, "rainDigital": 1, "lightValue": 412, "lightPercentage": 40.3}',
        GOOD_JSON,
    ]
    repo = SQLiteRepository(str(tmp_path / "w.db"))
    pipeline, _, _ = _build(FakeBackend([FakeStream(lines)]), sink=repo)

    async def scenario():
        await repo.init()
        await pipeline.start()
        await wait_until(lambda: pipeline.live.accepted == 1)
        stored = await repo.query_readings()
        await pipeline.stop()
        return stored

    stored = asyncio.run(scenario())

    assert pipeline.live.rejected == 3
    assert [r.rain_analog for r in stored] == [812]


def test_unexpected_sink_fault_is_logged_and_reading_continues(caplog) -> None:
    sink = MemorySink(fail=RuntimeError("disk unplugged"))
    pipeline, link, _ = _build(FakeBackend([FakeStream([GOOD_JSON, GOOD_JSON])]), sink=sink)

    async def scenario():
        await pipeline.start()
        await wait_until(lambda: pipeline.live.accepted == 2)
        state = link.status
        await pipeline.stop()
        return state

    state = asyncio.run(scenario())

    assert state is LinkState.OPEN
    assert caplog.text.count("Pipeline failed on a device line") == 2
    assert "disk unplugged" in caplog.text
