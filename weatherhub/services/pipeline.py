from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..domain.events import DataEvent, ErrorEvent, StatusEvent
from ..core.timeutil import now_utc
from ..domain.alerts import AlertDispatcher
from ..domain.errors import LinkFailure, ParseFailure, StorageError
from ..domain.interfaces import ReadingSink
from ..domain.models import LinkState, Reading
from ..domain.parser import LineParser
from .device_link import DeviceLinkManager
from .hub import BroadcastHub

logger = logging.getLogger(__name__)

INVALID_DATA_MESSAGE = "Invalid data format"


@dataclass
class LiveState:
    latest: Optional[Reading] = None
    accepted: int = 0
    rejected: int = 0
    reconnects: int = 0
    last_error: Optional[str] = None


class PipelineCoordinator:
    """
    device lines -> parse -> {broadcast, alerts, storage}

    Runs one supervisory task: (re)discovers the board every
    `reconnect_interval` seconds for as long as it is missing, then handles
    its lines one at a time until the link drops.
    """

    def __init__(
        self,
        link: DeviceLinkManager,
        hub: BroadcastHub,
        alerts: AlertDispatcher,
        parser: Optional[LineParser] = None,
        sink: Optional[ReadingSink] = None,
        reconnect_interval: float = 10.0,
        persist_every: int = 1,
    ) -> None:
        self._link = link
        self._hub = hub
        self._alerts = alerts
        self._parser = parser or LineParser()
        self._sink = sink
        self._reconnect_interval = reconnect_interval
        self._persist_every = max(1, persist_every)

        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._was_open = False
        self.live = LiveState()

    @property
    def link(self) -> DeviceLinkManager:
        return self._link

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    @property
    def alerts(self) -> AlertDispatcher:
        return self._alerts

    def on_link_state(self, state: LinkState) -> None:
        """Link state callback: subscribers hear about connectivity, not just data."""
        if state is LinkState.OPEN:
            if self._was_open:
                self.live.reconnects += 1
            self._was_open = True
            self._hub.publish(StatusEvent(connected=True))
        elif state is LinkState.DISCONNECTED:
            self._hub.publish(StatusEvent(connected=False))

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="pipeline_loop")

    async def stop(self) -> None:
        self._stop.set()
        await self._link.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._hub.close()
        await self._alerts.aclose()
        logger.info("Pipeline stopped")

    async def _run(self) -> None:
        logger.info("Pipeline loop started (reconnect_interval=%ss)", self._reconnect_interval)

        while not self._stop.is_set():
            try:
                await self._link.connect()
                async for line in self._link.readings():
                    try:
                        await self.ingest_line(line)
                    except Exception as e:
                        logger.exception("Pipeline failed on a device line: %s", e)
                    if self._stop.is_set():
                        break
            except LinkFailure as e:
                self.live.last_error = str(e)
                logger.warning("Device link unavailable: %s", e)

            if self._stop.is_set():
                break

            # fixed interval, retried forever: the board may stay unplugged for days
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._reconnect_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Pipeline loop stopped")

    async def ingest_line(self, raw_line: str) -> Optional[Reading]:
        logger.debug("Raw line: %r", raw_line)
        try:
            reading = self._parser.parse(raw_line)
        except ParseFailure as e:
            return self._reject(e)
        return await self.accept(reading)

    async def ingest_record(self, record: Mapping[str, Any]) -> Reading:
        """Network-attached stations post decoded JSON; ParseFailure propagates to the caller."""
        try:
            reading = self._parser.parse_record(record)
        except ParseFailure as e:
            self._reject(e)
            raise
        return await self.accept(reading)

    def _reject(self, e: ParseFailure) -> None:
        self.live.rejected += 1
        logger.warning("Rejected device line (%s): %s", e.kind, e)
        # never echo the raw payload to subscribers
        self._hub.publish(ErrorEvent(message=INVALID_DATA_MESSAGE))
        return None

    async def accept(self, reading: Reading) -> Reading:
        reading = reading.stamped(now_utc())
        self.live.latest = reading
        self.live.accepted += 1

        self._hub.publish(DataEvent.of(reading))
        self._alerts.evaluate(reading)

        if self._sink is not None and self.live.accepted % self._persist_every == 0:
            try:
                await self._sink.store(reading)
            except StorageError as e:
                logger.error("Storing reading failed: %s", e)
        return reading
