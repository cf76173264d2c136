from __future__ import annotations
import asyncio
import itertools
import logging
from typing import Callable, Optional

from ..domain.events import StatusEvent, WireEvent
from ..domain.interfaces import SubscriberTransport

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class Subscriber:
    """One live consumer of the event stream. Never reused after removal."""

    def __init__(self, transport: SubscriberTransport, queue_size: int) -> None:
        self.id = next(_ids)
        self.transport = transport
        self.alive = True
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self.task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id}, alive={self.alive})"


class BroadcastHub:
    """
    Fans wire events out to every connected subscriber.

    publish() only enqueues, so a slow or broken subscriber never holds up the
    producer. Each subscriber has its own pump task that sends in publish order
    with a bounded timeout; the first failed send (or a full queue) removes it.
    The subscriber set is only touched from the event loop and publish() has
    no suspension point, so iteration and add/remove never interleave.
    """

    def __init__(
        self,
        connected: Callable[[], bool] = lambda: False,
        queue_size: int = 100,
        send_timeout: float = 5.0,
    ) -> None:
        self._connected = connected
        self._queue_size = queue_size
        self._send_timeout = send_timeout
        self._subscribers: dict[int, Subscriber] = {}
        self._closing: set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribers(self) -> list[Subscriber]:
        return list(self._subscribers.values())

    def subscribe(self, transport: SubscriberTransport) -> Subscriber:
        sub = Subscriber(transport, self._queue_size)
        self._subscribers[sub.id] = sub
        # A new subscriber learns link status without waiting for data
        sub.queue.put_nowait(StatusEvent(connected=self._connected()).to_json())
        sub.task = asyncio.create_task(self._pump(sub), name=f"subscriber_{sub.id}")
        logger.info("Subscriber %d joined (%d active)", sub.id, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscriber) -> None:
        """Explicit disconnect: the transport layer already owns the closed socket."""
        self._remove(sub, close_transport=False)

    def publish(self, event: WireEvent) -> int:
        text = event.to_json()
        delivered = 0
        for sub in list(self._subscribers.values()):
            try:
                sub.queue.put_nowait(text)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber %d is not keeping up, dropping it", sub.id)
                self._remove(sub)
        logger.debug("Published %s to %d subscriber(s)", event.type, delivered)
        return delivered

    async def drain(self) -> None:
        """Wait until every live subscriber has flushed its queue."""
        for sub in list(self._subscribers.values()):
            await sub.queue.join()

    async def close(self) -> None:
        subs = list(self._subscribers.values())
        for sub in subs:
            self._remove(sub)
        tasks = [s.task for s in subs if s.task is not None] + list(self._closing)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Broadcast hub closed (%d subscriber(s) dropped)", len(subs))

    async def _pump(self, sub: Subscriber) -> None:
        while sub.alive:
            text = await sub.queue.get()
            try:
                await asyncio.wait_for(sub.transport.send(text), timeout=self._send_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # SendError, socket errors, timeouts: all isolate the same way
                logger.warning("Send to subscriber %d failed (%s), removing it", sub.id, e or type(e).__name__)
                self._remove(sub, cancel=False)
                return
            finally:
                sub.queue.task_done()

    def _remove(self, sub: Subscriber, close_transport: bool = True, cancel: bool = True) -> None:
        if self._subscribers.pop(sub.id, None) is None:
            return
        sub.alive = False
        # release anyone waiting on drain()
        while not sub.queue.empty():
            sub.queue.get_nowait()
            sub.queue.task_done()
        if cancel and sub.task is not None and sub.task is not asyncio.current_task():
            sub.task.cancel()
        if close_transport:
            task = asyncio.create_task(self._close_transport(sub), name=f"subscriber_{sub.id}_close")
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        logger.info("Subscriber %d removed (%d active)", sub.id, len(self._subscribers))

    async def _close_transport(self, sub: Subscriber) -> None:
        try:
            await asyncio.wait_for(sub.transport.close(), timeout=self._send_timeout)
        except Exception:
            logger.debug("Closing subscriber %d transport failed", sub.id, exc_info=True)
