from __future__ import annotations
import asyncio
import logging
from typing import AsyncIterator, Callable, Iterable, Optional

from ..domain.errors import DeviceNotFound, LinkFailure
from ..domain.interfaces import LineStream, PortInfo, SerialBackend
from ..domain.models import LinkState

logger = logging.getLogger(__name__)

DEFAULT_VENDORS = ("arduino", "wch.cn", "ftdi")


class DeviceLinkManager:
    """
    Owns the single serial handle to the weather board.

    connect() discovers and opens the board, readings() yields its raw lines
    until the link drops. Retrying is the caller's job; after a LinkFailure
    connect() and readings() can simply be called again.
    """

    def __init__(
        self,
        backend: SerialBackend,
        baudrate: int = 9600,
        vendors: Iterable[str] = DEFAULT_VENDORS,
        on_state_change: Optional[Callable[[LinkState], None]] = None,
    ) -> None:
        self._backend = backend
        self._baudrate = baudrate
        self._vendors = tuple(v.lower() for v in vendors)
        self.on_state_change = on_state_change

        self._state = LinkState.DISCONNECTED
        self._stream: Optional[LineStream] = None
        self._port: Optional[PortInfo] = None

    @property
    def status(self) -> LinkState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is LinkState.OPEN

    @property
    def port(self) -> Optional[PortInfo]:
        return self._port

    def _set_state(self, state: LinkState) -> None:
        if state is self._state:
            return
        logger.info("Device link %s -> %s", self._state.value, state.value)
        self._state = state
        if self.on_state_change:
            self.on_state_change(state)

    def find_port(self, ports: Iterable[PortInfo]) -> Optional[PortInfo]:
        for p in ports:
            meta = f"{p.manufacturer} {p.description}".lower()
            if any(v in meta for v in self._vendors):
                return p
        return None

    async def connect(self) -> PortInfo:
        if self.is_open and self._port is not None:
            return self._port

        self._set_state(LinkState.DISCOVERING)
        loop = asyncio.get_running_loop()
        try:
            ports = await loop.run_in_executor(None, self._backend.list_ports)
            logger.debug("Available ports: %s", ports)

            port = self.find_port(ports)
            if port is None:
                raise DeviceNotFound(f"No board found among {len(ports)} port(s)")

            logger.info("Connecting to board on %s (%s)", port.device, port.manufacturer or port.description)
            opening = loop.run_in_executor(None, self._backend.open, port, self._baudrate)
            try:
                self._stream = await asyncio.shield(opening)
            except asyncio.CancelledError:
                # open() keeps running in its thread; whatever it returns is ours to close
                opening.add_done_callback(self._close_abandoned)
                self._set_state(LinkState.DISCONNECTED)
                raise
        except LinkFailure:
            self._set_state(LinkState.DISCONNECTED)
            raise
        except OSError as e:
            self._set_state(LinkState.DISCONNECTED)
            raise LinkFailure(str(e)) from e

        self._port = port
        self._set_state(LinkState.OPEN)
        return port

    async def readings(self) -> AsyncIterator[str]:
        """Raw, newline-stripped lines of the current session."""
        loop = asyncio.get_running_loop()
        while self.is_open and self._stream is not None:
            stream = self._stream
            try:
                raw = await loop.run_in_executor(None, stream.readline)
            except OSError as e:
                if self._stream is not stream:
                    # closed underneath us by close()
                    return
                self._drop()
                raise LinkFailure(f"Device I/O error: {e}") from e

            if self._stream is not stream:
                return
            if not raw:
                # read timeout tick
                continue

            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                yield line

    def _close_abandoned(self, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        logger.info("Closing port opened after the link was abandoned")
        try:
            opening.result().close()
        except OSError:
            logger.debug("Stream close failed", exc_info=True)

    def _drop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.close()
            except OSError:
                logger.debug("Stream close failed", exc_info=True)
        self._port = None
        self._set_state(LinkState.DISCONNECTED)

    async def close(self) -> None:
        if self._stream is None:
            self._set_state(LinkState.DISCONNECTED)
            return
        self._set_state(LinkState.CLOSING)
        self._drop()
