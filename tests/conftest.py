from __future__ import annotations

import asyncio
import threading
import time
from typing import Iterable, Optional

import pytest

from weatherhub.core.config import Settings
from weatherhub.domain.errors import DeliveryError, SendError, StorageError
from weatherhub.domain.interfaces import PortInfo

ARDUINO = PortInfo(device="/dev/ttyACM0", manufacturer="Arduino (www.arduino.cc)", description="Arduino Uno")
BLUETOOTH = PortInfo(device="/dev/ttyS0", manufacturer="", description="Bluetooth serial")

GOOD_JSON = '{"rainAnalog": 812, "rainDigital": 1, "lightValue": 412, "lightPercentage": 40.3}'


class FakeStream:
    """Serves canned lines, then either idles (b"" ticks) or fails like an unplugged board."""

    def __init__(self, lines: Iterable[str] = (), fail_after: bool = False) -> None:
        self._lines = [(line + "\n").encode() for line in lines]
        self._fail_after = fail_after
        self._closed = threading.Event()
        self.closed = False

    def readline(self) -> bytes:
        if self._closed.is_set():
            raise OSError("port closed")
        if self._lines:
            return self._lines.pop(0)
        if self._fail_after:
            raise OSError("device reports readiness to read but returned no data")
        self._closed.wait(0.01)
        return b""

    def close(self) -> None:
        self.closed = True
        self._closed.set()


class FakeBackend:
    """
    Each discovery attempt consumes one entry of `attempts`:
      None           -> no matching port listed
      an Exception   -> port listed, open() raises it
      a FakeStream   -> port listed and opened
    Once exhausted the last entry keeps being used.
    """

    def __init__(self, attempts: list, ports: Optional[list[PortInfo]] = None) -> None:
        self._attempts = list(attempts)
        self._ports = ports if ports is not None else [BLUETOOTH, ARDUINO]
        self._current = None
        self.list_calls = 0
        self.open_calls = 0

    def list_ports(self) -> list[PortInfo]:
        self.list_calls += 1
        self._current = self._attempts.pop(0) if len(self._attempts) > 1 else self._attempts[0]
        if self._current is None:
            return [BLUETOOTH]
        return list(self._ports)

    def open(self, port: PortInfo, baudrate: int):
        self.open_calls += 1
        if isinstance(self._current, Exception):
            raise self._current
        return self._current


class RecordingTransport:
    def __init__(self, fail_on: Optional[str] = None, delay: float = 0.0) -> None:
        self.sent: list[str] = []
        self.attempts = 0
        self.closed = False
        self._fail_on = fail_on
        self._delay = delay

    async def send(self, text: str) -> None:
        self.attempts += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail_on == "*" or (self._fail_on and f'"type":"{self._fail_on}"' in text):
            raise SendError("connection reset by peer")
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True


class RecordingNotifier:
    def __init__(self, fail_subjects: Iterable[str] = ()) -> None:
        self.calls: list[tuple[str, str]] = []
        self._fail = set(fail_subjects)

    async def notify(self, subject: str, body: str) -> None:
        if subject in self._fail:
            raise DeliveryError("smtp: 421 service not available")
        self.calls.append((subject, body))


class MemorySink:
    """fail=True raises StorageError; an exception instance is raised as is."""

    def __init__(self, fail=False) -> None:
        self.stored = []
        self._fail = fail

    async def store(self, reading) -> None:
        if isinstance(self._fail, Exception):
            raise self._fail
        if self._fail:
            raise StorageError("database is locked")
        self.stored.append(reading)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        sqlite_path=str(tmp_path / "weather.db"),
        log_file="",
        device_mode="serial",
        notifier_mode="log",
        reconnect_interval_s=60.0,
        subscriber_send_timeout_s=1.0,
    )
