from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from .models import Reading


@dataclass(frozen=True)
class PortInfo:
    device: str
    manufacturer: str = ""
    description: str = ""


@runtime_checkable
class LineStream(Protocol):
    def readline(self) -> bytes:
        """Block until a line (or the read timeout). Raise OSError on I/O failure."""
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class SerialBackend(Protocol):
    def list_ports(self) -> list[PortInfo]:
        ...

    def open(self, port: PortInfo, baudrate: int) -> LineStream:
        ...


@runtime_checkable
class SubscriberTransport(Protocol):
    async def send(self, text: str) -> None:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, subject: str, body: str) -> None:
        ...


@runtime_checkable
class ReadingSink(Protocol):
    async def store(self, reading: Reading) -> None:
        ...
