from __future__ import annotations

import logging
from dataclasses import dataclass

import serial
import serial.tools.list_ports

from ..domain.interfaces import PortInfo

logger = logging.getLogger(__name__)


@dataclass
class SerialPortConfig:
    bytesize: int = 8
    parity: str = "N"               # "N", "E", "O"
    stopbits: int = 1
    timeout_s: float = 1.0          # readline() returns b"" after this


class PySerialLineStream:
    """Line-delimited reader over an open pyserial port."""

    def __init__(self, ser: serial.Serial) -> None:
        self._ser = ser

    def readline(self) -> bytes:
        try:
            return self._ser.readline()
        except serial.SerialException as e:
            # pyserial reports unplug as SerialException; surface as OSError
            raise OSError(str(e)) from e

    def close(self) -> None:
        try:
            self._ser.close()
        except serial.SerialException:
            logger.debug("Serial close failed", exc_info=True)


class PySerialBackend:
    """
    Serial backend on top of pyserial.
    Responsible for: port enumeration, opening a line stream.
    """

    def __init__(self, cfg: SerialPortConfig = SerialPortConfig()) -> None:
        self.cfg = cfg

    def list_ports(self) -> list[PortInfo]:
        ports = []
        for p in serial.tools.list_ports.comports():
            ports.append(PortInfo(
                device=p.device,
                manufacturer=p.manufacturer or "",
                description=p.description or "",
            ))
        return ports

    def open(self, port: PortInfo, baudrate: int) -> PySerialLineStream:
        try:
            ser = serial.Serial(
                port=port.device,
                baudrate=baudrate,
                bytesize=self.cfg.bytesize,
                parity=self.cfg.parity,
                stopbits=self.cfg.stopbits,
                timeout=self.cfg.timeout_s,
            )
        except serial.SerialException as e:
            raise OSError(f"Unable to open {port.device}: {e}") from e
        logger.info("Serial port %s opened (baud=%s)", port.device, baudrate)
        return PySerialLineStream(ser)
