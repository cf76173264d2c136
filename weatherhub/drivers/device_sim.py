from __future__ import annotations
import json
import math
import random
import threading
import time
from dataclasses import dataclass

from ..domain.interfaces import PortInfo


@dataclass
class PatternConfig:
    period_s: float = 600.0
    noise: float = 0.02             # fraction of amplitude
    rain_baseline: float = 700.0
    rain_amplitude: float = 250.0
    light_baseline: float = 600.0
    light_amplitude: float = 400.0
    temperature_baseline: float = 30.0
    temperature_amplitude: float = 8.0
    pressure_baseline: float = 1005.0
    pressure_amplitude: float = 15.0


SIM_PORT = PortInfo(device="sim://weather0", manufacturer="Arduino (simulated)", description="Simulated weather board")


class SimulatedLineStream:
    def __init__(self, pattern: PatternConfig, sample_seconds: float, failure_rate: float) -> None:
        self._pattern = pattern
        self._sample_seconds = sample_seconds
        self._failure_rate = failure_rate
        self._t0 = time.monotonic()
        self._closed = threading.Event()

    def _wave(self, t: float, baseline: float, amplitude: float) -> float:
        p = self._pattern
        val = baseline + amplitude * math.sin(2 * math.pi * t / max(p.period_s, 1.0))
        return val + random.uniform(-1.0, 1.0) * amplitude * p.noise

    def readline(self) -> bytes:
        if self._closed.wait(self._sample_seconds):
            raise OSError("Simulated port closed")

        if self._failure_rate > 0.0 and random.random() < self._failure_rate:
            return b"{\"rainAnalog\": 51\n"

        p = self._pattern
        t = time.monotonic() - self._t0
        rain_analog = int(max(0.0, min(1023.0, self._wave(t, p.rain_baseline, p.rain_amplitude))))
        light_value = max(0.0, min(1023.0, self._wave(t, p.light_baseline, p.light_amplitude)))
        record = {
            "rainAnalog": rain_analog,
            "rainDigital": 0 if rain_analog < 500 else 1,
            "lightValue": round(light_value, 1),
            "lightPercentage": round(light_value / 1023.0 * 100.0, 1),
            "temperature": round(self._wave(t, p.temperature_baseline, p.temperature_amplitude), 2),
            "pressure": round(self._wave(t, p.pressure_baseline, p.pressure_amplitude), 1),
            "rain": round(max(0.0, 1023.0 - rain_analog), 1),
        }
        return (json.dumps(record) + "\n").encode("utf-8")

    def close(self) -> None:
        self._closed.set()


class SimulatedSerialBackend:
    """Stands in for the board during development (device_mode=sim)."""

    def __init__(
        self,
        sample_seconds: float = 2.0,
        failure_rate: float = 0.0,
        pattern: PatternConfig | None = None,
    ) -> None:
        self._sample_seconds = sample_seconds
        self._failure_rate = failure_rate
        self._pattern = pattern or PatternConfig()

    def list_ports(self) -> list[PortInfo]:
        return [SIM_PORT]

    def open(self, port: PortInfo, baudrate: int) -> SimulatedLineStream:
        return SimulatedLineStream(self._pattern, self._sample_seconds, self._failure_rate)
