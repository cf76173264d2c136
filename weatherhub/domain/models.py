from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Reading:
    rain_analog: Optional[int] = None
    rain_digital: Optional[int] = None
    light_value: Optional[float] = None
    light_percentage: Optional[float] = None
    light_reading: Optional[str] = None
    temperature: Optional[float] = None  # deg C
    pressure: Optional[float] = None     # hPa
    rainfall: Optional[float] = None     # mm
    timestamp: Optional[datetime] = None

    @property
    def is_raining(self) -> Optional[bool]:
        # The rain module pulls its digital output low when wet
        if self.rain_digital is None:
            return None
        return self.rain_digital == 0

    def stamped(self, ts: datetime) -> Reading:
        return replace(self, timestamp=ts)


# wire key -> (attribute, numeric type)
NUMERIC_FIELDS: dict[str, tuple[str, type]] = {
    "rainAnalog": ("rain_analog", int),
    "rainDigital": ("rain_digital", int),
    "lightValue": ("light_value", float),
    "lightPercentage": ("light_percentage", float),
    "temperature": ("temperature", float),
    "pressure": ("pressure", float),
    "rain": ("rainfall", float),
}

REQUIRED_FIELDS: tuple[str, ...] = ("rainAnalog", "rainDigital", "lightValue", "lightPercentage")


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    DISCOVERING = "discovering"
    OPEN = "open"
    CLOSING = "closing"


class AlertKind(str, Enum):
    HIGH_TEMPERATURE = "high-temperature"
    HEAVY_PRECIPITATION = "heavy-precipitation"
    LOW_PRESSURE = "low-pressure"
