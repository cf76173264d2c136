from __future__ import annotations
from dataclasses import asdict
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .models import Reading


class WireReading(BaseModel):
    """Reading as the dashboard sees it (camelCase keys, absent fields omitted)."""

    model_config = ConfigDict(populate_by_name=True)

    rain_analog: Optional[int] = Field(default=None, alias="rainAnalog")
    rain_digital: Optional[int] = Field(default=None, alias="rainDigital")
    light_value: Optional[float] = Field(default=None, alias="lightValue")
    light_percentage: Optional[float] = Field(default=None, alias="lightPercentage")
    light_reading: Optional[str] = Field(default=None, alias="lightReading")
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    rainfall: Optional[float] = Field(default=None, alias="rain")
    timestamp: Optional[datetime] = None

    @classmethod
    def from_reading(cls, reading: Reading) -> WireReading:
        return cls(**asdict(reading))

    def to_reading(self) -> Reading:
        return Reading(**self.model_dump())


class _WireEvent(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class DataEvent(_WireEvent):
    type: Literal["data"] = "data"
    payload: WireReading

    @classmethod
    def of(cls, reading: Reading) -> DataEvent:
        return cls(payload=WireReading.from_reading(reading))


class StatusEvent(_WireEvent):
    type: Literal["status"] = "status"
    connected: bool


class ErrorEvent(_WireEvent):
    type: Literal["error"] = "error"
    message: str


WireEvent = Union[DataEvent, StatusEvent, ErrorEvent]


_EVENT_ADAPTER: TypeAdapter[WireEvent] = TypeAdapter(Annotated[WireEvent, Field(discriminator="type")])


def decode_event(text: str) -> WireEvent:
    """Subscriber-side decoder for any wire event."""
    return _EVENT_ADAPTER.validate_json(text)
