from __future__ import annotations

import json
import math
import re
from typing import Any, Iterable, Mapping

from .errors import InvalidValue, MalformedPayload, MissingField, PatternMismatch
from .models import NUMERIC_FIELDS, REQUIRED_FIELDS, Reading

# SQLite INTEGER range
INT_MIN, INT_MAX = -(2 ** 63), 2 ** 63 - 1

RAIN_PATTERN = re.compile(r"Rain Sensor - Analog Value:\s*(\S+)\s+Digital Value:\s*(\S+)")
LIGHT_PATTERN = re.compile(r"Light Sensor - Reading:\s*(\w+)\s+Light Level:\s*([^\s%]+)%")


def _coerce(key: str, value: Any, typ: type) -> int | float:
    # JSON true/false are ints to Python; they are not sensor values
    if isinstance(value, bool):
        raise InvalidValue(f"{key} is not numeric", field=key)

    if typ is int:
        if isinstance(value, int):
            out = value
        elif isinstance(value, float) and math.isfinite(value) and value.is_integer():
            out = int(value)
        elif isinstance(value, str):
            try:
                out = int(value.strip())
            except ValueError:
                raise InvalidValue(f"{key} is not an integer", field=key) from None
        else:
            raise InvalidValue(f"{key} is not an integer", field=key)
        if not INT_MIN <= out <= INT_MAX:
            raise InvalidValue(f"{key} is out of range", field=key)
        return out

    if isinstance(value, (int, float)):
        try:
            out = float(value)
        except OverflowError:
            raise InvalidValue(f"{key} is out of range", field=key) from None
    elif isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            raise InvalidValue(f"{key} is not a number", field=key) from None
    else:
        raise InvalidValue(f"{key} is not a number", field=key)

    if not math.isfinite(out):
        raise InvalidValue(f"{key} is not a finite number", field=key)
    return out


class LineParser:
    """
    Turns one newline-stripped line of device output into a Reading.

    Two payload shapes are understood:
      - JSON objects, e.g. {"rainAnalog": 812, "rainDigital": 1, ...}
      - the free-text report printed by the stock sketch, e.g.
        "Rain Sensor - Analog Value: 812 Digital Value: 1 Light Sensor - Reading: Bright Light Level: 71.5%"

    parse() raises a ParseFailure subclass and never returns partial data.
    It does not stamp the reading; the ingestion boundary does.
    """

    def __init__(self, required_fields: Iterable[str] = REQUIRED_FIELDS) -> None:
        self.required_fields = tuple(required_fields)
        unknown = [k for k in self.required_fields if k not in NUMERIC_FIELDS]
        if unknown:
            raise ValueError(f"Unknown required fields: {unknown}")

    def parse(self, raw_line: str) -> Reading:
        line = raw_line.strip()
        if line.startswith("{"):
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise MalformedPayload(f"Payload is not valid JSON: {e.msg}") from None
            except (ValueError, RecursionError) as e:
                # oversized integer literals, pathological nesting
                raise MalformedPayload(f"Payload could not be decoded: {type(e).__name__}") from None
            return self.parse_record(record)
        return self._parse_text(line)

    def parse_record(self, record: Mapping[str, Any]) -> Reading:
        for key in self.required_fields:
            if record.get(key) is None:
                raise MissingField(f"Missing required field: {key}", field=key)

        values: dict[str, int | float] = {}
        for key, (attr, typ) in NUMERIC_FIELDS.items():
            raw = record.get(key)
            if raw is None:
                continue
            values[attr] = _coerce(key, raw, typ)

        return Reading(**values)

    def _parse_text(self, line: str) -> Reading:
        rain = RAIN_PATTERN.search(line)
        light = LIGHT_PATTERN.search(line)
        if not rain or not light:
            raise PatternMismatch("Line does not contain both rain and light reports")

        return Reading(
            rain_analog=int(_coerce("rainAnalog", rain.group(1), int)),
            rain_digital=int(_coerce("rainDigital", rain.group(2), int)),
            light_reading=light.group(1),
            light_percentage=float(_coerce("lightPercentage", light.group(2), float)),
        )
