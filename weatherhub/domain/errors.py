from __future__ import annotations

from typing import Optional


class ParseFailure(ValueError):
    """A raw device line that could not become a Reading."""

    kind = "parse_failure"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class MalformedPayload(ParseFailure):
    kind = "malformed_payload"


class MissingField(ParseFailure):
    kind = "missing_field"


class PatternMismatch(ParseFailure):
    kind = "pattern_mismatch"


class InvalidValue(ParseFailure):
    kind = "invalid_value"


class LinkFailure(RuntimeError):
    """Device link could not be opened or dropped while open."""


class DeviceNotFound(LinkFailure):
    pass


class SendError(RuntimeError):
    pass


class DeliveryError(RuntimeError):
    pass


class StorageError(RuntimeError):
    pass
