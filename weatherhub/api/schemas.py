from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel


class IngestResponse(BaseModel):
    ok: bool = True
    timestamp: datetime
