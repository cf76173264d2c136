from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..core.config import settings
from ..domain.errors import ParseFailure, SendError
from ..domain.events import WireReading
from ..services.hub import BroadcastHub
from ..services.pipeline import INVALID_DATA_MESSAGE, PipelineCoordinator
from ..storage.sqlite_repo import SQLiteRepository
from .schemas import IngestResponse

logger = logging.getLogger(__name__)

router = APIRouter()
ws_router = APIRouter()


# --- Dependency getters: components live on app.state, built in the lifespan ---
def get_pipeline(request: Request) -> PipelineCoordinator:
    return request.app.state.pipeline


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


def get_repo(request: Request) -> SQLiteRepository:
    return request.app.state.repo


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the hub's subscriber transport."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws

    async def send(self, text: str) -> None:
        if self._ws.application_state is not WebSocketState.CONNECTED:
            raise SendError("WebSocket is not connected")
        try:
            await self._ws.send_text(text)
        except (RuntimeError, OSError) as e:
            raise SendError(str(e)) from e

    async def close(self) -> None:
        if self._ws.application_state is WebSocketState.CONNECTED:
            await self._ws.close()


@ws_router.websocket("/")
@ws_router.websocket("/ws")
async def subscribe(ws: WebSocket):
    hub: BroadcastHub = ws.app.state.hub
    await ws.accept()
    client = f"{ws.client.host}:{ws.client.port}" if ws.client else "?"
    logger.info("New client connected from %s", client)

    sub = hub.subscribe(WebSocketTransport(ws))
    try:
        # inbound messages are ignored; receiving just detects the close
        while sub.alive:
            msg = await ws.receive()
            if msg["type"] == "websocket.disconnect":
                break
    except (WebSocketDisconnect, RuntimeError):
        # RuntimeError: the hub already closed this socket
        pass
    finally:
        logger.info("Client %s disconnected", client)
        hub.unsubscribe(sub)


def _reading_out(r) -> dict:
    return WireReading.from_reading(r).model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/live")
async def get_live(
    svc: PipelineCoordinator = Depends(get_pipeline),
    hub: BroadcastHub = Depends(get_hub),
):
    link = svc.link
    port = link.port
    return {
        "app": settings.app_name,
        "link": {
            "state": link.status.value,
            "connected": link.is_open,
            "port": port.device if port else None,
        },
        "subscribers": hub.subscriber_count,
        "counters": {
            "accepted": svc.live.accepted,
            "rejected": svc.live.rejected,
            "reconnects": svc.live.reconnects,
        },
        "last_error": svc.live.last_error,
        "latest": _reading_out(svc.live.latest) if svc.live.latest else None,
    }


@router.post("/weather", response_model=IngestResponse)
async def post_weather(
    record: dict[str, Any] = Body(...),
    svc: PipelineCoordinator = Depends(get_pipeline),
):
    try:
        reading = await svc.ingest_record(record)
    except ParseFailure:
        raise HTTPException(status_code=422, detail=INVALID_DATA_MESSAGE)
    return IngestResponse(timestamp=reading.timestamp)


@router.get("/weather")
async def get_weather(svc: PipelineCoordinator = Depends(get_pipeline)):
    latest = svc.live.latest
    return [_reading_out(latest)] if latest else []


def _as_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


@router.get("/weather/history")
async def weather_history(
    limit: int = Query(default=50, ge=1, le=5000),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    repo: SQLiteRepository = Depends(get_repo),
):
    rows = await repo.query_readings(_as_utc(start), _as_utc(end), limit=limit)
    return [_reading_out(r) for r in rows]
