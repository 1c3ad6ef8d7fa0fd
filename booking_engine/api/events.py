"""
Server-Sent Events endpoint for real-time booking notifications
"""
import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .. import config
from ..interfaces import EventBus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["events"])


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def event_generator(
    bus: EventBus,
    heartbeat_seconds: Optional[float] = None,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None
) -> AsyncIterator[str]:
    """
    Stream bus events to one viewer.

    Sends a connection-established message first, then every published event,
    and a ping whenever nothing was published for `heartbeat_seconds`.
    """
    heartbeat = heartbeat_seconds or config.SSE_HEARTBEAT_SECONDS
    queue = bus.subscribe()

    try:
        yield _sse({"type": "connection_established", "message": "SSE connected successfully"})

        while True:
            if is_disconnected and await is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
                yield _sse(event)
            except asyncio.TimeoutError:
                yield _sse({"type": "ping"})

    finally:
        bus.unsubscribe(queue)


@router.get("/events")
async def booking_event_stream(request: Request):
    """Server-Sent Events stream of booking notifications"""
    bus: EventBus = request.app.state.event_bus

    return StreamingResponse(
        event_generator(bus, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable nginx buffering
        }
    )
