"""Server-sent events: relays broadcaster events to connected clients."""

import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from clipshare.auth.dependencies import require_auth
from clipshare.config import get_settings
from clipshare.events.broadcaster import EventBroadcaster, Subscription

router = APIRouter(prefix="/api", tags=["events"], dependencies=[Depends(require_auth)])
log = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-store",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_broadcaster(request: Request) -> EventBroadcaster:
    """FastAPI dependency: the process-wide broadcaster created at startup."""
    return request.app.state.broadcaster


def format_sse(event: str, data: Dict[str, Any]) -> str:
    """One SSE frame: event name line, JSON data line, blank line."""
    return f"event: {event}\ndata: {json.dumps(data, separators=(',', ':'))}\n\n"


async def event_stream(sub: Subscription, heartbeat: float) -> AsyncIterator[str]:
    """`ready`, then every event as it comes, with a `ping` whenever `heartbeat` seconds pass idle."""
    try:
        yield format_sse("ready", {})
        while True:
            try:
                event = await sub.next(timeout=heartbeat)
            except StopAsyncIteration:
                break
            if event is None:
                yield format_sse("ping", {})
                continue
            yield format_sse(event.name, event.data)
    finally:
        sub.unsubscribe()
        log.debug("Event stream closed (dropped=%d)", sub.dropped)


@router.get("/events")
async def events(request: Request) -> StreamingResponse:
    """Long-lived text/event-stream of clipboard events."""
    broadcaster = get_broadcaster(request)
    sub = broadcaster.subscribe()
    heartbeat = get_settings().heartbeat_seconds
    log.info("Event stream opened (subscribers=%d)", broadcaster.subscriber_count)
    return StreamingResponse(
        event_stream(sub, heartbeat),
        media_type="text/event-stream; charset=utf-8",
        headers=SSE_HEADERS,
    )
