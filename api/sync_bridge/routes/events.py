"""Text-event-stream (EventSource) transport for the sync bridge.

GET /events answers with one ``sync`` event per successful sync cycle:

    id: <next_batch>
    event: sync
    data: <sync response without next_batch>

The cursor travels in the event id, so a reconnecting EventSource resumes
through ``Last-Event-ID`` on its own. There is no inbound channel; filter
and presence come from the request parameters only.

A sync failure after the first event ends the response body without
writing an error record. The reconnecting EventSource then runs a fresh
baseline sync, which relays the upstream status and body as a plain HTTP
response.
"""

import asyncio
import logging
import re
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response, StreamingResponse

from sync_bridge.core.config import Settings, get_settings
from sync_bridge.integrations.matrix.payload import CURSOR_FIELD, strip_field
from sync_bridge.integrations.matrix.session import resolve_cursor
from sync_bridge.integrations.matrix.sync_client import SyncResult
from sync_bridge.metrics.bridge_metrics import (
    bridge_connections_total,
    frames_emitted_total,
    track_active,
)
from sync_bridge.routes._connection import (
    SyncClientFactory,
    get_sync_client_factory,
    open_bridge,
)
from sync_bridge.services.error_classifier import classify, error_response
from sync_bridge.services.sync_bridge import SyncBridge

router = APIRouter()
logger = logging.getLogger(__name__)

TRANSPORT = "event_stream"
EVENT_NAME = "sync"

# Event-stream line terminators only; JSON strings may carry U+2028, U+2029 or U+0085 unescaped
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

EVENT_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "X-Accel-Buffering": "no",  # disable proxy buffering
}


def format_sync_event(cursor: str, payload: str) -> str:
    """Render one sync result as an event-stream record.

    The cursor moves into the ``id`` line and is removed from the data.
    A payload spanning several lines becomes several ``data:`` lines, which
    EventSource joins back with newlines.
    """
    data = strip_field(payload, CURSOR_FIELD)
    data_lines = "".join(f"data: {line}\n" for line in _LINE_BREAK.split(data))
    return f"id: {cursor}\nevent: {EVENT_NAME}\n{data_lines}\n"


async def watch_disconnect(
    request: Request, bridge: SyncBridge, poll_interval: float
) -> None:
    """Signal the bridge once the client has gone away.

    Runs beside the stream; it never interrupts an in-flight long-poll, the
    bridge only stops before starting the next one.
    """
    while not bridge.closed:
        if await request.is_disconnected():
            logger.info("Remote closed event stream")
            bridge.signal_closed()
            return
        await asyncio.sleep(poll_interval)


async def stream_events(
    request: Request, bridge: SyncBridge, initial: SyncResult, poll_interval: float
) -> AsyncIterator[str]:
    watcher = asyncio.create_task(watch_disconnect(request, bridge, poll_interval))
    try:
        with track_active(TRANSPORT):
            async for result in bridge.frames(initial):
                try:
                    event = format_sync_event(result.next_cursor, result.payload)
                except ValueError:
                    logger.exception("Could not rewrite sync payload for event stream")
                    return
                yield event
                frames_emitted_total.labels(transport=TRANSPORT).inc()
    finally:
        watcher.cancel()
        bridge.terminate()
        if bridge.failure is not None and bridge.failure.error is not None:
            error = bridge.failure.error
            logger.warning(
                f"Event stream ended by sync failure: kind={error.kind.value} "
                f"status={error.status_code}"
            )


@router.get("/events")
async def serve_events(
    request: Request,
    settings: Settings = Depends(get_settings),
    client_factory: SyncClientFactory = Depends(get_sync_client_factory),
) -> Response:
    """Bridge /sync to an event stream.

    The baseline sync runs before any streaming header is sent, so an
    upstream rejection is returned as a plain HTTP response with the
    homeserver's own status, content type and body.
    """
    logger.info("Got new EventSource request")

    cursor = resolve_cursor(
        request.headers.get("last-event-id"), request.query_params.get("since")
    )
    logger.info(f"Identified sync token: {cursor!r}")

    bridge = open_bridge(request, client_factory, settings, cursor)
    initial = await bridge.open()
    if not initial.ok:
        bridge_connections_total.labels(transport=TRANSPORT, result="rejected").inc()
        return error_response(classify(initial))

    bridge_connections_total.labels(transport=TRANSPORT, result="accepted").inc()
    return StreamingResponse(
        stream_events(request, bridge, initial, settings.DISCONNECT_POLL_INTERVAL),
        media_type="text/event-stream",
        headers=EVENT_STREAM_HEADERS,
    )
