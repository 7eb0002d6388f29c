"""WebSocket transport for the sync bridge.

The baseline sync runs before the upgrade: an upstream rejection is
answered as a plain HTTP response and the handshake never happens. After
the upgrade every sync response is sent as one text frame, unmodified,
with ``next_batch`` left inline.

Clients may send JSON control frames::

    {"id": "1", "method": "update_presence", "params": {"presence": "online"}}
    {"id": "2", "method": "ping"}

Frames carrying an ``id`` get a reply, ``{"id", "result"}`` or
``{"id", "error": {"errcode", "error"}}``. Unparseable frames are logged
and dropped; they never close the connection.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Depends, WebSocket, status
from starlette.websockets import WebSocketDisconnect, WebSocketState

from sync_bridge.core.config import Settings, get_settings
from sync_bridge.core.exceptions import WebSocketUpgradeRequiredError
from sync_bridge.integrations.matrix.sync_client import SyncResult
from sync_bridge.metrics.bridge_metrics import (
    bridge_connections_total,
    frames_emitted_total,
    inbound_frames_total,
    track_active,
)
from sync_bridge.routes._connection import (
    SyncClientFactory,
    get_sync_client_factory,
    open_bridge,
)
from sync_bridge.services.error_classifier import ClassifiedError, classify, error_response
from sync_bridge.services.sync_bridge import SyncBridge

router = APIRouter()
logger = logging.getLogger(__name__)

TRANSPORT = "websocket"
DENIAL_EXTENSION = "websocket.http.response"


class SocketConnection:
    """Drives one upgraded WebSocket: sync frames out, control frames in.

    Outbound sync frames and control replies share one lock so frames are
    never interleaved. A reader task watches for the client closing and
    signals the bridge, which stops before its next long-poll.
    """

    def __init__(self, websocket: WebSocket, bridge: SyncBridge):
        self.websocket = websocket
        self.bridge = bridge
        self._send_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def serve(self, initial: SyncResult) -> None:
        reader = asyncio.create_task(self._read_inbound())
        try:
            with track_active(TRANSPORT):
                async for result in self.bridge.frames(initial):
                    if not await self._send_text(result.payload):
                        break
                    frames_emitted_total.labels(transport=TRANSPORT).inc()
        finally:
            self.bridge.terminate()
            reader.cancel()
            for task in self._pending:
                task.cancel()

        if self.bridge.failure is not None:
            error = self.bridge.failure.error
            logger.warning(
                f"Closing websocket after sync failure: kind={error.kind.value} "
                f"status={error.status_code}"
            )
            await self._close(status.WS_1011_INTERNAL_ERROR, "upstream sync failed")

    async def _send_text(self, text: str) -> bool:
        async with self._send_lock:
            if self.websocket.application_state != WebSocketState.CONNECTED:
                return False
            try:
                await self.websocket.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.info(f"Websocket send failed, treating as closed: {e!r}")
                self.bridge.signal_closed()
                return False
            return True

    async def _close(self, code: int, reason: str) -> None:
        async with self._send_lock:
            if (
                self.websocket.application_state != WebSocketState.CONNECTED
                or self.websocket.client_state != WebSocketState.CONNECTED
            ):
                return
            try:
                await self.websocket.close(code=code, reason=reason)
            except (RuntimeError, OSError):
                logger.debug("Websocket already closed", exc_info=True)

    async def _read_inbound(self) -> None:
        try:
            while True:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"Remote closed websocket (code={message.get('code')})")
                    return
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is not None:
                    await self._handle_frame(raw)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.info(f"Websocket receive ended: {e!r}")
        finally:
            self.bridge.signal_closed()

    async def _handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = None
        if not isinstance(frame, dict) or not isinstance(frame.get("method"), str):
            logger.warning(f"Discarding unparseable control frame: {raw[:200]!r}")
            inbound_frames_total.labels(method="invalid", result="discarded").inc()
            return

        request_id = frame.get("id")
        method = frame["method"]
        params = frame.get("params") if isinstance(frame.get("params"), dict) else {}

        if method == "ping":
            inbound_frames_total.labels(method=method, result="ok").inc()
            await self._reply(request_id, result={})
        elif method == "update_presence":
            presence = params.get("presence")
            if not isinstance(presence, str) or not presence:
                inbound_frames_total.labels(method=method, result="invalid").inc()
                await self._reply(
                    request_id,
                    error={"errcode": "M_INVALID_PARAM", "error": "Missing presence"},
                )
                return
            # Presence runs beside the sync loop and never blocks it
            task = asyncio.create_task(self._update_presence(request_id, presence))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            logger.info(f"Unknown control method {method!r}")
            inbound_frames_total.labels(method="unknown", result="rejected").inc()
            await self._reply(
                request_id,
                error={"errcode": "M_UNRECOGNIZED", "error": f"Unknown method {method}"},
            )

    async def _update_presence(self, request_id: Any, presence: str) -> None:
        if await self.bridge.client.update_presence(presence):
            inbound_frames_total.labels(method="update_presence", result="ok").inc()
            await self._reply(request_id, result={})
        else:
            inbound_frames_total.labels(method="update_presence", result="failed").inc()
            await self._reply(
                request_id,
                error={"errcode": "M_UNKNOWN", "error": "Presence update failed"},
            )

    async def _reply(
        self,
        request_id: Any,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, str]] = None,
    ) -> None:
        if request_id is None:
            return
        reply: Dict[str, Any] = {"id": request_id}
        if error is not None:
            reply["error"] = error
        else:
            reply["result"] = result or {}
        await self._send_text(json.dumps(reply))


def negotiate_subprotocol(websocket: WebSocket, supported: str) -> Optional[str]:
    """Select the bridge's sub-protocol if the client offered it."""
    offered = websocket.scope.get("subprotocols") or []
    return supported if supported in offered else None


async def deny(websocket: WebSocket, classified: ClassifiedError) -> None:
    """Answer the handshake with a plain HTTP response instead of upgrading."""
    if DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(error_response(classified))
        return
    # Without the extension the server can only refuse the handshake (HTTP 403)
    logger.warning("Server lacks websocket denial responses; refusing handshake")
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)


@router.get("/stream", include_in_schema=False)
async def stream_without_upgrade(settings: Settings = Depends(get_settings)):
    """Plain GET on the socket endpoint; POST and friends get 405 from routing."""
    raise WebSocketUpgradeRequiredError(settings.WS_SUBPROTOCOL)


@router.websocket("/stream")
async def serve_stream(
    websocket: WebSocket,
    settings: Settings = Depends(get_settings),
    client_factory: SyncClientFactory = Depends(get_sync_client_factory),
) -> None:
    logger.info(f"Got websocket request to {websocket.url.path}")

    bridge = open_bridge(
        websocket, client_factory, settings, websocket.query_params.get("since")
    )
    initial = await bridge.open()
    if not initial.ok:
        bridge_connections_total.labels(transport=TRANSPORT, result="rejected").inc()
        await deny(websocket, classify(initial))
        return

    await websocket.accept(
        subprotocol=negotiate_subprotocol(websocket, settings.WS_SUBPROTOCOL)
    )
    bridge_connections_total.labels(transport=TRANSPORT, result="accepted").inc()
    await SocketConnection(websocket, bridge).serve(initial)
