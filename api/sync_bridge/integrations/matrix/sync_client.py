"""Homeserver client for the Matrix client-server /sync API.

Each ``sync()`` call issues exactly one request and returns a
``SyncResult``. Failures are returned as tagged ``SyncError`` values rather
than raised, so callers relay them without inspecting exception types.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from urllib.parse import quote

import httpx

from sync_bridge.core.config import Settings
from sync_bridge.integrations.matrix.payload import CURSOR_FIELD
from sync_bridge.integrations.matrix.session import Session
from sync_bridge.metrics.bridge_metrics import (
    presence_updates_total,
    sync_requests_total,
)

logger = logging.getLogger(__name__)


class SyncErrorKind(str, Enum):
    """Failure classes of a sync call."""

    TRANSPORT = "transport"  # no response, or a non-2xx without a Matrix error body
    BUSINESS = "business"  # non-2xx carrying a Matrix {"errcode", "error"} body
    INTERNAL = "internal"  # 2xx the bridge cannot use


@dataclass(frozen=True)
class SyncError:
    """A classified sync failure.

    ``status_code``, ``content_type`` and ``body`` hold the upstream response
    as received, for relaying. ``detail`` is for logs only and is never sent
    to clients.
    """

    kind: SyncErrorKind
    status_code: int = 0
    content_type: str = ""
    body: bytes = b""
    errcode: Optional[str] = None
    message: Optional[str] = None
    detail: str = ""

    @classmethod
    def from_response(cls, response: httpx.Response) -> "SyncError":
        """Classify a non-2xx upstream response."""
        content_type = response.headers.get("content-type", "")
        body = response.content
        try:
            document = json.loads(body)
        except ValueError:
            document = None

        if isinstance(document, dict) and isinstance(document.get("errcode"), str):
            return cls(
                kind=SyncErrorKind.BUSINESS,
                status_code=response.status_code,
                content_type=content_type,
                body=body,
                errcode=document["errcode"],
                message=document.get("error"),
            )
        return cls(
            kind=SyncErrorKind.TRANSPORT,
            status_code=response.status_code,
            content_type=content_type,
            body=body,
        )

    @classmethod
    def unreachable(cls, detail: str) -> "SyncError":
        """Network failure before any response arrived."""
        return cls(
            kind=SyncErrorKind.TRANSPORT,
            status_code=502,
            content_type="text/plain; charset=utf-8",
            detail=detail,
        )

    @classmethod
    def internal(cls, detail: str) -> "SyncError":
        return cls(kind=SyncErrorKind.INTERNAL, detail=detail)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync call.

    On success ``payload`` is the response body exactly as received and
    ``next_cursor`` its ``next_batch`` value. On failure ``error`` is set.
    """

    payload: str = ""
    next_cursor: str = ""
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, payload: str, next_cursor: str) -> "SyncResult":
        return cls(payload=payload, next_cursor=next_cursor)

    @classmethod
    def failure(cls, error: SyncError) -> "SyncResult":
        return cls(error=error)


class HomeserverClient:
    """Issues /sync and presence requests for one session.

    The underlying ``httpx.AsyncClient`` is shared across connections for
    connection pooling; all per-connection state lives in ``session``.

    Example:
        client = HomeserverClient(http, session, settings)
        result = await client.sync(initial=True)
        if result.ok:
            session.cursor = result.next_cursor
    """

    def __init__(self, http: httpx.AsyncClient, session: Session, settings: Settings):
        self.http = http
        self.session = session
        self.sync_timeout_ms = settings.SYNC_TIMEOUT_MS
        self.initial_sync_timeout_ms = settings.INITIAL_SYNC_TIMEOUT_MS

    def _url(self, path: str) -> str:
        return f"{self.session.api_base_url}/{path.lstrip('/')}"

    def _auth_headers(self) -> Dict[str, str]:
        if not self.session.access_token:
            return {}
        return {"Authorization": f"Bearer {self.session.access_token}"}

    def _sync_params(self, initial: bool) -> Dict[str, str]:
        timeout = self.initial_sync_timeout_ms if initial else self.sync_timeout_ms
        params = {"timeout": str(timeout)}
        if self.session.cursor:
            params["since"] = self.session.cursor
        if self.session.filter:
            params["filter"] = self.session.filter
        if self.session.presence:
            params["set_presence"] = self.session.presence
        return params

    async def sync(self, initial: bool) -> SyncResult:
        """Run one /sync request against the session's current cursor.

        Args:
            initial: True for the baseline snapshot (no server-side wait),
                False for a long-poll that blocks until new data or timeout

        Returns:
            SyncResult with the raw body and next cursor, or a classified error
        """
        mode = "initial" if initial else "longpoll"
        try:
            response = await self.http.get(
                self._url("/sync"),
                params=self._sync_params(initial),
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Sync request failed before a response ({mode}): {e!r}")
            sync_requests_total.labels(mode=mode, result="transport_error").inc()
            return SyncResult.failure(SyncError.unreachable(repr(e)))

        if not response.is_success:
            error = SyncError.from_response(response)
            logger.info(
                "Homeserver rejected %s sync: status=%d errcode=%s",
                mode,
                response.status_code,
                error.errcode,
            )
            sync_requests_total.labels(mode=mode, result=f"{error.kind.value}_error").inc()
            return SyncResult.failure(error)

        try:
            document = json.loads(response.content)
        except ValueError as e:
            logger.error(f"Undecodable {mode} sync response: {e}")
            sync_requests_total.labels(mode=mode, result="internal_error").inc()
            return SyncResult.failure(SyncError.internal(f"undecodable body: {e}"))

        cursor = document.get(CURSOR_FIELD) if isinstance(document, dict) else None
        if not isinstance(cursor, str) or not cursor:
            logger.error(f"Sync response without a usable {CURSOR_FIELD} ({mode})")
            sync_requests_total.labels(mode=mode, result="internal_error").inc()
            return SyncResult.failure(SyncError.internal(f"missing {CURSOR_FIELD}"))

        sync_requests_total.labels(mode=mode, result="success").inc()
        return SyncResult.success(response.text, cursor)

    async def _whoami(self) -> str:
        if self.session.user_id is None:
            response = await self.http.get(
                self._url("/account/whoami"), headers=self._auth_headers()
            )
            response.raise_for_status()
            self.session.user_id = response.json()["user_id"]
        return self.session.user_id

    async def update_presence(self, presence: str) -> bool:
        """Set the user's presence once, outside the sync cycle.

        Failures are logged and reported as False; they never affect the
        bridge.

        Args:
            presence: Matrix presence state, e.g. "online" or "unavailable"

        Returns:
            True if the homeserver accepted the update
        """
        try:
            user_id = await self._whoami()
            response = await self.http.put(
                self._url(f"/presence/{quote(user_id, safe='')}/status"),
                json={"presence": presence},
                headers=self._auth_headers(),
            )
            response.raise_for_status()
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Presence update to {presence!r} failed: {e!r}")
            presence_updates_total.labels(result="failure").inc()
            return False

        presence_updates_total.labels(result="success").inc()
        return True
