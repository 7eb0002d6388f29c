"""Scripted homeserver doubles and sync-result builders shared by tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from sync_bridge.integrations.matrix.session import Session
from sync_bridge.integrations.matrix.sync_client import (
    SyncError,
    SyncErrorKind,
    SyncResult,
)

HOMESERVER = "https://matrix.test"


def sync_payload(cursor: str, **fields: Any) -> str:
    """Compact /sync body with ``next_batch`` first, as Synapse sends it."""
    document: Dict[str, Any] = {"next_batch": cursor}
    document.update(fields)
    return json.dumps(document, separators=(",", ":"))


def sync_ok(cursor: str, **fields: Any) -> SyncResult:
    return SyncResult.success(sync_payload(cursor, **fields), cursor)


def business_error(
    status_code: int = 403, errcode: str = "M_FORBIDDEN", message: str = "Forbidden"
) -> SyncResult:
    body = json.dumps({"errcode": errcode, "error": message}).encode()
    return SyncResult.failure(
        SyncError(
            kind=SyncErrorKind.BUSINESS,
            status_code=status_code,
            content_type="application/json",
            body=body,
            errcode=errcode,
            message=message,
        )
    )


def transport_error(status_code: int = 502, body: bytes = b"") -> SyncResult:
    return SyncResult.failure(
        SyncError(
            kind=SyncErrorKind.TRANSPORT,
            status_code=status_code,
            content_type="text/html",
            body=body,
        )
    )


def internal_error(detail: str = "missing next_batch") -> SyncResult:
    return SyncResult.failure(SyncError.internal(detail))


class ScriptedHomeserverClient:
    """Replays a fixed list of sync results.

    Once the script runs out, ``sync`` waits ``park_seconds`` and returns
    ``park_result`` (a 504 by default), so a bridge under test always
    terminates on its own.

    Attributes:
        calls: (initial, cursor sent) for every sync call, in order
        presence_updates: presence values passed to update_presence
    """

    def __init__(
        self,
        session: Session,
        results: List[SyncResult],
        presence_ok: bool = True,
        park_seconds: float = 0.5,
        park_result: Optional[SyncResult] = None,
    ):
        self.session = session
        self.results = list(results)
        self.presence_ok = presence_ok
        self.park_seconds = park_seconds
        self.park_result = park_result
        self.calls: List[Tuple[bool, Optional[str]]] = []
        self.presence_updates: List[str] = []

    async def sync(self, initial: bool) -> SyncResult:
        self.calls.append((initial, self.session.cursor))
        if self.results:
            return self.results.pop(0)
        await asyncio.sleep(self.park_seconds)
        return self.park_result or transport_error(504)

    async def update_presence(self, presence: str) -> bool:
        self.presence_updates.append(presence)
        return self.presence_ok


class ScriptedClientFactory:
    """Stands in for ``get_sync_client_factory``; records every client built."""

    def __init__(self, results: List[SyncResult], **client_kwargs: Any):
        self.results = results
        self.client_kwargs = client_kwargs
        self.clients: List[ScriptedHomeserverClient] = []

    def __call__(self, session: Session) -> ScriptedHomeserverClient:
        client = ScriptedHomeserverClient(session, self.results, **self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def client(self) -> ScriptedHomeserverClient:
        assert self.clients, "no bridge was built"
        return self.clients[-1]
