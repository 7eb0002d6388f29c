"""Shared bridge construction for the streaming endpoints.

Both the socket and event-stream endpoints resolve the credential, build
the per-connection Session and bind a homeserver client the same way;
only the cursor source differs, so it is passed in.
"""

from typing import Callable, Optional

from fastapi import Depends
from starlette.requests import HTTPConnection

from sync_bridge.core.config import Settings, get_settings
from sync_bridge.integrations.matrix.session import Session, resolve_access_token
from sync_bridge.integrations.matrix.sync_client import HomeserverClient
from sync_bridge.services.sync_bridge import SyncBridge

SyncClientFactory = Callable[[Session], HomeserverClient]


def get_sync_client_factory(
    connection: HTTPConnection, settings: Settings = Depends(get_settings)
) -> SyncClientFactory:
    """Dependency returning a factory that binds the shared HTTP pool to a session."""
    http = connection.app.state.http_client

    def factory(session: Session) -> HomeserverClient:
        return HomeserverClient(http, session, settings)

    return factory


def build_session(
    connection: HTTPConnection, settings: Settings, cursor: Optional[str]
) -> Session:
    params = connection.query_params
    return Session(
        api_base_url=settings.MATRIX_CLIENT_API_URL,
        access_token=resolve_access_token(
            connection.headers.get("authorization"), params.get("access_token")
        ),
        filter=params.get("filter", ""),
        presence=params.get("presence", ""),
        cursor=cursor or None,
    )


def open_bridge(
    connection: HTTPConnection,
    client_factory: SyncClientFactory,
    settings: Settings,
    cursor: Optional[str],
) -> SyncBridge:
    """Build the Session and SyncBridge for an accepted streaming request."""
    session = build_session(connection, settings, cursor)
    return SyncBridge(client_factory(session), session)
