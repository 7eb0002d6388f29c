"""Matrix homeserver client components for the sync bridge.

Components:
    - Session: per-connection upstream location, credential and cursor
    - HomeserverClient: one /sync request per call, returning a tagged result
    - payload helpers: cursor extraction and raw-preserving field removal
"""

from sync_bridge.integrations.matrix.session import Session
from sync_bridge.integrations.matrix.sync_client import (
    HomeserverClient,
    SyncError,
    SyncErrorKind,
    SyncResult,
)

__all__ = [
    "Session",
    "HomeserverClient",
    "SyncError",
    "SyncErrorKind",
    "SyncResult",
]
