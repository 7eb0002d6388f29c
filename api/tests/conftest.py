"""
Pytest configuration and fixtures for the sync bridge.

This module provides:
- Test settings with an isolated homeserver URL
- A session bound to the test homeserver
- A FastAPI test client wired to a scripted homeserver client
"""

from typing import Any, List

import pytest
from fastapi.testclient import TestClient

from sync_bridge.core.config import Settings
from sync_bridge.integrations.matrix.session import Session
from sync_bridge.integrations.matrix.sync_client import SyncResult
from tests.support import HOMESERVER, ScriptedClientFactory


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the developer's environment."""
    return Settings(
        DEBUG=True,
        ENVIRONMENT="testing",
        MATRIX_HOMESERVER_URL=HOMESERVER,
        SYNC_TIMEOUT_MS=30000,
        INITIAL_SYNC_TIMEOUT_MS=0,
        DISCONNECT_POLL_INTERVAL=0.05,
    )


@pytest.fixture
def session() -> Session:
    return Session(
        api_base_url=f"{HOMESERVER}/_matrix/client/r0", access_token="syt_test_token"
    )


@pytest.fixture
def make_test_client(test_settings: Settings):
    """Build a TestClient whose bridges replay the given sync results.

    Returns:
        Callable taking the scripted results (and client options), returning
        (TestClient, ScriptedClientFactory)
    """
    from sync_bridge.core.config import get_settings
    from sync_bridge.main import app
    from sync_bridge.routes._connection import get_sync_client_factory

    def _make(results: List[SyncResult], **client_kwargs: Any):
        factory = ScriptedClientFactory(results, **client_kwargs)
        app.dependency_overrides[get_settings] = lambda: test_settings
        app.dependency_overrides[get_sync_client_factory] = lambda: factory
        return TestClient(app), factory

    yield _make
    app.dependency_overrides.clear()
