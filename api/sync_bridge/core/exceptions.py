"""
Exceptions for requests the bridge rejects on its own.

Upstream sync failures are not raised: they travel as tagged values
(see ``sync_bridge.integrations.matrix.sync_client``) and are relayed
verbatim.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BaseAppException(HTTPException):
    """Base exception for bridge errors, carrying a Matrix ``errcode``."""

    errcode = "M_UNKNOWN"

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers: Optional[Dict[str, Any]] = None,
        errcode: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if errcode is not None:
            self.errcode = errcode


class WebSocketUpgradeRequiredError(BaseAppException):
    """Plain HTTP request to the socket endpoint."""

    errcode = "M_UNRECOGNIZED"

    def __init__(self, subprotocol: str):
        super().__init__(
            "This endpoint only accepts WebSocket connections",
            status.HTTP_426_UPGRADE_REQUIRED,
            headers={"Upgrade": "websocket", "Sec-WebSocket-Protocol": subprotocol},
        )
