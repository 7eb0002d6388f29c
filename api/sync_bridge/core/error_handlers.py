"""
Error handlers for failures the bridge raises itself.

Responses use the Matrix error shape ``{"errcode", "error"}`` so clients
parse bridge errors the same way as relayed homeserver errors. Upstream
errors never pass through here; the transport adapters write them back
unchanged.
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from sync_bridge.core.exceptions import BaseAppException

logger = logging.getLogger(__name__)


def matrix_error(errcode: str, message: str) -> dict:
    return {"errcode": errcode, "error": message}


async def base_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Render a bridge-raised exception as a Matrix error body."""
    logger.warning(
        f"Rejected {request.method} {request.url.path}: {exc.errcode} ({exc.status_code})"
    )
    return JSONResponse(
        status_code=exc.status_code,
        headers=exc.headers,
        content=matrix_error(exc.errcode, str(exc.detail)),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Details stay in the log
    logger.exception(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=matrix_error("M_UNKNOWN", "Internal server error"),
    )
