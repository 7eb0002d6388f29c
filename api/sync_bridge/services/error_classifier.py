"""Turns sync failures into the (status, content type, body) a client sees.

Upstream errors are relayed exactly as received so clients keep the
homeserver's own error contract. Anything the bridge cannot classify
collapses into one fixed internal-error response with no diagnostics.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi.responses import Response

from sync_bridge.integrations.matrix.sync_client import SyncErrorKind, SyncResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifiedError:
    status_code: int
    content_type: str
    body: bytes


INTERNAL_ERROR = ClassifiedError(
    status_code=500,
    content_type="text/plain; charset=utf-8",
    body=b"Internal Server Error",
)


def classify(result: Optional[SyncResult]) -> ClassifiedError:
    """Map a failed sync result to the response relayed to the client."""
    error = result.error if result is not None else None
    if error is None:
        logger.error("Asked to classify a result that carries no error")
        return INTERNAL_ERROR

    if error.kind in (SyncErrorKind.TRANSPORT, SyncErrorKind.BUSINESS):
        return ClassifiedError(
            status_code=error.status_code,
            content_type=error.content_type,
            body=error.body,
        )
    if error.kind is SyncErrorKind.INTERNAL:
        logger.error(f"Internal sync failure: {error.detail}")
        return INTERNAL_ERROR

    logger.error(f"Unclassifiable sync failure kind: {error.kind!r}")
    return INTERNAL_ERROR


def error_response(classified: ClassifiedError) -> Response:
    """Build a plain HTTP response carrying the classified error verbatim."""
    # Set the header directly: media_type would get a charset appended
    headers = {"content-type": classified.content_type} if classified.content_type else None
    return Response(
        content=classified.body,
        status_code=classified.status_code,
        headers=headers,
    )
