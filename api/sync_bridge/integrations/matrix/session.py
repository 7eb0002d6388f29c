"""Per-connection session state and request-metadata resolution."""

from dataclasses import dataclass
from typing import Optional

BEARER_PREFIX = "Bearer "


@dataclass
class Session:
    """State for one streaming connection.

    Lives exactly as long as the connection. ``cursor`` is only advanced by
    the bridge loop after a successful sync; ``user_id`` is filled lazily by
    the first presence update.

    Attributes:
        api_base_url: Client-server API root, e.g. ``https://hs/_matrix/client/r0``
        access_token: Credential forwarded upstream (may be empty)
        filter: Filter id or inline JSON, passed through untouched
        presence: ``set_presence`` override, passed through untouched
        cursor: Current ``next_batch`` resumption token
    """

    api_base_url: str
    access_token: str = ""
    filter: str = ""
    presence: str = ""
    cursor: Optional[str] = None
    user_id: Optional[str] = None

    def __repr__(self) -> str:
        # Keep the credential out of logs and tracebacks
        return (
            f"Session(api_base_url={self.api_base_url!r}, "
            f"filter={self.filter!r}, presence={self.presence!r}, "
            f"cursor={self.cursor!r})"
        )


def resolve_access_token(
    authorization: Optional[str], access_token_param: Optional[str]
) -> str:
    """Pick the credential for a request.

    A ``Bearer`` Authorization header wins over the ``access_token``
    parameter. Any other header value is ignored.
    """
    if authorization and authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX) :].strip()
    return access_token_param or ""


def resolve_cursor(
    last_event_id: Optional[str], since_param: Optional[str]
) -> Optional[str]:
    """Pick the resumption cursor for an event-stream request.

    ``Last-Event-ID`` is set by an EventSource that is reconnecting on its
    own; it must win over ``since`` so a stale manual resumption point never
    rewinds an automatic reconnect.
    """
    if last_event_id:
        return last_event_id
    return since_param or None
