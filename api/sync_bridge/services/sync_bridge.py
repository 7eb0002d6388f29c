"""Bridge loop: repeated /sync calls driving one streaming connection.

States: INIT -> STREAMING -> TERMINATED. ``open()`` runs the single
baseline sync; the owning transport adapter completes its handshake and
then consumes ``frames()``, which yields the baseline followed by one
result per successful long-poll. The loop stops on the first failure or
once ``signal_closed()`` has been called; the signal is only consulted
between cycles, after the previous frame has been fully written.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Optional

from sync_bridge.integrations.matrix.session import Session
from sync_bridge.integrations.matrix.sync_client import HomeserverClient, SyncResult

logger = logging.getLogger(__name__)


class BridgeState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class SyncBridge:
    """Per-connection bridge between the homeserver and a transport adapter.

    Attributes:
        client: Homeserver client bound to ``session``
        session: Connection state; ``session.cursor`` advances per success
        state: Current BridgeState
        failure: The result that terminated the bridge, if any
    """

    def __init__(self, client: HomeserverClient, session: Session):
        self.client = client
        self.session = session
        self.state = BridgeState.INIT
        self.failure: Optional[SyncResult] = None
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        """Whether the client side has gone away."""
        return self._closed.is_set()

    def signal_closed(self) -> None:
        """Called by the adapter's close observer; safe to call repeatedly."""
        self._closed.set()

    def terminate(self) -> None:
        if self.state is not BridgeState.TERMINATED:
            logger.debug(f"Bridge terminated at cursor {self.session.cursor!r}")
        self.state = BridgeState.TERMINATED

    def _advance(self, result: SyncResult) -> None:
        self.session.cursor = result.next_cursor

    def _fail(self, result: SyncResult) -> None:
        self.failure = result
        self.terminate()

    async def open(self) -> SyncResult:
        """Run the baseline sync.

        On success the bridge enters STREAMING and the cursor advances; the
        adapter must deliver the returned result as its first frame via
        ``frames()``. On failure the bridge is TERMINATED.

        Raises:
            RuntimeError: If the bridge has already been opened
        """
        if self.state is not BridgeState.INIT:
            raise RuntimeError(f"Bridge already opened (state={self.state.value})")

        result = await self.client.sync(initial=True)
        if not result.ok:
            self._fail(result)
            return result

        self._advance(result)
        self.state = BridgeState.STREAMING
        return result

    async def frames(self, initial: SyncResult) -> AsyncIterator[SyncResult]:
        """Yield the baseline result, then one result per successful long-poll.

        Ends silently when the client closes, or after recording ``failure``
        when a sync fails. No upstream call is made once TERMINATED.
        """
        if self.state is not BridgeState.STREAMING:
            return

        try:
            yield initial
            while not self.closed:
                result = await self.client.sync(initial=False)
                if result.ok:
                    self._advance(result)
                if self.closed:
                    # Client went away mid-poll; the result is dropped
                    return
                if not result.ok:
                    self._fail(result)
                    return
                yield result
        finally:
            self.terminate()
