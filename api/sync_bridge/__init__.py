"""Matrix sync bridge: streams homeserver /sync results over WebSocket and SSE."""

__version__ = "0.1.0"
