"""Prometheus metrics for sync bridges and their upstream calls."""

from contextlib import contextmanager
from typing import Dict, Iterator

from prometheus_client import Counter, Gauge

bridge_connections_total = Counter(
    "sync_bridge_connections_total",
    "Streaming requests accepted by transport and handshake outcome",
    ["transport", "result"],
)

bridge_active_connections = Gauge(
    "sync_bridge_active_connections",
    "Bridges currently in the STREAMING state",
    ["transport"],
)

sync_requests_total = Counter(
    "sync_bridge_sync_requests_total",
    "Upstream /sync requests by mode and outcome",
    ["mode", "result"],
)

frames_emitted_total = Counter(
    "sync_bridge_frames_emitted_total",
    "Sync frames written to clients",
    ["transport"],
)

inbound_frames_total = Counter(
    "sync_bridge_inbound_frames_total",
    "Client control frames received on the socket transport",
    ["method", "result"],
)

presence_updates_total = Counter(
    "sync_bridge_presence_updates_total",
    "One-shot presence updates sent upstream",
    ["result"],
)


@contextmanager
def track_active(transport: str) -> Iterator[None]:
    """Count a bridge as active for the duration of the block."""
    bridge_active_connections.labels(transport=transport).inc()
    try:
        yield
    finally:
        bridge_active_connections.labels(transport=transport).dec()


def active_counts() -> Dict[str, int]:
    """Snapshot of active bridges per transport, for health reporting."""
    return {
        sample.labels["transport"]: int(sample.value)
        for metric in bridge_active_connections.collect()
        for sample in metric.samples
    }
