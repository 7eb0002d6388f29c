"""Centralized metrics module for Prometheus instrumentation.

Usage:
    from sync_bridge.metrics.bridge_metrics import sync_requests_total
"""

from sync_bridge.metrics import bridge_metrics

__all__ = ["bridge_metrics"]
