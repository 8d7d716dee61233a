"""Monitoring module.

Provides Prometheus metrics for sync runs and exchange traffic.
"""

from ledger_sync.monitoring.metrics import (
    MetricsCollector,
    get_metrics,
    init_metrics,
)

__all__ = [
    "MetricsCollector",
    "get_metrics",
    "init_metrics",
]
