"""Prometheus metrics for ledger sync monitoring.

Provides metrics for:
- Record reconciliation (inserted, updated, unchanged, skipped)
- Exchange requests and sub-window failures
- Job lifecycle
"""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

if TYPE_CHECKING:
    from ledger_sync.domain.outcomes import SyncCounts

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects and exposes Prometheus metrics.

    Each collector owns its registry, so several can coexist in one
    process (tests, multiple apps).
    """

    def __init__(
        self,
        prefix: str = "ledger_sync",
        registry: CollectorRegistry | None = None,
    ) -> None:
        """Initialize metrics collector.

        Args:
            prefix: Metric name prefix
            registry: Registry to register into (a fresh one by default)
        """
        self._prefix = prefix
        self._registry = registry or CollectorRegistry()

        # Record metrics
        self._records = Counter(
            f"{prefix}_records_total",
            "Records reconciled by outcome",
            ["kind", "outcome"],
            registry=self._registry,
        )

        # Exchange metrics
        self._exchange_requests = Counter(
            f"{prefix}_exchange_requests_total",
            "Exchange requests by endpoint and outcome",
            ["endpoint", "outcome"],
            registry=self._registry,
        )

        self._window_failures = Counter(
            f"{prefix}_window_failures_total",
            "Sub-window fetches that failed and were skipped",
            ["kind"],
            registry=self._registry,
        )

        # Job metrics
        self._jobs_started = Counter(
            f"{prefix}_jobs_started_total",
            "Jobs started",
            ["kind"],
            registry=self._registry,
        )

        self._jobs_finished = Counter(
            f"{prefix}_jobs_finished_total",
            "Jobs finished by terminal status",
            ["kind", "status"],
            registry=self._registry,
        )

        self._jobs_running = Gauge(
            f"{prefix}_jobs_running",
            "Jobs currently running in this process",
            registry=self._registry,
        )

        self._job_duration = Histogram(
            f"{prefix}_job_duration_seconds",
            "Job wall-clock duration",
            ["kind"],
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    # --- Record Metrics ---

    def record_counts(self, kind: str, counts: SyncCounts) -> None:
        """Add a run's counts to the record counters."""
        for outcome, value in (
            ("inserted", counts.inserted),
            ("updated", counts.updated),
            ("unchanged", counts.unchanged),
            ("skipped", counts.skipped),
            ("failed", counts.failed),
        ):
            if value:
                self._records.labels(kind=kind, outcome=outcome).inc(value)

    # --- Exchange Metrics ---

    def record_exchange_request(self, endpoint: str, outcome: str) -> None:
        """Increment exchange request counter."""
        self._exchange_requests.labels(endpoint=endpoint, outcome=outcome).inc()

    def inc_window_failure(self, kind: str) -> None:
        self._window_failures.labels(kind=kind).inc()

    # --- Job Metrics ---

    def job_started(self, kind: str) -> None:
        self._jobs_started.labels(kind=kind).inc()
        self._jobs_running.inc()

    def job_finished(self, kind: str, status: str) -> None:
        self._jobs_finished.labels(kind=kind, status=status).inc()
        self._jobs_running.dec()

    @contextmanager
    def time_job(self, kind: str) -> Generator[None, None, None]:
        """Context manager to time a job body."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self._job_duration.labels(kind=kind).observe(time.perf_counter() - start)

    # --- Export ---

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format.

        Returns:
            Metrics as bytes in Prometheus exposition format
        """
        return generate_latest(self._registry)


# Global metrics collector instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def init_metrics(prefix: str = "ledger_sync") -> MetricsCollector:
    """Initialize global metrics collector.

    Args:
        prefix: Metric name prefix

    Returns:
        Initialized MetricsCollector
    """
    global _metrics
    _metrics = MetricsCollector(prefix=prefix)
    return _metrics
