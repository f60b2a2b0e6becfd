"""Prometheus metrics for the control plane.

Each ``PlatformMetrics`` owns its own ``CollectorRegistry`` so several
control planes (or tests) in one process never collide on metric names.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from stackyard.models.events import StatusEvent


class PlatformMetrics:
    """Counters, gauges and histograms exported on ``/metrics``."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.deployments = Counter(
            "stackyard_deployments",
            "Deployment jobs by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.deployment_duration = Histogram(
            "stackyard_deployment_duration_seconds",
            "Wall time of deployment jobs",
            buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
            registry=self.registry,
        )
        self.phase_duration = Histogram(
            "stackyard_phase_duration_seconds",
            "Wall time of pipeline phases",
            ["phase"],
            registry=self.registry,
        )
        self.active_jobs = Gauge(
            "stackyard_active_jobs",
            "Deployment jobs currently running",
            registry=self.registry,
        )
        self.manifest_operations = Counter(
            "stackyard_manifest_operations",
            "Manifest mutations by operation and result",
            ["operation", "result"],
            registry=self.registry,
        )
        self.events_emitted = Counter(
            "stackyard_events_emitted",
            "Status events emitted by severity",
            ["severity"],
            registry=self.registry,
        )
        self.events_lagged = Counter(
            "stackyard_events_lagged",
            "Status events missed by lagging subscribers",
            registry=self.registry,
        )

    def on_emit(self, event: StatusEvent, receivers: int) -> None:
        """Event bus hook counting emitted events."""
        self.events_emitted.labels(severity=event.severity.value).inc()

    def on_lag(self, missed: int) -> None:
        """Event bus hook counting events lost to lag."""
        self.events_lagged.inc(missed)

    def render(self) -> bytes:
        """Return the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
