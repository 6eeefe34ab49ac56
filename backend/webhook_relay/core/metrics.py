"""
Relay Metrics

Prometheus counters and histograms for admission, delivery and job
outcomes. Each container owns its own registry so tests and multiple
app instances do not collide on metric names.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class RelayMetrics:
    """Prometheus metrics for the ingestion and dispatch pipeline."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.admissions_total = Counter(
            "relay_admissions_total",
            "Inbound events by admission outcome",
            ["outcome", "reason"],
            registry=self.registry,
        )
        self.rate_limiter_errors_total = Counter(
            "relay_rate_limiter_errors_total",
            "Limiter store failures during admission",
            registry=self.registry,
        )
        self.deliveries_total = Counter(
            "relay_deliveries_total",
            "Destination deliveries by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.delivery_duration = Histogram(
            "relay_delivery_duration_seconds",
            "Destination request duration in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )
        self.jobs_total = Counter(
            "relay_jobs_total",
            "Queue jobs by outcome",
            ["outcome"],
            registry=self.registry,
        )

    def record_admission(self, accepted: bool, reason: str) -> None:
        self.admissions_total.labels(
            outcome="accepted" if accepted else "rejected", reason=reason
        ).inc()

    def record_delivery(self, succeeded: bool, duration_seconds: float) -> None:
        self.deliveries_total.labels(
            outcome="success" if succeeded else "failed"
        ).inc()
        self.delivery_duration.observe(duration_seconds)

    def record_job(self, outcome: str) -> None:
        self.jobs_total.labels(outcome=outcome).inc()

    def render(self) -> bytes:
        """Exposition text for the registry."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
