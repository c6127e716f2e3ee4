"""
Prometheus metrics collection.

In-memory counters for runs, source fetches, webhook deliveries and the
token cache. Prometheus handles storage.
"""

import time
from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, Info

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for LogRelay.

    Metrics register on the given registry so tests can use a private one.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY

        # Service info
        self.service_info = Info(
            "logrelay_service",
            "LogRelay service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": "0.1.0",
            "service": "logrelay",
        })

        # Run metrics
        self.runs_total = Counter(
            "logrelay_runs_total",
            "Total pipeline runs by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.run_duration = Histogram(
            "logrelay_run_duration_seconds",
            "Pipeline run duration in seconds",
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=self.registry,
        )

        # Source metrics
        self.records_fetched_total = Counter(
            "logrelay_records_fetched_total",
            "Total log records read from the source",
            registry=self.registry,
        )

        self.pages_fetched_total = Counter(
            "logrelay_pages_fetched_total",
            "Total log pages requested from the source",
            registry=self.registry,
        )

        # Delivery metrics
        self.events_delivered_total = Counter(
            "logrelay_events_delivered_total",
            "Total events successfully POSTed to the webhook",
            registry=self.registry,
        )

        self.webhook_requests_total = Counter(
            "logrelay_webhook_requests_total",
            "Total webhook requests by status code",
            ["status_code"],
            registry=self.registry,
        )

        self.webhook_request_duration = Histogram(
            "logrelay_webhook_request_duration_seconds",
            "Webhook request duration in seconds",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        # Token cache metrics
        self.token_lookups_total = Counter(
            "logrelay_token_cache_lookups_total",
            "Token cache lookups by result (hit, miss, coalesced)",
            ["result"],
            registry=self.registry,
        )

        # Checkpoint metrics
        self.checkpoint_event_count = Gauge(
            "logrelay_checkpoint_event_count",
            "Events delivered by the last committed run",
            registry=self.registry,
        )

        self.last_success_timestamp = Gauge(
            "logrelay_last_success_timestamp_seconds",
            "Unix time of the last committed run",
            registry=self.registry,
        )

    def record_run(self, outcome: str, duration_seconds: float) -> None:
        """Record a finished run."""
        self.runs_total.labels(outcome=outcome).inc()
        self.run_duration.observe(duration_seconds)

    def record_page(self, records_count: int) -> None:
        """Record one fetched page."""
        self.pages_fetched_total.inc()
        self.records_fetched_total.inc(records_count)

    def record_webhook_request(self, status_code: Optional[int], duration_seconds: float) -> None:
        """Record a webhook POST. status_code None means a transport error."""
        label = str(status_code) if status_code is not None else "error"
        self.webhook_requests_total.labels(status_code=label).inc()
        self.webhook_request_duration.observe(duration_seconds)

        if status_code is not None and 200 <= status_code < 300:
            self.events_delivered_total.inc()

    def record_token_lookup(self, result: str) -> None:
        """Record a token cache lookup."""
        self.token_lookups_total.labels(result=result).inc()

    def record_commit(self, event_count: int) -> None:
        """Record a committed checkpoint."""
        self.checkpoint_event_count.set(event_count)
        self.last_success_timestamp.set(time.time())
