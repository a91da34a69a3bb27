"""Prometheus metrics for Relation Sync."""

from http.server import BaseHTTPRequestHandler

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from relation_sync.observability.server import BackgroundHTTPServer, QuietHandler


# Metric definitions
class SyncMetrics:
    """Collection of Prometheus metrics for the sync engine."""

    def __init__(self) -> None:
        """Initialize metrics."""
        # Identifier fetches
        self.fetches_started_total = Counter(
            "relation_sync_fetches_started_total",
            "Total number of identifier fetches started",
        )

        self.fetches_joined_total = Counter(
            "relation_sync_fetches_joined_total",
            "Total number of callers that joined an in-flight fetch",
        )

        self.fetch_attempts_total = Counter(
            "relation_sync_fetch_attempts_total",
            "Total number of identifier resolution attempts",
            ["result"],  # 'success', 'unavailable', 'rejected', 'error'
        )

        self.fetches_in_flight = Gauge(
            "relation_sync_fetches_in_flight",
            "Number of identifier fetches currently in flight",
        )

        self.identifier_writes_total = Counter(
            "relation_sync_identifier_writes_total",
            "Total number of resolved identifiers written to the store",
        )

        self.store_conflicts_total = Counter(
            "relation_sync_store_conflicts_total",
            "Total number of optimistic version conflicts on store writes",
        )

        # Publish jobs
        self.publish_jobs_total = Counter(
            "relation_sync_publish_jobs_total",
            "Total number of publish jobs scheduled",
            ["kind"],  # 'CREATE' or 'UPDATE'
        )

        self.publish_attempts_total = Counter(
            "relation_sync_publish_attempts_total",
            "Total number of registry publish attempts",
            ["kind", "result"],  # result: 'success' or 'failure'
        )

        self.publish_job_outcomes_total = Counter(
            "relation_sync_publish_job_outcomes_total",
            "Total number of publish jobs by terminal state",
            ["kind", "outcome"],  # outcome: 'succeeded', 'failed', 'aborted'
        )

        self.identifier_waits_total = Counter(
            "relation_sync_identifier_waits_total",
            "Total number of publish jobs that waited on an identifier fetch",
        )

        # Terminal failures
        self.retry_exhausted_total = Counter(
            "relation_sync_retry_exhausted_total",
            "Total number of tasks that exhausted their retry budget",
            ["task"],  # 'fetch' or 'publish'
        )

        self.errors_total = Counter(
            "relation_sync_errors_total",
            "Total number of errors",
            ["error_type"],
        )

        # Remote calls
        self.remote_call_duration_seconds = Histogram(
            "relation_sync_remote_call_duration_seconds",
            "Duration of remote resolver and registry calls",
            ["operation"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
        )

        # Worker pool
        self.scheduled_jobs = Gauge(
            "relation_sync_scheduled_jobs",
            "Number of jobs waiting on the timer for a delayed start",
        )


# Global metrics instance
METRICS = SyncMetrics()


class MetricsHandler(QuietHandler):
    """Serves the default Prometheus registry on /metrics."""

    def do_GET(self) -> None:
        if self.path.split("?", 1)[0] == "/metrics":
            self._send(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._send(404)


class MetricsServer(BackgroundHTTPServer):
    """Prometheus scrape endpoint."""

    name = "metrics"

    def __init__(self, port: int = 9090, host: str = "0.0.0.0"):
        super().__init__(port, host)

    def handler_class(self) -> type[BaseHTTPRequestHandler]:
        return MetricsHandler
