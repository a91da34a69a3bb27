"""Observability components: logging, metrics, and health checks."""

from relation_sync.observability.health import HealthServer
from relation_sync.observability.logging import failure_logger, get_logger, setup_logging
from relation_sync.observability.metrics import METRICS, MetricsServer

__all__ = [
    "setup_logging",
    "get_logger",
    "failure_logger",
    "METRICS",
    "MetricsServer",
    "HealthServer",
]
