"""Relation Sync service: wires the sync engine and exposes its entry points."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from relation_sync.config import SyncConfig
from relation_sync.observability.health import HealthServer
from relation_sync.observability.metrics import MetricsServer
from relation_sync.registry.dtr_client import DtrClient
from relation_sync.registry.part_type_client import PartTypeInformationClient
from relation_sync.registry.partners import StaticPartnerDirectory
from relation_sync.sync.coordinator import SyncCoordinator
from relation_sync.sync.fetch import FetchCoordinator
from relation_sync.sync.scheduler import JobScheduler
from relation_sync.sync.tasks import RetryPolicy

if TYPE_CHECKING:
    from relation_sync.domain.models import Relationship
    from relation_sync.state.relation_store import RelationStore
    from relation_sync.sync.interfaces import (
        IdentifierResolver,
        PartnerDirectory,
        RegistryPublisher,
    )

logger = logging.getLogger(__name__)


class SyncService:
    """In-process synchronization of relationships with partners and the registry.

    The application persists relationships itself and then calls
    notify_relationship_created / notify_relationship_updated. Both return
    immediately; all remote work runs on the background worker pool.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: RelationStore,
        resolver: IdentifierResolver | None = None,
        publisher: RegistryPublisher | None = None,
        partners: PartnerDirectory | None = None,
    ):
        """Initialize the service.

        Args:
            config: Service configuration.
            store: Relationship store shared with the application.
            resolver: Identifier resolver; HTTP client from config if omitted.
            publisher: Registry publisher; DTR client from config if omitted.
            partners: Partner lookup; built from config.partners if omitted.
        """
        self.config = config
        self.store = store
        if config.observability.configure_logging:
            self._init_logging()

        self.partners = partners or StaticPartnerDirectory(config.partners)
        self._owned_clients: list[Any] = []

        if resolver is None:
            resolver = PartTypeInformationClient(config.resolver, self.partners)
            self._owned_clients.append(resolver)
        if publisher is None:
            publisher = DtrClient(config.registry, config.own_bpnl, self.partners)
            self._owned_clients.append(publisher)

        self.scheduler = JobScheduler(
            max_workers=config.workers.max_workers,
            thread_name_prefix=config.workers.thread_name_prefix,
        )
        self.fetches = FetchCoordinator(
            store,
            resolver,
            self.scheduler,
            policy=RetryPolicy.from_config(config.fetch_retry),
        )
        self.coordinator = SyncCoordinator(
            store,
            publisher,
            self.fetches,
            self.scheduler,
            policy=RetryPolicy.from_config(config.publish_retry),
            identifier_wait_delay=config.identifier_wait_delay_seconds,
        )

        self.metrics_server: MetricsServer | None = None
        self.health_server: HealthServer | None = None
        if config.observability.enabled:
            obs = config.observability
            self.metrics_server = MetricsServer(obs.metrics_port, host=obs.bind_host)
            self.health_server = HealthServer(
                obs.health_port, check_func=self.health, host=obs.bind_host
            )

        self._started_at: float | None = None

    def _init_logging(self) -> None:
        """Initialize logging configuration."""
        from relation_sync.observability.logging import setup_logging

        setup_logging(
            level=self.config.observability.log_level,
            format_type=self.config.observability.log_format,
        )

    def start(self) -> None:
        """Start the observability endpoints."""
        logger.info("Starting Relation Sync service")
        self._started_at = time.time()
        if self.metrics_server:
            self.metrics_server.start()
        if self.health_server:
            self.health_server.start()

    def stop(self, wait: bool = True) -> None:
        """Stop accepting work and shut down the worker pool.

        Jobs waiting on the retry timer are discarded: their fetches fail and
        their publish jobs end as aborted, so wait_idle returns. The
        relationship keeps whatever identifier it has, which is the visible
        signal that the synchronization did not complete.
        """
        logger.info("Shutting down Relation Sync service")
        self.scheduler.shutdown(wait=wait)

        for client in self._owned_clients:
            client.close()

        if self.health_server:
            self.health_server.stop()
        if self.metrics_server:
            self.metrics_server.stop()

        logger.info("Relation Sync shutdown complete")

    def __enter__(self) -> SyncService:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def notify_relationship_created(self, relationship: Relationship) -> None:
        """Fire-and-forget: a relationship was created."""
        self.coordinator.notify_relationship_created(relationship)

    def notify_relationship_updated(self, previous: Relationship, updated: Relationship) -> None:
        """Fire-and-forget: a relationship was updated."""
        self.coordinator.notify_relationship_updated(previous, updated)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until all notified work reached a terminal state."""
        return self.coordinator.wait_idle(timeout)

    def health(self) -> dict[str, Any]:
        """Health status for the /health endpoint."""
        running = self.scheduler.is_running
        return {
            "status": "healthy" if running else "stopped",
            "timestamp": int(time.time() * 1000),
            "uptime_seconds": int(time.time() - self._started_at) if self._started_at else 0,
            "scheduler_running": running,
            "fetches_in_flight": self.fetches.in_flight,
            "delayed_jobs": self.scheduler.pending_delayed,
            "publish_jobs": self.coordinator.job_stats(),
        }
