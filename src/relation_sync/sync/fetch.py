"""Deduplicated partner identifier fetches.

At most one identifier fetch per relationship is in flight at any time.
Callers that ask for a fetch while one is running join it and receive the
same FetchHandle. The in-flight map only answers "is a fetch running for
this key"; waiting on the outcome goes through the handle, so correctness
does not depend on when the key leaves the map.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from relation_sync.domain.models import RelationKey, Relationship, is_well_formed_identifier
from relation_sync.observability.logging import failure_logger
from relation_sync.observability.metrics import METRICS
from relation_sync.sync.errors import (
    ConcurrentModification,
    NotFound,
    RemoteRejected,
    RemoteUnavailable,
    RetryExhausted,
    SyncError,
)
from relation_sync.sync.tasks import FetchHandle, FetchTask, RetryPolicy

if TYPE_CHECKING:
    from relation_sync.state.relation_store import RelationStore
    from relation_sync.sync.interfaces import IdentifierResolver
    from relation_sync.sync.scheduler import JobScheduler

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """Starts or joins identifier fetches and writes results back to the store."""

    def __init__(
        self,
        store: RelationStore,
        resolver: IdentifierResolver,
        scheduler: JobScheduler,
        policy: RetryPolicy | None = None,
        max_write_conflicts: int = 5,
    ):
        """Initialize the fetch coordinator.

        Args:
            store: Relationship store holding the identifier.
            resolver: Remote identifier resolver.
            scheduler: Worker pool the fetch attempts run on.
            policy: Retry policy (default: 3 retries, 300 ms apart).
            max_write_conflicts: Re-reads allowed when the identifier write
                races with another update of the same relationship.
        """
        self._store = store
        self._resolver = resolver
        self._scheduler = scheduler
        self._policy = policy or RetryPolicy(max_retries=3, delay_seconds=0.3)
        self._max_write_conflicts = max_write_conflicts
        self._lock = threading.Lock()
        self._in_flight: dict[RelationKey, FetchHandle] = {}

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def is_in_flight(self, key: RelationKey) -> bool:
        with self._lock:
            return key in self._in_flight

    def ensure_fetch(self, key: RelationKey) -> FetchHandle:
        """Start a fetch for key, or join the one already in flight.

        Raises:
            NotFound: If the relationship is not in the store.
        """
        self._store.find(key.material_id, key.partner_id)

        with self._lock:
            handle = self._in_flight.get(key)
            if handle is not None:
                METRICS.fetches_joined_total.inc()
                logger.debug("Joining in-flight identifier fetch for %s", key)
                return handle
            handle = FetchHandle(key)
            self._in_flight[key] = handle
            METRICS.fetches_in_flight.set(len(self._in_flight))

        METRICS.fetches_started_total.inc()
        logger.info("Starting identifier fetch for %s", key)
        task = FetchTask(key=key, policy=self._policy, handle=handle)
        if self._scheduler.submit(self._attempt, task) is None:
            self._finish(task, error=_dropped(key))
        return handle

    def trigger(self, key: RelationKey) -> FetchHandle | None:
        """Fire-and-forget variant of ensure_fetch that logs a missing relationship."""
        try:
            return self.ensure_fetch(key)
        except NotFound:
            logger.warning("Cannot fetch identifier, relationship %s does not exist", key)
            return None

    def _attempt(self, task: FetchTask) -> None:
        task.attempt += 1
        key = task.key

        try:
            relationship = self._store.find(key.material_id, key.partner_id)
        except NotFound as e:
            logger.warning("Relationship %s vanished, aborting identifier fetch", key)
            self._finish(task, error=e)
            return

        if relationship.partner_identifier:
            # Set by a concurrent update in the meantime
            logger.info("Identifier for %s already present, fetch not needed", key)
            self._finish(task, identifier=relationship.partner_identifier)
            return

        try:
            identifier = self._resolve(relationship)
            self._store_identifier(key, identifier)
        except NotFound as e:
            logger.warning("Relationship %s vanished, aborting identifier fetch", key)
            self._finish(task, error=e)
        except RemoteUnavailable as e:
            METRICS.fetch_attempts_total.labels(result="unavailable").inc()
            self._retry_or_fail(task, str(e))
        except RemoteRejected as e:
            METRICS.fetch_attempts_total.labels(result="rejected").inc()
            self._retry_or_fail(task, str(e))
        except ConcurrentModification as e:
            METRICS.fetch_attempts_total.labels(result="error").inc()
            self._retry_or_fail(task, str(e))
        except Exception as e:
            logger.warning("Unexpected error resolving identifier for %s", key, exc_info=True)
            METRICS.fetch_attempts_total.labels(result="error").inc()
            self._retry_or_fail(task, f"{type(e).__name__}: {e}")
        else:
            METRICS.fetch_attempts_total.labels(result="success").inc()
            self._finish(task, identifier=identifier)

    def _resolve(self, relationship: Relationship) -> str:
        with METRICS.remote_call_duration_seconds.labels(operation="resolve").time():
            identifier = self._resolver.resolve(relationship)
        if not is_well_formed_identifier(identifier):
            raise RemoteRejected(f"Malformed partner identifier {identifier!r}")
        return identifier

    def _store_identifier(self, key: RelationKey, identifier: str) -> Relationship:
        """Write the identifier without clobbering concurrent updates of other fields."""
        conflict: ConcurrentModification | None = None
        for _ in range(self._max_write_conflicts):
            current = self._store.find(key.material_id, key.partner_id)
            if current.partner_identifier == identifier:
                return current
            try:
                stored = self._store.upsert(current.with_identifier(identifier))
            except ConcurrentModification as e:
                METRICS.store_conflicts_total.inc()
                logger.debug("Version conflict storing identifier for %s, re-reading", key)
                conflict = e
                continue
            METRICS.identifier_writes_total.inc()
            logger.info("Stored partner identifier for %s -> %s", key, identifier)
            return stored

        if conflict is None:
            raise SyncError(f"Identifier for {key} not stored, no write attempts allowed")
        raise conflict

    def _retry_or_fail(self, task: FetchTask, reason: str) -> None:
        task.last_error = reason
        if task.exhausted:
            METRICS.retry_exhausted_total.labels(task="fetch").inc()
            failure_logger.error(
                "retry_exhausted",
                task="fetch",
                material_id=task.key.material_id,
                partner_id=task.key.partner_id,
                attempts=task.attempt,
                reason=reason,
            )
            error = RetryExhausted("Identifier fetch", task.key, task.attempt, reason)
            self._finish(task, error=error)
            return

        delay = task.policy.delay_seconds
        logger.warning(
            "Identifier fetch for %s failed (attempt %d/%d), retrying in %.1fs: %s",
            task.key,
            task.attempt,
            task.policy.max_attempts,
            delay,
            reason,
        )
        scheduled = self._scheduler.submit_after(
            delay,
            self._attempt,
            task,
            on_drop=lambda: self._finish(task, error=_dropped(task.key)),
        )
        if not scheduled:
            self._finish(task, error=_dropped(task.key))

    def _finish(
        self,
        task: FetchTask,
        identifier: str | None = None,
        error: Exception | None = None,
    ) -> None:
        with self._lock:
            if self._in_flight.get(task.key) is task.handle:
                del self._in_flight[task.key]
            METRICS.fetches_in_flight.set(len(self._in_flight))

        if error is None and identifier is not None:
            task.handle.resolve(identifier)
        else:
            task.handle.fail(error or SyncError(f"Fetch for {task.key} ended without result"))


def _dropped(key: RelationKey) -> SyncError:
    return SyncError(f"Fetch for {key} dropped, scheduler shut down")
