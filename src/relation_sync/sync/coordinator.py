"""Registry synchronization of material-partner relationships.

Every create or update of a relationship schedules a publish job that brings
the digital twin registry in line with the local state:

    PENDING -> WAITING_FOR_IDENTIFIER (optional) -> PUBLISHING
            -> SUCCEEDED
            -> RETRYING -> WAITING_FOR_IDENTIFIER | PUBLISHING
            -> FAILED

A supplier relationship cannot be published without the partner's identifier.
The job then joins (or starts) the identifier fetch and parks itself on the
fetch handle; it does not hold a worker while waiting. After the fetch the
identifier is re-read from the store, since it may also have been set by an
unrelated fetch or update.

Publish jobs for the same relationship are not serialized; the registry API
is expected to be idempotent.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from relation_sync.domain.models import JobKind, JobState, RelationKey, Relationship
from relation_sync.observability.logging import failure_logger
from relation_sync.observability.metrics import METRICS
from relation_sync.sync.errors import NotFound, RemoteRejected, RemoteUnavailable
from relation_sync.sync.tasks import FetchHandle, PublishTask, RetryPolicy

if TYPE_CHECKING:
    from relation_sync.state.relation_store import RelationStore
    from relation_sync.sync.fetch import FetchCoordinator
    from relation_sync.sync.interfaces import RegistryPublisher
    from relation_sync.sync.scheduler import JobScheduler

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Schedules and runs registry publish jobs for relationship changes."""

    def __init__(
        self,
        store: RelationStore,
        publisher: RegistryPublisher,
        fetches: FetchCoordinator,
        scheduler: JobScheduler,
        policy: RetryPolicy | None = None,
        identifier_wait_delay: float = 0.5,
    ):
        """Initialize the sync coordinator.

        Args:
            store: Relationship store, re-read before every publish.
            publisher: Registry publisher.
            fetches: Coordinator of identifier fetches.
            scheduler: Worker pool all jobs run on.
            policy: Publish retry policy (default: 3 retries, 2 s apart).
            identifier_wait_delay: Pause between an awaited fetch completing
                and the identifier being re-read.
        """
        self._store = store
        self._publisher = publisher
        self._fetches = fetches
        self._scheduler = scheduler
        self._policy = policy or RetryPolicy(max_retries=3, delay_seconds=2.0)
        self._identifier_wait_delay = identifier_wait_delay

        self._idle = threading.Condition()
        self._active = 0
        self._outcomes: Counter[str] = Counter()

    # Entry points

    def notify_relationship_created(self, relationship: Relationship) -> None:
        """Fire-and-forget: synchronize a newly created relationship."""
        self._dispatch(self.on_relationship_created, relationship)

    def notify_relationship_updated(self, previous: Relationship, updated: Relationship) -> None:
        """Fire-and-forget: synchronize an updated relationship."""
        self._dispatch(self.on_relationship_updated, previous, updated)

    def on_relationship_created(self, relationship: Relationship) -> PublishTask:
        """Schedule the CREATE job and, for suppliers without identifier, a fetch."""
        task = self._schedule(relationship.key, JobKind.CREATE)
        if relationship.needs_identifier:
            logger.info(
                "Attempting identifier fetch for material %s from supplier partner %s",
                relationship.material_id,
                relationship.partner_id,
            )
            self._fetches.trigger(relationship.key)
        return task

    def on_relationship_updated(self, previous: Relationship, updated: Relationship) -> PublishTask:
        """Schedule CREATE on a transition into supplier status, UPDATE otherwise."""
        if not previous.supplies_material and updated.supplies_material:
            kind = JobKind.CREATE
        else:
            kind = JobKind.UPDATE

        # The partner left the consumer list, the product twin still lists it
        refresh_product = previous.buys_material and not updated.buys_material

        task = self._schedule(updated.key, kind, refresh_product=refresh_product)
        if updated.needs_identifier:
            logger.info(
                "Attempting identifier fetch for material %s from supplier partner %s",
                updated.material_id,
                updated.partner_id,
            )
            self._fetches.trigger(updated.key)
        return task

    # Bookkeeping

    def _dispatch(self, handler: Callable[..., Any], *args: Any) -> None:
        self._enter()

        def run() -> None:
            try:
                handler(*args)
            finally:
                self._leave()

        if self._scheduler.submit(run) is None:
            self._leave()

    def _enter(self) -> None:
        with self._idle:
            self._active += 1

    def _leave(self) -> None:
        with self._idle:
            self._active -= 1
            if self._active == 0:
                self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no notification or publish job is pending."""
        with self._idle:
            return self._idle.wait_for(lambda: self._active == 0, timeout)

    def job_stats(self) -> dict[str, int]:
        with self._idle:
            stats = dict(self._outcomes)
            stats["active"] = self._active
        return stats

    def _schedule(
        self,
        key: RelationKey,
        kind: JobKind,
        refresh_product: bool = False,
    ) -> PublishTask:
        task = PublishTask(key=key, kind=kind, policy=self._policy, refresh_product=refresh_product)
        METRICS.publish_jobs_total.labels(kind=kind.value).inc()
        self._enter()
        logger.debug("Scheduling %s job for %s", kind.value, key)
        if self._scheduler.submit(self._run, task) is None:
            self._abort(task, "scheduler shut down")
        return task

    def _complete(self, task: PublishTask, state: JobState, outcome: str) -> None:
        METRICS.publish_job_outcomes_total.labels(kind=task.kind.value, outcome=outcome).inc()
        with self._idle:
            self._outcomes[outcome] += 1
        task.transition(state)
        self._leave()

    def _abort(self, task: PublishTask, reason: str) -> None:
        task.last_error = reason
        failure_logger.warning(
            "publish_job_aborted",
            task="publish",
            kind=task.kind.value,
            material_id=task.key.material_id,
            partner_id=task.key.partner_id,
            attempts=task.attempt,
            reason=reason,
        )
        self._complete(task, JobState.FAILED, "aborted")

    # Job execution

    def _find(self, key: RelationKey) -> Relationship:
        return self._store.find(key.material_id, key.partner_id)

    def _run(self, task: PublishTask) -> None:
        """Run one attempt of a publish job."""
        task.attempt += 1

        try:
            relationship = self._find(task.key)
        except NotFound as e:
            self._abort(task, str(e))
            return

        if not relationship.needs_identifier:
            self._publish(task, relationship)
            return

        task.transition(JobState.WAITING_FOR_IDENTIFIER)
        METRICS.identifier_waits_total.inc()
        try:
            handle = self._fetches.ensure_fetch(task.key)
        except NotFound as e:
            self._abort(task, str(e))
            return

        logger.info("%s job for %s awaiting identifier fetch", task.kind.value, task.key)
        handle.add_done_callback(lambda h: self._identifier_fetched(task, h))

    def _identifier_fetched(self, task: PublishTask, handle: FetchHandle) -> None:
        if not handle.succeeded:
            logger.info("Identifier fetch for %s failed: %s", task.key, handle.error)
        if not self._scheduler.submit_after(
            self._identifier_wait_delay,
            self._resume_after_wait,
            task,
            on_drop=lambda: self._abort(task, "scheduler shut down"),
        ):
            self._abort(task, "scheduler shut down")

    def _resume_after_wait(self, task: PublishTask) -> None:
        try:
            relationship = self._find(task.key)
        except NotFound as e:
            self._abort(task, str(e))
            return

        if relationship.needs_identifier:
            logger.error(
                "Partner identifier still missing for %s, retries left: %d",
                task.key,
                task.retries_left,
            )
            self._retry_or_fail(task, "partner identifier missing")
            return

        self._publish(task, relationship)

    def _publish(self, task: PublishTask, relationship: Relationship) -> None:
        task.transition(JobState.PUBLISHING)
        failures = self._publish_descriptors(task, relationship)

        if not failures:
            METRICS.publish_attempts_total.labels(kind=task.kind.value, result="success").inc()
            logger.info(
                "%s job for %s succeeded (attempt %d)", task.kind.value, task.key, task.attempt
            )
            self._complete(task, JobState.SUCCEEDED, "succeeded")
            return

        METRICS.publish_attempts_total.labels(kind=task.kind.value, result="failure").inc()
        self._retry_or_fail(task, "; ".join(failures))

    def _publish_descriptors(self, task: PublishTask, relationship: Relationship) -> list[str]:
        """Run every registry call the relationship needs. Returns failure reasons."""
        failures: list[str] = []

        consumers = self._store.list_consumers_of(relationship.material_id)
        if consumers or task.refresh_product:
            error = self._call(
                "publish_product",
                lambda: self._publisher.publish_product(relationship.material_id, consumers),
            )
            if error:
                logger.warning(
                    "Publishing product descriptor for %s failed, retries left: %d",
                    relationship.material_id,
                    task.retries_left,
                )
                failures.append(f"product: {error}")
            else:
                logger.info(
                    "Published product descriptor for %s (%d consumers)",
                    relationship.material_id,
                    len(consumers),
                )

        if relationship.supplies_material:
            error = self._call(
                "publish_material",
                lambda: self._publisher.publish_material(relationship, task.kind),
            )
            if error:
                logger.warning(
                    "%s of material descriptor failed for %s, retries left: %d",
                    task.kind.value,
                    task.key,
                    task.retries_left,
                )
                failures.append(f"material: {error}")
            else:
                logger.info("%s of material descriptor done for %s", task.kind.value, task.key)

        return failures

    def _call(self, operation: str, call: Callable[[], bool]) -> str | None:
        """Invoke one registry call. Returns None on success, else the reason."""
        try:
            with METRICS.remote_call_duration_seconds.labels(operation=operation).time():
                ok = call()
        except (RemoteUnavailable, RemoteRejected) as e:
            return f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.warning("Unexpected error in %s", operation, exc_info=True)
            METRICS.errors_total.labels(error_type=operation).inc()
            return f"{type(e).__name__}: {e}"
        return None if ok else "registry reported failure"

    def _retry_or_fail(self, task: PublishTask, reason: str) -> None:
        task.last_error = reason
        if task.exhausted:
            METRICS.retry_exhausted_total.labels(task="publish").inc()
            failure_logger.error(
                "retry_exhausted",
                task="publish",
                kind=task.kind.value,
                material_id=task.key.material_id,
                partner_id=task.key.partner_id,
                attempts=task.attempt,
                reason=reason,
            )
            self._complete(task, JobState.FAILED, "failed")
            return

        task.transition(JobState.RETRYING)
        delay = task.policy.delay_seconds
        logger.warning(
            "%s job for %s failed (attempt %d/%d), retrying in %.1fs: %s",
            task.kind.value,
            task.key,
            task.attempt,
            task.policy.max_attempts,
            delay,
            reason,
        )
        if not self._scheduler.submit_after(
            delay, self._run, task, on_drop=lambda: self._abort(task, "scheduler shut down")
        ):
            self._abort(task, "scheduler shut down")
