"""Bounded worker pool with an off-worker timer for delayed submissions."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from relation_sync.observability.metrics import METRICS

logger = logging.getLogger(__name__)


class JobScheduler:
    """Executes sync jobs on a bounded thread pool.

    Delayed submissions wait on a single timer thread instead of sleeping on
    a worker, so retry back-off never reduces pool capacity. Exceptions that
    escape a job are logged and counted; they never kill a worker.
    """

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "relation-sync"):
        """Initialize the scheduler.

        Args:
            max_workers: Size of the worker pool.
            thread_name_prefix: Prefix for worker thread names.
        """
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._timer_name = f"{thread_name_prefix}-timer"
        self._delayed: list[_Delayed] = []
        self._sequence = itertools.count()
        self._condition = threading.Condition()
        self._shutdown = False
        self._timer_thread: threading.Thread | None = None

    def _ensure_timer(self) -> None:
        # Caller holds self._condition
        if self._timer_thread is None:
            self._timer_thread = threading.Thread(
                target=self._run_timer, name=self._timer_name, daemon=True
            )
            self._timer_thread.start()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any] | None:
        """Run fn(*args) on the worker pool.

        Returns:
            The job future, or None if the scheduler is shut down.
        """
        with self._condition:
            if self._shutdown:
                logger.warning("Scheduler is shut down, dropping job %s", _job_name(fn))
                return None
        try:
            return self._executor.submit(self._guarded, fn, args)
        except RuntimeError:
            logger.warning("Scheduler is shut down, dropping job %s", _job_name(fn))
            return None

    def submit_after(
        self,
        delay: float,
        fn: Callable[..., Any],
        *args: Any,
        on_drop: Callable[[], None] | None = None,
    ) -> bool:
        """Run fn(*args) on the worker pool once delay seconds have passed.

        Args:
            delay: Seconds to wait before the job is handed to the pool.
            fn: Job to run.
            on_drop: Called instead of fn if the job is discarded after it
                was accepted, i.e. by a shutdown before it became due.

        Returns:
            False if the scheduler is shut down and the job was dropped.
            on_drop is not called in that case.
        """
        if delay <= 0:
            return self.submit(fn, *args) is not None

        with self._condition:
            if self._shutdown:
                logger.warning("Scheduler is shut down, dropping job %s", _job_name(fn))
                return False
            due = time.monotonic() + delay
            heapq.heappush(self._delayed, _Delayed(due, next(self._sequence), fn, args, on_drop))
            METRICS.scheduled_jobs.set(len(self._delayed))
            self._ensure_timer()
            self._condition.notify()
        return True

    def _run_timer(self) -> None:
        while True:
            with self._condition:
                while not self._shutdown:
                    if not self._delayed:
                        self._condition.wait()
                        continue
                    wait_for = self._delayed[0].due - time.monotonic()
                    if wait_for <= 0:
                        break
                    self._condition.wait(wait_for)

                if self._shutdown:
                    return
                job = heapq.heappop(self._delayed)
                METRICS.scheduled_jobs.set(len(self._delayed))

            try:
                self._executor.submit(self._guarded, job.fn, job.args)
            except RuntimeError:
                logger.warning("Worker pool closed, dropping delayed job %s", _job_name(job.fn))
                self._dropped(job)

    def _dropped(self, job: _Delayed) -> None:
        if job.on_drop is None:
            return
        try:
            job.on_drop()
        except Exception:
            logger.exception("Drop handler of delayed job %s failed", _job_name(job.fn))

    def _guarded(self, fn: Callable[..., Any], args: tuple[Any, ...]) -> Any:
        try:
            return fn(*args)
        except Exception:
            logger.exception("Unhandled error in sync job %s", _job_name(fn))
            METRICS.errors_total.labels(error_type="job_crash").inc()
            return None

    @property
    def pending_delayed(self) -> int:
        """Number of jobs waiting on the timer."""
        with self._condition:
            return len(self._delayed)

    @property
    def is_running(self) -> bool:
        with self._condition:
            return not self._shutdown

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work.

        Delayed jobs that are not yet due are discarded and their on_drop
        handlers run on the calling thread. Jobs already handed to the pool
        run to completion when wait is True.
        """
        with self._condition:
            if self._shutdown:
                return
            self._shutdown = True
            dropped, self._delayed = sorted(self._delayed), []
            METRICS.scheduled_jobs.set(0)
            self._condition.notify_all()
            timer = self._timer_thread

        if dropped:
            logger.info("Discarded %d delayed sync jobs on shutdown", len(dropped))
        for job in dropped:
            self._dropped(job)
        if timer is not None and wait:
            timer.join(timeout=5)
        self._executor.shutdown(wait=wait)


@dataclass(order=True)
class _Delayed:
    due: float
    sequence: int
    fn: Callable[..., Any] = field(compare=False)
    args: tuple[Any, ...] = field(compare=False)
    on_drop: Callable[[], None] | None = field(compare=False, default=None)


def _job_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", repr(fn))
