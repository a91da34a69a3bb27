"""Task records and completion handles used by the coordinators."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from relation_sync.config import RetryPolicyConfig
from relation_sync.domain.models import JobKind, JobState, RelationKey
from relation_sync.sync.errors import SyncError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Fixed-delay retry policy: one immediate attempt plus max_retries delayed ones."""

    max_retries: int = 3
    delay_seconds: float = 0.3

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_config(cls, config: RetryPolicyConfig) -> RetryPolicy:
        return cls(max_retries=config.max_retries, delay_seconds=config.delay_seconds)


class FetchHandle:
    """One-shot completion signal of an identifier fetch.

    Resolves exactly once, either with the identifier or with the terminal
    error. Any number of callers may wait on it or register callbacks;
    callbacks registered after completion run immediately.
    """

    def __init__(self, key: RelationKey):
        self.key = key
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._identifier: str | None = None
        self._error: Exception | None = None
        self._callbacks: list[Callable[[FetchHandle], None]] = []

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def succeeded(self) -> bool:
        return self._done.is_set() and self._error is None

    @property
    def identifier(self) -> str | None:
        return self._identifier

    @property
    def error(self) -> Exception | None:
        return self._error

    def resolve(self, identifier: str) -> bool:
        return self._complete(identifier, None)

    def fail(self, error: Exception) -> bool:
        return self._complete(None, error)

    def _complete(self, identifier: str | None, error: Exception | None) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._identifier = identifier
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
            self._done.set()

        for callback in callbacks:
            self._invoke(callback)
        return True

    def add_done_callback(self, callback: Callable[[FetchHandle], None]) -> None:
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        self._invoke(callback)

    def _invoke(self, callback: Callable[[FetchHandle], None]) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception("Fetch completion callback failed for %s", self.key)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the fetch completes. Returns False on timeout."""
        return self._done.wait(timeout)

    def result(self, timeout: float | None = None) -> str:
        """Return the identifier, raising the terminal error if the fetch failed."""
        if not self._done.wait(timeout):
            raise TimeoutError(f"Fetch for {self.key} still in flight")
        if self._error is not None:
            raise self._error
        if self._identifier is None:
            raise SyncError(f"Fetch for {self.key} completed without identifier")
        return self._identifier

    def __repr__(self) -> str:
        if not self.done:
            status = "pending"
        elif self._error is None:
            status = f"resolved={self._identifier}"
        else:
            status = f"failed={type(self._error).__name__}"
        return f"FetchHandle({self.key}, {status})"


@dataclass
class FetchTask:
    """Resolve the partner identifier of one relationship."""

    key: RelationKey
    policy: RetryPolicy
    handle: FetchHandle
    attempt: int = 0
    last_error: str | None = None

    @property
    def retries_left(self) -> int:
        return max(0, self.policy.max_attempts - self.attempt)

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts


@dataclass
class PublishTask:
    """Publish or update the registry descriptors of one relationship."""

    key: RelationKey
    kind: JobKind
    policy: RetryPolicy
    refresh_product: bool = False
    """Re-aggregate the product twin even if no consumer is left."""

    attempt: int = 0
    state: JobState = JobState.PENDING
    last_error: str | None = None
    history: list[JobState] = field(default_factory=lambda: [JobState.PENDING])
    _finished: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def retries_left(self) -> int:
        return max(0, self.policy.max_attempts - self.attempt)

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    def transition(self, state: JobState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"{self.kind.value} job for {self.key} already {self.state.value}")
        logger.debug(
            "%s job for %s: %s -> %s", self.kind.value, self.key, self.state.value, state.value
        )
        self.state = state
        self.history.append(state)
        if state.is_terminal:
            self._finished.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the job reached SUCCEEDED or FAILED. Returns False on timeout."""
        return self._finished.wait(timeout)
