"""Error taxonomy for relationship synchronization."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relation_sync.domain.models import RelationKey


class SyncError(Exception):
    """Base class for synchronization failures."""


class RemoteUnavailable(SyncError):
    """Remote peer unreachable, timed out, or answered with a transient error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRejected(SyncError):
    """Remote peer refused the request or returned a malformed answer."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFound(SyncError):
    """The relationship does not exist (anymore) in the store."""

    def __init__(self, key: RelationKey):
        super().__init__(f"Relationship {key} not found")
        self.key = key


class ConcurrentModification(SyncError):
    """An upsert was based on a stale relationship version."""

    def __init__(self, key: RelationKey, expected: int, actual: int):
        super().__init__(
            f"Relationship {key} was modified concurrently (version {expected}, stored {actual})"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class RetryExhausted(SyncError):
    """Terminal failure after the retry budget was consumed."""

    def __init__(self, task: str, key: RelationKey, attempts: int, reason: str | None = None):
        message = f"{task} for {key} failed after {attempts} attempts"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.task = task
        self.key = key
        self.attempts = attempts
        self.reason = reason
