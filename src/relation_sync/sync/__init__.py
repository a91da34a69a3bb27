"""Asynchronous synchronization of relationships with partners and the twin registry."""

from relation_sync.sync.coordinator import SyncCoordinator
from relation_sync.sync.errors import (
    ConcurrentModification,
    NotFound,
    RemoteRejected,
    RemoteUnavailable,
    RetryExhausted,
    SyncError,
)
from relation_sync.sync.fetch import FetchCoordinator
from relation_sync.sync.scheduler import JobScheduler
from relation_sync.sync.tasks import FetchHandle, PublishTask, RetryPolicy

__all__ = [
    "SyncCoordinator",
    "FetchCoordinator",
    "JobScheduler",
    "FetchHandle",
    "PublishTask",
    "RetryPolicy",
    "SyncError",
    "RemoteUnavailable",
    "RemoteRejected",
    "NotFound",
    "ConcurrentModification",
    "RetryExhausted",
]
