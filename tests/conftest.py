"""Shared pytest fixtures for Relation Sync tests."""

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from relation_sync.domain.models import Relationship
from relation_sync.state.relation_store import InMemoryRelationStore
from relation_sync.sync.coordinator import SyncCoordinator
from relation_sync.sync.fetch import FetchCoordinator
from relation_sync.sync.scheduler import JobScheduler
from relation_sync.sync.tasks import RetryPolicy

# Delays shrunk so retry paths finish quickly
FAST_FETCH_POLICY = RetryPolicy(max_retries=3, delay_seconds=0.01)
FAST_PUBLISH_POLICY = RetryPolicy(max_retries=3, delay_seconds=0.01)
FAST_WAIT_DELAY = 0.01


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers.

    Note: Markers are also defined in pyproject.toml [tool.pytest.ini_options].
    This function ensures they're registered even when running pytest directly.
    """
    config.addinivalue_line("markers", "e2e: end-to-end tests through the service facade")
    config.addinivalue_line("markers", "slow: slow-running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        if "/e2e/" in str(item.fspath):
            item.add_marker(pytest.mark.e2e)


@pytest.fixture
def store() -> InMemoryRelationStore:
    """Empty in-memory relationship store."""
    return InMemoryRelationStore()


@pytest.fixture
def scheduler() -> Iterator[JobScheduler]:
    """Worker pool shut down after the test."""
    sched = JobScheduler(max_workers=4, thread_name_prefix="test-sync")
    yield sched
    sched.shutdown(wait=True)


@pytest.fixture
def make_fetches(
    store: InMemoryRelationStore, scheduler: JobScheduler
) -> Callable[..., FetchCoordinator]:
    """Factory for a FetchCoordinator with fast retries."""

    def factory(resolver: Any, policy: RetryPolicy = FAST_FETCH_POLICY) -> FetchCoordinator:
        return FetchCoordinator(store, resolver, scheduler, policy=policy)

    return factory


@pytest.fixture
def make_coordinator(
    store: InMemoryRelationStore,
    scheduler: JobScheduler,
    make_fetches: Callable[..., FetchCoordinator],
) -> Callable[..., SyncCoordinator]:
    """Factory for a SyncCoordinator with fast retries and waits."""

    def factory(
        resolver: Any,
        publisher: Any,
        policy: RetryPolicy = FAST_PUBLISH_POLICY,
    ) -> SyncCoordinator:
        return SyncCoordinator(
            store,
            publisher,
            make_fetches(resolver),
            scheduler,
            policy=policy,
            identifier_wait_delay=FAST_WAIT_DELAY,
        )

    return factory


@pytest.fixture
def supplier(store: InMemoryRelationStore) -> Relationship:
    """Stored supplier relationship without partner identifier."""
    return store.upsert(
        Relationship(
            material_id="M1",
            partner_id="P1",
            supplies_material=True,
            partner_material_number="SUP-M1",
        )
    )
