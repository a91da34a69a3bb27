"""End-to-end tests through the SyncService facade."""

import json
from collections.abc import Iterator

import httpx
import pytest
from fakes import WAIT_TIMEOUT, RecordingPublisher, ScriptedResolver, wait_until

from relation_sync.config import (
    ObservabilityConfig,
    RetryPolicyConfig,
    SyncConfig,
    WorkerConfig,
)
from relation_sync.domain.models import JobKind, Relationship
from relation_sync.registry.dtr_client import DtrClient
from relation_sync.registry.part_type_client import PartTypeInformationClient
from relation_sync.registry.partners import StaticPartnerDirectory
from relation_sync.service import SyncService
from relation_sync.state.relation_store import InMemoryRelationStore
from relation_sync.sync.errors import RemoteUnavailable

OWN_BPNL = "BPNL00000003AYRE"
SUPPLIER_BPNL = "BPNL00000003B2OM"


@pytest.fixture
def config() -> SyncConfig:
    """Service configuration with shortened delays and no endpoints."""
    return SyncConfig(
        own_bpnl=OWN_BPNL,
        partners={"P1": SUPPLIER_BPNL},
        fetch_retry=RetryPolicyConfig(max_retries=3, delay_seconds=0.01),
        publish_retry=RetryPolicyConfig(max_retries=3, delay_seconds=0.01),
        identifier_wait_delay_seconds=0.01,
        workers=WorkerConfig(max_workers=4, thread_name_prefix="e2e-sync"),
        observability=ObservabilityConfig(configure_logging=False),
    )


@pytest.fixture
def running() -> Iterator[list[SyncService]]:
    """Collects services created by a test and stops them afterwards."""
    services: list[SyncService] = []
    yield services
    for service in services:
        service.stop()


def test_new_supplier_relationship(
    config: SyncConfig, store: InMemoryRelationStore, running: list[SyncService]
) -> None:
    """Verify a new supplier is resolved after a transient failure and then published."""
    resolver = ScriptedResolver(RemoteUnavailable("timeout"), "urn:uuid:abc")
    publisher = RecordingPublisher()
    service = SyncService(config, store, resolver=resolver, publisher=publisher)
    running.append(service)
    service.start()

    relationship = store.upsert(
        Relationship("M1", "P1", supplies_material=True, partner_material_number="SUP-M1")
    )
    service.notify_relationship_created(relationship)

    assert service.wait_idle(WAIT_TIMEOUT)
    assert store.find("M1", "P1").partner_identifier == "urn:uuid:abc"
    assert resolver.call_count == 2
    assert len(publisher.material_calls) == 1
    published, kind = publisher.material_calls[0]
    assert kind is JobKind.CREATE
    assert published.partner_identifier == "urn:uuid:abc"

    health = service.health()
    assert health["status"] == "healthy"
    assert health["fetches_in_flight"] == 0
    assert health["publish_jobs"]["succeeded"] == 1


def test_supplier_becomes_customer(
    config: SyncConfig, store: InMemoryRelationStore, running: list[SyncService]
) -> None:
    """Verify an update publishes the product twin with the new consumer."""
    publisher = RecordingPublisher()
    service = SyncService(
        config, store, resolver=ScriptedResolver("urn:uuid:abc"), publisher=publisher
    )
    running.append(service)

    previous = store.upsert(
        Relationship("M1", "P1", supplies_material=True, partner_identifier="urn:uuid:abc")
    )
    updated = store.upsert(
        Relationship(
            "M1",
            "P1",
            supplies_material=True,
            buys_material=True,
            partner_identifier="urn:uuid:abc",
            version=previous.version,
        )
    )
    service.notify_relationship_updated(previous, updated)

    assert service.wait_idle(WAIT_TIMEOUT)
    assert [kind for _, kind in publisher.material_calls] == [JobKind.UPDATE]
    assert [(m, [c.partner_id for c in cs]) for m, cs in publisher.product_calls] == [
        ("M1", ["P1"])
    ]


def test_registry_down_is_reported(
    config: SyncConfig, store: InMemoryRelationStore, running: list[SyncService]
) -> None:
    """Verify a permanently failing registry ends in a failed job, not an exception."""
    publisher = RecordingPublisher(material_failures=100)
    service = SyncService(
        config, store, resolver=ScriptedResolver("urn:uuid:abc"), publisher=publisher
    )
    running.append(service)

    relationship = store.upsert(Relationship("M1", "P1", supplies_material=True))
    service.notify_relationship_created(relationship)

    assert service.wait_idle(WAIT_TIMEOUT)
    assert len(publisher.material_calls) == 4
    assert service.health()["publish_jobs"]["failed"] == 1
    # The identifier was still stored
    assert store.find("M1", "P1").partner_identifier == "urn:uuid:abc"


def test_http_adapters(
    config: SyncConfig, store: InMemoryRelationStore, running: list[SyncService]
) -> None:
    """Verify the flow against the HTTP resolver and registry clients."""
    registry_requests: list[httpx.Request] = []

    def resolver_handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["partnerBpnl"] == SUPPLIER_BPNL
        return httpx.Response(200, json={"catenaXId": "urn:uuid:abc"})

    def registry_handler(request: httpx.Request) -> httpx.Response:
        registry_requests.append(request)
        return httpx.Response(201)

    partners = StaticPartnerDirectory(config.partners)
    resolver = PartTypeInformationClient(
        config.resolver,
        partners,
        client=httpx.Client(
            transport=httpx.MockTransport(resolver_handler), base_url="http://resolver.test"
        ),
    )
    publisher = DtrClient(
        config.registry,
        OWN_BPNL,
        partners,
        client=httpx.Client(
            transport=httpx.MockTransport(registry_handler), base_url="http://dtr.test"
        ),
    )
    service = SyncService(
        config, store, resolver=resolver, publisher=publisher, partners=partners
    )
    running.append(service)

    relationship = store.upsert(Relationship("M1", "P1", supplies_material=True))
    service.notify_relationship_created(relationship)

    assert service.wait_idle(WAIT_TIMEOUT)
    assert len(registry_requests) == 1
    assert registry_requests[0].method == "POST"
    assert json.loads(registry_requests[0].content)["globalAssetId"] == "urn:uuid:abc"

    resolver.close()
    publisher.close()


def test_stop_discards_pending_retries(
    config: SyncConfig, store: InMemoryRelationStore
) -> None:
    """Verify shutdown does not wait for delayed retries."""
    config.publish_retry = RetryPolicyConfig(max_retries=3, delay_seconds=30.0)
    publisher = RecordingPublisher(material_failures=100)
    service = SyncService(
        config, store, resolver=ScriptedResolver("urn:uuid:abc"), publisher=publisher
    )
    relationship = store.upsert(
        Relationship("M1", "P1", supplies_material=True, partner_identifier="urn:uuid:abc")
    )

    service.notify_relationship_created(relationship)
    assert service.coordinator.wait_idle(0.5) is False

    service.stop()

    assert len(publisher.material_calls) == 1
    assert service.wait_idle(0)
    health = service.health()
    assert health["status"] == "stopped"
    assert health["delayed_jobs"] == 0
    assert health["publish_jobs"]["aborted"] == 1


def test_stop_releases_fetch_waiters(config: SyncConfig, store: InMemoryRelationStore) -> None:
    """Verify a fetch parked on its retry delay is failed on stop, not left in flight."""
    config.fetch_retry = RetryPolicyConfig(max_retries=3, delay_seconds=30.0)
    resolver = ScriptedResolver(RemoteUnavailable("supplier down"))
    publisher = RecordingPublisher()
    service = SyncService(config, store, resolver=resolver, publisher=publisher)
    relationship = store.upsert(Relationship("M1", "P1", supplies_material=True))

    service.notify_relationship_created(relationship)
    assert wait_until(lambda: service.scheduler.pending_delayed == 1)
    assert service.fetches.in_flight == 1

    service.stop()

    assert service.wait_idle(WAIT_TIMEOUT)
    assert service.fetches.in_flight == 0
    assert resolver.call_count == 1
    assert publisher.material_calls == []
    assert service.health()["publish_jobs"]["aborted"] == 1
