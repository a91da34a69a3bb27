"""Unit tests for the digital twin registry client."""

import json
from collections.abc import Callable

import httpx
import pytest

from relation_sync.config import RegistryConfig
from relation_sync.domain.models import JobKind, Relationship
from relation_sync.registry.dtr_client import DtrClient, twin_id
from relation_sync.registry.http import encode_id
from relation_sync.registry.partners import StaticPartnerDirectory
from relation_sync.sync.errors import RemoteRejected, RemoteUnavailable

OWN_BPNL = "BPNL00000003AYRE"
SUPPLIER_BPNL = "BPNL00000003B2OM"
CUSTOMER_BPNL = "BPNL00000003CML1"

Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler) -> DtrClient:
    partners = StaticPartnerDirectory({"P1": SUPPLIER_BPNL, "C1": CUSTOMER_BPNL})
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://dtr.test")
    return DtrClient(RegistryConfig(), OWN_BPNL, partners, client=http)


@pytest.fixture
def supplier_rel() -> Relationship:
    return Relationship(
        "M1",
        "P1",
        supplies_material=True,
        partner_identifier="urn:uuid:abc",
        partner_material_number="SUP-M1",
    )


class TestDescriptors:
    """Tests for descriptor construction."""

    def test_material_descriptor(self, supplier_rel: Relationship) -> None:
        """Verify the supplier's identifier becomes the globalAssetId."""
        client = make_client(lambda r: httpx.Response(201))

        descriptor = client.material_descriptor(supplier_rel)

        assert descriptor["globalAssetId"] == "urn:uuid:abc"
        assert descriptor["id"] == twin_id(OWN_BPNL, "M1", SUPPLIER_BPNL)
        ids = {e["name"]: e["value"] for e in descriptor["specificAssetIds"]}
        assert ids == {
            "digitalTwinType": "PartType",
            "customerPartId": "M1",
            "manufacturerId": SUPPLIER_BPNL,
            "manufacturerPartId": "SUP-M1",
        }
        assert {s["idShort"] for s in descriptor["submodelDescriptors"]} == {
            "ItemStock",
            "ShortTermMaterialDemand",
        }

    def test_material_descriptor_requires_identifier(self) -> None:
        """Verify a supplier twin is never built without identifier."""
        client = make_client(lambda r: httpx.Response(201))

        with pytest.raises(RemoteRejected):
            client.material_descriptor(Relationship("M1", "P1", supplies_material=True))

    def test_product_descriptor_lists_consumers(self) -> None:
        """Verify each consumer's part number is advertised to that consumer."""
        client = make_client(lambda r: httpx.Response(201))
        consumers = [
            Relationship("M2", "C1", buys_material=True, partner_material_number="CUS-M2")
        ]

        descriptor = client.product_descriptor("M2", consumers)

        assert descriptor["id"] == twin_id(OWN_BPNL, "M2")
        customer_ids = [
            e for e in descriptor["specificAssetIds"] if e["name"] == "customerPartId"
        ]
        assert len(customer_ids) == 1
        assert customer_ids[0]["value"] == "CUS-M2"
        assert customer_ids[0]["externalSubjectId"]["keys"][0]["value"] == CUSTOMER_BPNL

    def test_twin_ids_are_deterministic(self) -> None:
        """Verify repeated publishes address the same descriptor."""
        assert twin_id(OWN_BPNL, "M1") == twin_id(OWN_BPNL, "M1")
        assert twin_id(OWN_BPNL, "M1") != twin_id(OWN_BPNL, "M2")
        assert twin_id(OWN_BPNL, "M1").startswith("urn:uuid:")


class TestPublishMaterial:
    """Tests for material twin publication."""

    def test_create_posts_descriptor(self, supplier_rel: Relationship) -> None:
        """Verify CREATE registers the descriptor with POST."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201)

        assert make_client(handler).publish_material(supplier_rel, JobKind.CREATE) is True

        assert [(r.method, r.url.path) for r in requests] == [("POST", "/shell-descriptors")]
        body = json.loads(requests[0].content)
        assert body["globalAssetId"] == "urn:uuid:abc"

    def test_create_falls_back_to_update_on_conflict(self, supplier_rel: Relationship) -> None:
        """Verify an already registered descriptor is replaced."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(409 if request.method == "POST" else 204)

        make_client(handler).publish_material(supplier_rel, JobKind.CREATE)

        shell_id = twin_id(OWN_BPNL, "M1", SUPPLIER_BPNL)
        assert [(r.method, r.url.path) for r in requests] == [
            ("POST", "/shell-descriptors"),
            ("PUT", f"/shell-descriptors/{encode_id(shell_id)}"),
        ]

    def test_update_falls_back_to_create_when_missing(self, supplier_rel: Relationship) -> None:
        """Verify UPDATE of an unknown descriptor registers it."""
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(404 if request.method == "PUT" else 201)

        make_client(handler).publish_material(supplier_rel, JobKind.UPDATE)

        assert methods == ["PUT", "POST"]

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_status_is_unavailable(
        self, supplier_rel: Relationship, status: int
    ) -> None:
        """Verify throttling and server errors are retryable."""
        client = make_client(lambda r: httpx.Response(status))

        with pytest.raises(RemoteUnavailable) as exc_info:
            client.publish_material(supplier_rel, JobKind.CREATE)

        assert exc_info.value.status_code == status

    def test_client_error_is_rejected(self, supplier_rel: Relationship) -> None:
        """Verify a 400 is reported as a rejection."""
        client = make_client(lambda r: httpx.Response(400, text="bad descriptor"))

        with pytest.raises(RemoteRejected) as exc_info:
            client.publish_material(supplier_rel, JobKind.CREATE)

        assert exc_info.value.status_code == 400

    def test_timeout_is_unavailable(self, supplier_rel: Relationship) -> None:
        """Verify a timeout counts as a remote failure."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(RemoteUnavailable, match="timed out"):
            make_client(handler).publish_material(supplier_rel, JobKind.UPDATE)


class TestPublishProduct:
    """Tests for product twin publication."""

    def test_product_is_upserted(self) -> None:
        """Verify the product twin is written with PUT."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        consumers = [Relationship("M2", "C1", buys_material=True)]
        assert make_client(handler).publish_product("M2", consumers) is True

        assert len(requests) == 1
        assert requests[0].method == "PUT"
        assert requests[0].url.path == f"/shell-descriptors/{encode_id(twin_id(OWN_BPNL, 'M2'))}"

    def test_product_without_consumers(self) -> None:
        """Verify the product twin can be refreshed with an empty consumer list."""
        client = make_client(lambda r: httpx.Response(204))

        assert client.publish_product("M2", []) is True
