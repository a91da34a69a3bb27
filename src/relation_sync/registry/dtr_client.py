"""Digital twin registry (DTR) client publishing shell descriptors.

Implements the RegistryPublisher interface against the AAS Part 2 registry
API. Two kinds of twins are maintained:

- material twins: one per supplier relationship, carrying the supplier's
  identifier of the material as globalAssetId;
- product twins: one per own material that partners buy, listing every
  consuming partner's material number.

Descriptor ids are derived deterministically from the BPNLs and material
numbers, so repeated publishes address the same descriptor.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx

from relation_sync.config import RegistryConfig
from relation_sync.domain.models import JobKind, Relationship
from relation_sync.registry.http import build_client, encode_id, raise_for_status, transport_error
from relation_sync.sync.errors import RemoteRejected

if TYPE_CHECKING:
    from relation_sync.sync.interfaces import PartnerDirectory

logger = logging.getLogger(__name__)

MATERIAL_SUBMODELS = {
    "ItemStock": "urn:samm:io.catenax.item_stock:2.0.0#ItemStock",
    "ShortTermMaterialDemand": (
        "urn:samm:io.catenax.short_term_material_demand:1.0.0#ShortTermMaterialDemand"
    ),
}

PRODUCT_SUBMODELS = {
    "ItemStock": "urn:samm:io.catenax.item_stock:2.0.0#ItemStock",
    "PlannedProductionOutput": (
        "urn:samm:io.catenax.planned_production_output:2.0.0#PlannedProductionOutput"
    ),
    "DeliveryInformation": "urn:samm:io.catenax.delivery_information:2.0.0#DeliveryInformation",
    "PartTypeInformation": "urn:samm:io.catenax.part_type_information:1.0.0#PartTypeInformation",
}


def twin_id(*parts: str) -> str:
    """Deterministic urn:uuid for a twin addressed by the given parts."""
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, '/'.join(parts))}"


class DtrClient:
    """RegistryPublisher backed by a digital twin registry."""

    def __init__(
        self,
        config: RegistryConfig,
        own_bpnl: str,
        partners: PartnerDirectory,
        client: httpx.Client | None = None,
    ):
        """Initialize the registry client.

        Args:
            config: Registry endpoint configuration.
            own_bpnl: BPNL of this company.
            partners: Partner handle -> BPNL lookup.
            client: Optional preconfigured httpx client (used in tests).
        """
        self.config = config
        self._own_bpnl = own_bpnl
        self._partners = partners
        self._client = client or build_client(config)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> DtrClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # Descriptor construction

    def _specific_asset_id(self, name: str, value: str, *visible_to: str) -> dict[str, Any]:
        entry: dict[str, Any] = {"name": name, "value": value}
        if visible_to:
            entry["externalSubjectId"] = {
                "type": "ExternalReference",
                "keys": [{"type": "GlobalReference", "value": bpnl} for bpnl in visible_to],
            }
        return entry

    def _submodel_descriptors(
        self, shell_id: str, submodels: dict[str, str]
    ) -> list[dict[str, Any]]:
        descriptors = []
        for id_short, semantic_id in submodels.items():
            descriptors.append(
                {
                    "id": twin_id(shell_id, id_short),
                    "idShort": id_short,
                    "semanticId": {
                        "type": "ExternalReference",
                        "keys": [{"type": "GlobalReference", "value": semantic_id}],
                    },
                    "endpoints": [
                        {
                            "interface": "SUBMODEL-3.0",
                            "protocolInformation": {
                                "href": f"{self.config.edc_endpoint}/{id_short.lower()}",
                                "endpointProtocol": "HTTP",
                                "endpointProtocolVersion": ["1.1"],
                            },
                        }
                    ],
                }
            )
        return descriptors

    def material_descriptor(self, relationship: Relationship) -> dict[str, Any]:
        """Shell descriptor of the material twin for a supplier relationship."""
        if not relationship.partner_identifier:
            raise RemoteRejected(f"Material twin for {relationship.key} needs a partner identifier")

        supplier_bpnl = self._partners.bpnl_of(relationship.partner_id)
        shell_id = twin_id(self._own_bpnl, relationship.material_id, supplier_bpnl)
        specific_ids = [
            self._specific_asset_id("digitalTwinType", "PartType", supplier_bpnl),
            self._specific_asset_id("customerPartId", relationship.material_id, supplier_bpnl),
            self._specific_asset_id("manufacturerId", supplier_bpnl, supplier_bpnl),
        ]
        if relationship.partner_material_number:
            specific_ids.append(
                self._specific_asset_id(
                    "manufacturerPartId", relationship.partner_material_number, supplier_bpnl
                )
            )
        return {
            "id": shell_id,
            "idShort": f"{relationship.material_id}_{supplier_bpnl}",
            "globalAssetId": relationship.partner_identifier,
            "specificAssetIds": specific_ids,
            "submodelDescriptors": self._submodel_descriptors(shell_id, MATERIAL_SUBMODELS),
        }

    def product_descriptor(
        self, material_id: str, consumers: Sequence[Relationship]
    ) -> dict[str, Any]:
        """Shell descriptor of the product twin listing all consuming partners."""
        shell_id = twin_id(self._own_bpnl, material_id)
        consumer_bpnls = [self._partners.bpnl_of(c.partner_id) for c in consumers]
        specific_ids = [
            self._specific_asset_id("digitalTwinType", "PartType", *consumer_bpnls),
            self._specific_asset_id("manufacturerPartId", material_id, *consumer_bpnls),
            self._specific_asset_id("manufacturerId", self._own_bpnl, *consumer_bpnls),
        ]
        for consumer, bpnl in zip(consumers, consumer_bpnls):
            if consumer.partner_material_number:
                specific_ids.append(
                    self._specific_asset_id(
                        "customerPartId", consumer.partner_material_number, bpnl
                    )
                )
        return {
            "id": shell_id,
            "idShort": material_id,
            "globalAssetId": twin_id(self._own_bpnl, material_id, "product"),
            "specificAssetIds": specific_ids,
            "submodelDescriptors": self._submodel_descriptors(shell_id, PRODUCT_SUBMODELS),
        }

    # Registry calls

    def _post(self, descriptor: dict[str, Any]) -> httpx.Response:
        try:
            return self._client.post("/shell-descriptors", json=descriptor)
        except httpx.HTTPError as e:
            raise transport_error(e, f"Creating descriptor {descriptor['id']}") from e

    def _put(self, descriptor: dict[str, Any]) -> httpx.Response:
        url = f"/shell-descriptors/{encode_id(descriptor['id'])}"
        try:
            return self._client.put(url, json=descriptor)
        except httpx.HTTPError as e:
            raise transport_error(e, f"Updating descriptor {descriptor['id']}") from e

    def _create(self, descriptor: dict[str, Any]) -> None:
        response = self._post(descriptor)
        if response.status_code == 409:
            logger.debug("Descriptor %s already registered, updating", descriptor["id"])
            response = self._put(descriptor)
        raise_for_status(response, f"Registering descriptor {descriptor['id']}")

    def _update(self, descriptor: dict[str, Any]) -> None:
        response = self._put(descriptor)
        if response.status_code == 404:
            logger.debug("Descriptor %s not registered yet, creating", descriptor["id"])
            response = self._post(descriptor)
        raise_for_status(response, f"Updating descriptor {descriptor['id']}")

    def publish_material(self, relationship: Relationship, kind: JobKind) -> bool:
        """Register (CREATE) or update (UPDATE) the material twin.

        Raises:
            RemoteUnavailable: Network error, timeout, or 429/5xx.
            RemoteRejected: Other 4xx, or a relationship without identifier.
        """
        descriptor = self.material_descriptor(relationship)
        if kind is JobKind.CREATE:
            self._create(descriptor)
        else:
            self._update(descriptor)
        logger.debug("%s of material twin %s done", kind.value, descriptor["id"])
        return True

    def publish_product(self, material_id: str, consumers: Sequence[Relationship]) -> bool:
        """Create or update the product twin with the current consumer list."""
        descriptor = self.product_descriptor(material_id, consumers)
        self._update(descriptor)
        logger.debug(
            "Product twin %s published for %d consumers", descriptor["id"], len(consumers)
        )
        return True
