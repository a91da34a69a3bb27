"""Client resolving a partner's identifier of a material (part type information)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from relation_sync.config import ResolverConfig
from relation_sync.domain.models import Relationship
from relation_sync.registry.http import build_client, raise_for_status, transport_error
from relation_sync.sync.errors import RemoteRejected

if TYPE_CHECKING:
    from relation_sync.sync.interfaces import PartnerDirectory

logger = logging.getLogger(__name__)


class PartTypeInformationClient:
    """IdentifierResolver asking the supplier for its PartTypeInformation.

    The supplier's catenaXId of the part is the identifier stored on the
    relationship.
    """

    def __init__(
        self,
        config: ResolverConfig,
        partners: PartnerDirectory,
        client: httpx.Client | None = None,
    ):
        """Initialize the resolver client.

        Args:
            config: Resolver endpoint configuration.
            partners: Partner handle -> BPNL lookup.
            client: Optional preconfigured httpx client (used in tests).
        """
        self.config = config
        self._partners = partners
        self._client = client or build_client(config)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> PartTypeInformationClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def resolve(self, relationship: Relationship) -> str:
        """Fetch the supplier's catenaXId for the relationship's material.

        Raises:
            RemoteUnavailable: Network error, timeout, or 429/5xx.
            RemoteRejected: Other 4xx or a body without catenaXId.
        """
        partner_bpnl = self._partners.bpnl_of(relationship.partner_id)
        params = {
            "partnerBpnl": partner_bpnl,
            "materialNumberCustomer": relationship.material_id,
        }
        if relationship.partner_material_number:
            params["materialNumberSupplier"] = relationship.partner_material_number

        action = f"PartTypeInformation fetch from {partner_bpnl} for {relationship.material_id}"
        try:
            response = self._client.get("/part-type-information", params=params)
        except httpx.HTTPError as e:
            raise transport_error(e, action) from e
        raise_for_status(response, action)

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteRejected(f"{action} returned invalid JSON") from e

        identifier = body.get("catenaXId") if isinstance(body, dict) else None
        if not isinstance(identifier, str) or not identifier:
            raise RemoteRejected(f"{action} returned no catenaXId")

        logger.debug("%s -> %s", action, identifier)
        return identifier
