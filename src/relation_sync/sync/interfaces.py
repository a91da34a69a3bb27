"""Narrow interfaces of the remote collaborators used by the sync engine.

The engine does not time out collaborator calls itself. Each call occupies a
worker until it returns, so implementations must bound every remote request
(the HTTP adapters use the endpoint's ``timeout_seconds``) and report an
expired bound as RemoteUnavailable, which the coordinators retry.
"""

from collections.abc import Sequence
from typing import Protocol

from relation_sync.domain.models import JobKind, Relationship


class IdentifierResolver(Protocol):
    """Asks a partner for its identifier of a material."""

    def resolve(self, relationship: Relationship) -> str:
        """Return the partner's identifier within a bounded time.

        Raises:
            RemoteUnavailable: Network error, timeout, or transient status.
            RemoteRejected: Refused request or malformed answer.
        """
        ...


class RegistryPublisher(Protocol):
    """Creates or updates discoverable descriptors in the twin registry.

    Calls must be idempotent: publishing the same data twice is harmless.
    Like the resolver, every call must be bounded by a timeout and raise
    RemoteUnavailable when it expires.
    """

    def publish_material(self, relationship: Relationship, kind: JobKind) -> bool:
        """Publish the material twin scoped to a supplier relationship."""
        ...

    def publish_product(self, material_id: str, consumers: Sequence[Relationship]) -> bool:
        """Publish the product twin aggregated over all consuming partners."""
        ...


class PartnerDirectory(Protocol):
    """Maps opaque partner handles to business partner numbers (BPNL)."""

    def bpnl_of(self, partner_id: str) -> str:
        ...
