"""Core domain models for Relation Sync."""

import re
from dataclasses import dataclass, replace
from enum import Enum

# Generic URN (RFC 8141 shape) or a bare UUID.
URN_OR_UUID_PATTERN = re.compile(
    r"^(?:urn:[a-zA-Z0-9][a-zA-Z0-9-]{0,31}:[a-zA-Z0-9()+,\-.:=@;$_!*'%/?#]+"
    r"|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})$"
)


def is_well_formed_identifier(value: object) -> bool:
    """Check whether a resolver answer is a usable partner identifier."""
    return isinstance(value, str) and URN_OR_UUID_PATTERN.match(value) is not None


@dataclass(frozen=True, slots=True)
class RelationKey:
    """Identity of a material-partner relationship."""

    material_id: str
    """Own material number."""

    partner_id: str
    """Opaque partner handle."""

    def __str__(self) -> str:
        return f"{self.material_id}/{self.partner_id}"


@dataclass(frozen=True, slots=True)
class Relationship:
    """Immutable snapshot of a material-partner relationship.

    A relationship states whether the partner supplies the material to us,
    buys it from us, or both. For supplier relationships the partner's own
    external identifier of the material has to be resolved before the
    material twin can be advertised in the registry.
    """

    material_id: str
    """Own material number."""

    partner_id: str
    """Opaque partner handle (typically the partner's uuid)."""

    supplies_material: bool = False
    """Partner supplies this material to us."""

    buys_material: bool = False
    """Partner buys this material from us."""

    partner_identifier: str | None = None
    """Partner's external identifier for the material.

    Only meaningful when supplies_material is set.
    """

    partner_material_number: str | None = None
    """Material number the partner uses in-house."""

    version: int = 0
    """Optimistic concurrency version, assigned by the store (0 = not stored yet)."""

    @property
    def key(self) -> RelationKey:
        return RelationKey(self.material_id, self.partner_id)

    @property
    def needs_identifier(self) -> bool:
        """True when the partner supplies the material but no identifier is known."""
        return self.supplies_material and not self.partner_identifier

    def with_identifier(self, identifier: str) -> "Relationship":
        return replace(self, partner_identifier=identifier)


class JobKind(str, Enum):
    """Registry publication semantics of a publish job."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"


class JobState(str, Enum):
    """Lifecycle of a publish job."""

    PENDING = "PENDING"
    WAITING_FOR_IDENTIFIER = "WAITING_FOR_IDENTIFIER"
    PUBLISHING = "PUBLISHING"
    RETRYING = "RETRYING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)
