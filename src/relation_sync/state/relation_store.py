"""Relationship store boundary with optimistic versioning."""

import logging
import threading
from dataclasses import replace
from typing import Protocol

from relation_sync.domain.models import RelationKey, Relationship
from relation_sync.sync.errors import ConcurrentModification, NotFound

logger = logging.getLogger(__name__)


class RelationStore(Protocol):
    """Durable store of relationships keyed by (material_id, partner_id).

    Implementations must reject an upsert whose ``version`` does not match the
    stored one so that read-modify-write cycles never lose a concurrent update.
    """

    def find(self, material_id: str, partner_id: str) -> Relationship:
        """Return the stored relationship or raise NotFound."""
        ...

    def upsert(self, relationship: Relationship) -> Relationship:
        """Insert or update a relationship and return the stored copy."""
        ...

    def list_consumers_of(self, material_id: str) -> list[Relationship]:
        """Return all relationships whose partner buys the material."""
        ...


class InMemoryRelationStore:
    """Thread-safe in-process RelationStore.

    Every successful upsert bumps the version. Upserting a relationship with
    version 0 creates it; any other version must match the stored one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._relations: dict[RelationKey, Relationship] = {}

    def find(self, material_id: str, partner_id: str) -> Relationship:
        key = RelationKey(material_id, partner_id)
        with self._lock:
            relationship = self._relations.get(key)
        if relationship is None:
            raise NotFound(key)
        return relationship

    def upsert(self, relationship: Relationship) -> Relationship:
        key = relationship.key
        with self._lock:
            current = self._relations.get(key)
            current_version = current.version if current else 0
            if relationship.version != current_version:
                raise ConcurrentModification(key, relationship.version, current_version)

            stored = replace(relationship, version=current_version + 1)
            self._relations[key] = stored

        logger.debug("Stored relationship %s (version %d)", key, stored.version)
        return stored

    def delete(self, material_id: str, partner_id: str) -> bool:
        """Remove a relationship. Returns False if it did not exist."""
        with self._lock:
            return self._relations.pop(RelationKey(material_id, partner_id), None) is not None

    def list_consumers_of(self, material_id: str) -> list[Relationship]:
        with self._lock:
            consumers = [
                r
                for r in self._relations.values()
                if r.material_id == material_id and r.buys_material
            ]
        return sorted(consumers, key=lambda r: r.partner_id)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._relations)
