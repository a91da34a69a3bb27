"""Relationship state access."""

from relation_sync.state.relation_store import InMemoryRelationStore, RelationStore

__all__ = ["RelationStore", "InMemoryRelationStore"]
