"""Domain models for Relation Sync."""

from relation_sync.domain.models import JobKind, JobState, RelationKey, Relationship

__all__ = ["Relationship", "RelationKey", "JobKind", "JobState"]
