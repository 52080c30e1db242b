"""
Data models for the meeting sync pipeline.

Origin records are frozen pydantic models; target records are read
snapshots; edges and match results are small hashable dataclasses.
"""

from .artifact import ArtifactMatch, EnrichmentArtifact, MatchStrategy
from .source import EntityType, LinkedEntity, Participant, SourceRecord, SourceType
from .target import (
    ASSOCIATION_TYPE_IDS,
    CROSS_REFERENCE_PROPERTIES,
    ENGAGEMENT_DEAL_TYPE_IDS,
    ENGAGEMENT_OBJECTS,
    AssociationEdge,
    DealRecord,
    DesiredAssociations,
    TargetKind,
    TargetRecord,
)

__all__ = [
    'ArtifactMatch',
    'EnrichmentArtifact',
    'MatchStrategy',
    'EntityType',
    'LinkedEntity',
    'Participant',
    'SourceRecord',
    'SourceType',
    'ASSOCIATION_TYPE_IDS',
    'CROSS_REFERENCE_PROPERTIES',
    'ENGAGEMENT_DEAL_TYPE_IDS',
    'ENGAGEMENT_OBJECTS',
    'AssociationEdge',
    'DealRecord',
    'DesiredAssociations',
    'TargetKind',
    'TargetRecord',
]
