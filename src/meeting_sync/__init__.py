"""
Meeting Sync: idempotent Attio -> HubSpot meeting migration.

Re-runnable sync of meetings and their contact, company and deal
associations, plus a recording/transcript enrichment pass. Every run
converges on the same end state: meetings are never duplicated and
associations are only ever added.
"""

from .clients import AttioClient, HubSpotClient, RetryPolicy
from .config import SyncSettings, get_settings
from .errors import (
    DuplicateMarkerConflict,
    MeetingSyncError,
    NotFoundError,
    PermanentAPIError,
    TransientNetworkError,
)
from .ledger import IdLedger
from .models import (
    ArtifactMatch,
    AssociationEdge,
    DesiredAssociations,
    EnrichmentArtifact,
    EntityType,
    MatchStrategy,
    SourceRecord,
    TargetRecord,
)
from .pipeline import EnrichmentResult, MeetingSyncPipeline, SyncResult

__all__ = [
    'AttioClient',
    'HubSpotClient',
    'RetryPolicy',
    'SyncSettings',
    'get_settings',
    'DuplicateMarkerConflict',
    'MeetingSyncError',
    'NotFoundError',
    'PermanentAPIError',
    'TransientNetworkError',
    'IdLedger',
    'ArtifactMatch',
    'AssociationEdge',
    'DesiredAssociations',
    'EnrichmentArtifact',
    'EntityType',
    'MatchStrategy',
    'SourceRecord',
    'TargetRecord',
    'EnrichmentResult',
    'MeetingSyncPipeline',
    'SyncResult',
]

__version__ = '0.3.0'
