"""
Pipeline components for the meeting sync.

Components:
- SourceExtractor: list, normalize and validate Attio meetings
- RecordMatcher: origin id -> HubSpot meeting index (ledger, then markers)
- UpsertEngine: create meetings / safely upgrade bodies
- IdentityResolver / AssociationResolver: desired associations
- AssociationReconciler: additive association sync
- EnrichmentMatcher: recording files -> meetings
- DealEngagementBackfill: company and contact engagements -> deals
- MeetingSyncPipeline: orchestrates all of the above
"""

from .associations import AssociationResolver
from .deal_backfill import DealActivity, DealBackfillResult, DealEngagementBackfill
from .enrichment import (
    EnrichmentMatcher,
    EnrichmentPlan,
    RecordingMap,
    apply_enrichment,
    build_recording_map,
    combine_transcripts,
    extract_tokens,
    plan_enrichment,
)
from .extractor import ExtractionOutput, SourceExtractor
from .identity import IdentityResolver
from .matcher import Classification, MatchIndex, RecordMatcher
from .normalizer import normalize_meeting
from .pipeline import EnrichmentResult, MeetingSyncPipeline, SyncResult
from .reconciler import AssociationReconciler, ReconcileResult, missing_edges
from .upsert import UpsertAction, UpsertEngine, UpsertResult, resolve_time_window

__all__ = [
    'AssociationResolver',
    'DealActivity',
    'DealBackfillResult',
    'DealEngagementBackfill',
    'EnrichmentMatcher',
    'EnrichmentPlan',
    'RecordingMap',
    'apply_enrichment',
    'build_recording_map',
    'combine_transcripts',
    'extract_tokens',
    'plan_enrichment',
    'ExtractionOutput',
    'SourceExtractor',
    'IdentityResolver',
    'Classification',
    'MatchIndex',
    'RecordMatcher',
    'normalize_meeting',
    'EnrichmentResult',
    'MeetingSyncPipeline',
    'SyncResult',
    'AssociationReconciler',
    'ReconcileResult',
    'missing_edges',
    'UpsertAction',
    'UpsertEngine',
    'UpsertResult',
    'resolve_time_window',
]
