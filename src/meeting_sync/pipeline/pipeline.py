"""
Main orchestrator for the Attio -> HubSpot meeting sync.

Sync run:
1. Extract and validate every Attio meeting
2. List every HubSpot meeting and build the match index (ledger + markers)
3. For each origin record, one at a time:
   a. create the meeting, or safely upgrade the existing body
   b. resolve desired contact/company/deal associations
   c. create the associations that are missing
4. Return aggregate counts and the first N errors

Enrichment run:
1. Build the match index and the recording -> meeting map
2. List recording files and resolve each to a meeting
3. Write missing or stale video / transcript sections, one update per meeting

A record's failure is logged and counted, never fatal to the run.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..clients.attio_client import AttioClient
from ..clients.hubspot_client import HubSpotClient
from ..config import SyncSettings, get_settings
from ..errors import EnrichmentError, MeetingSyncError
from ..ledger import IdLedger
from ..logging import PipelineTimer, get_logger, logging_context
from ..models.artifact import ArtifactMatch, MatchStrategy
from ..models.source import SourceRecord
from ..models.target import TargetRecord
from ..transcripts import format_transcript
from .associations import AssociationResolver
from .enrichment import (
    EnrichmentMatcher,
    apply_enrichment,
    build_recording_map,
    combine_transcripts,
    plan_enrichment,
)
from .extractor import ExtractionOutput, SourceExtractor
from .identity import IdentityResolver
from .matcher import MatchIndex, RecordMatcher
from .reconciler import AssociationReconciler
from .upsert import UpsertAction, UpsertEngine

logger = get_logger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class RunReport:
    """Fields shared by sync and enrichment results."""

    run_id: str
    dry_run: bool
    max_errors: int = 10

    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)

    errored: int = 0
    errors: list[str] = field(default_factory=list)
    errors_truncated: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if no record failed."""
        return self.errored == 0

    def add_error(self, message: str) -> None:
        """Count a record failure; keep only the first ``max_errors`` messages."""
        self.errored += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(message)
        else:
            self.errors_truncated += 1

    def finish(self, timer: PipelineTimer) -> None:
        self.completed_at = datetime.now()
        self.processing_time_ms = int(timer.total_ms)
        self.stage_timings = {k: round(v, 2) for k, v in timer.stages.items()}

    def _base_dict(self) -> dict[str, Any]:
        return {
            'run_id': self.run_id,
            'dry_run': self.dry_run,
            'success': self.success,
            'errored': self.errored,
            'errors': self.errors,
            'errors_truncated': self.errors_truncated,
            'warnings': self.warnings,
            'processing_time_ms': self.processing_time_ms,
            'stage_timings': self.stage_timings,
        }


@dataclass
class SyncResult(RunReport):
    """Result of a sync run."""

    extraction: dict[str, Any] = field(default_factory=dict)
    index: dict[str, Any] = field(default_factory=dict)

    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    protected: int = 0
    skipped: int = 0

    associations_created: int = 0
    association_failures: int = 0
    ledger_adopted: int = 0

    created_ids: list[str] = field(default_factory=list)
    updated_ids: list[str] = field(default_factory=list)
    duplicate_conflicts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            **self._base_dict(),
            'extraction': self.extraction,
            'index': self.index,
            'processed': self.processed,
            'created': self.created,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'protected': self.protected,
            'skipped': self.skipped,
            'associations_created': self.associations_created,
            'association_failures': self.association_failures,
            'ledger_adopted': self.ledger_adopted,
            'created_ids': self.created_ids,
            'updated_ids': self.updated_ids,
            'duplicate_conflicts': self.duplicate_conflicts,
        }


@dataclass
class EnrichmentResult(RunReport):
    """Result of an enrichment run."""

    artifacts_total: int = 0
    matched_indirect: int = 0
    matched_direct: int = 0
    enriched: int = 0
    already_enriched: int = 0
    transcripts_fetched: int = 0
    recordings_mapped: int = 0

    unmatched: list[dict[str, Any]] = field(default_factory=list)
    needs_confirmation: list[dict[str, Any]] = field(default_factory=list)
    enriched_ids: list[str] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return self.matched_indirect + self.matched_direct

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            'artifacts_total': self.artifacts_total,
            'matched': self.matched,
            'matched_indirect': self.matched_indirect,
            'matched_direct': self.matched_direct,
            'enriched': self.enriched,
            'already_enriched': self.already_enriched,
            'transcripts_fetched': self.transcripts_fetched,
            'recordings_mapped': self.recordings_mapped,
            'unmatched': self.unmatched,
            'needs_confirmation': self.needs_confirmation,
            'enriched_ids': self.enriched_ids,
        }


class MeetingSyncPipeline:
    """
    End-to-end sync and enrichment.

    Orchestrates:
    - SourceExtractor: list and validate Attio meetings
    - RecordMatcher: per-run origin id -> HubSpot meeting index
    - UpsertEngine: create / safe upgrade
    - AssociationResolver + AssociationReconciler: additive edge sync
    - EnrichmentMatcher: recording files -> meetings

    Usage:
        pipeline = MeetingSyncPipeline.from_env(dry_run=True)
        try:
            result = await pipeline.run()
        finally:
            await pipeline.close()
    """

    def __init__(
        self,
        origin: AttioClient,
        target: HubSpotClient,
        settings: SyncSettings | None = None,
        ledger: IdLedger | None = None,
        include_calls: bool | None = None,
    ):
        """
        Args:
            origin: Attio client
            target: HubSpot client (its dry_run flag decides the run mode)
            settings: Tuning settings (defaults to environment)
            ledger: Id ledger; an in-memory ledger is used when omitted
            include_calls: Also sync Attio calls (defaults to INCLUDE_CALLS)
        """
        self.origin = origin
        self.target = target
        self.settings = settings or get_settings()
        self.ledger = ledger if ledger is not None else IdLedger(read_only=target.dry_run)
        self.dry_run = target.dry_run

        if include_calls is None:
            include_calls = self.settings.INCLUDE_CALLS

        self.extractor = SourceExtractor(origin, include_calls=include_calls)
        self.matcher = RecordMatcher()
        self.upsert = UpsertEngine(
            target,
            ledger=self.ledger,
            upgrade_threshold=self.settings.UPGRADE_BODY_THRESHOLD,
        )
        self.identity = IdentityResolver(target)
        self.associations = AssociationResolver(self.identity)
        self.reconciler = AssociationReconciler(target)
        self.enrichment = EnrichmentMatcher()

    @classmethod
    def from_env(
        cls,
        dry_run: bool | None = None,
        include_calls: bool | None = None,
    ) -> MeetingSyncPipeline:
        """
        Create pipeline from environment variables.

        Expects:
            ATTIO_API_KEY, HUBSPOT_ACCESS_TOKEN (required)
            ID_LEDGER_PATH: ledger file (optional)
            DRY_RUN: default run mode, overridden by ``dry_run``
        """
        settings = get_settings()
        dry_run = settings.DRY_RUN if dry_run is None else dry_run
        origin = AttioClient(settings=settings)
        target = HubSpotClient(settings=settings, dry_run=dry_run)
        ledger = IdLedger.load(settings.ID_LEDGER_PATH or None, read_only=dry_run)
        return cls(origin, target, settings=settings, ledger=ledger, include_calls=include_calls)

    async def close(self) -> None:
        """Close all client connections."""
        await self.origin.close()
        await self.target.close()

    # =========================================================================
    # Sync
    # =========================================================================

    async def run(
        self,
        now: datetime | None = None,
        since: datetime | None = None,
    ) -> SyncResult:
        """
        Run one full sync pass.

        Args:
            now: Reference time for future-date rejection (default: now)
            since: Incremental run; only origin meetings created after this

        Returns:
            SyncResult with aggregate counts
        """
        timer = PipelineTimer()
        result = SyncResult(
            run_id=new_run_id(),
            dry_run=self.dry_run,
            max_errors=self.settings.MAX_REPORTED_ERRORS,
        )

        with logging_context(run_id=result.run_id):
            logger.info(
                'sync_started',
                dry_run=self.dry_run,
                since=since.isoformat() if since else None,
            )

            with timer.stage('extraction'):
                extraction = await self.extractor.extract(now, since=since)
            result.extraction = extraction.to_dict()

            with timer.stage('indexing'):
                index = await self._load_index(result)

            classification = self.matcher.classify(extraction.records, index)
            logger.info(
                'classification_complete',
                to_create=len(classification.to_create),
                to_reconcile=len(classification.to_reconcile),
            )

            for source in classification.to_create:
                await self._sync_record(source, None, result, timer)
            for source, existing in classification.to_reconcile:
                await self._sync_record(source, existing, result, timer)

            result.finish(timer)
            logger.info(
                'sync_complete',
                processed=result.processed,
                created=result.created,
                updated=result.updated,
                skipped=result.skipped,
                errored=result.errored,
                associations_created=result.associations_created,
                **timer.summary(),
            )
        return result

    async def _load_index(self, result: SyncResult | EnrichmentResult) -> MatchIndex:
        targets = await self.target.list_meetings()
        index = self.matcher.build_index(targets, self.ledger)

        for conflict in index.conflicts:
            result.warnings.append(str(conflict))
        if isinstance(result, SyncResult):
            result.index = index.to_dict()
            result.duplicate_conflicts = [dict(c.context) for c in index.conflicts]
            if not self.dry_run:
                result.ledger_adopted = self.ledger.merge(index.marker_only_mappings())
        return index

    async def _sync_record(
        self,
        source: SourceRecord,
        existing: TargetRecord | None,
        result: SyncResult,
        timer: PipelineTimer,
    ) -> None:
        result.processed += 1

        with logging_context(origin_id=source.origin_id):
            try:
                with timer.stage('upsert'):
                    if existing is None:
                        record = await self.upsert.create(source)
                        if record is None:
                            result.skipped += 1
                            return
                        result.created += 1
                        result.created_ids.append(record.id)
                        known_edges: set | None = set()
                    else:
                        outcome = await self.upsert.update(source, existing)
                        record = outcome.record
                        known_edges = None
                        if outcome.action == UpsertAction.UPDATED:
                            result.updated += 1
                            result.updated_ids.append(record.id)
                        elif outcome.action == UpsertAction.PROTECTED:
                            result.protected += 1
                        else:
                            result.unchanged += 1

                with logging_context(target_id=record.id):
                    with timer.stage('associations'):
                        failures: list[str] = []
                        desired = await self.associations.desired_associations(source, failures)
                        result.warnings.extend(failures)

                    with timer.stage('reconcile'):
                        reconciled = await self.reconciler.reconcile(
                            record.id, desired, existing=known_edges
                        )
                    result.associations_created += len(reconciled.created)
                    result.association_failures += len(reconciled.failed)
                    for edge, error in reconciled.failed:
                        result.warnings.append(
                            f'{source.origin_id}: association {edge.entity_type.value}:'
                            f'{edge.entity_id} failed: {error}'
                        )

            except MeetingSyncError as e:
                logger.warning('record_failed', error=str(e), error_type=type(e).__name__)
                result.add_error(f'{source.origin_id}: {e}')
            except Exception as e:
                logger.exception('record_failed_unexpected', error_type=type(e).__name__)
                result.add_error(f'{source.origin_id}: unexpected {type(e).__name__}: {e}')

    # =========================================================================
    # Enrichment
    # =========================================================================

    async def enrich(
        self,
        folder_id: str | None = None,
        now: datetime | None = None,
        extraction: ExtractionOutput | None = None,
    ) -> EnrichmentResult:
        """
        Attach recording links and transcripts to migrated meetings.

        Args:
            folder_id: File Manager folder holding recordings
                (default: MEETING_RECORDINGS_FOLDER_ID)
            now: Reference time for origin extraction
            extraction: Reuse an extraction from a preceding sync pass

        Raises:
            EnrichmentError: No recordings folder configured
        """
        folder_id = folder_id or self.settings.MEETING_RECORDINGS_FOLDER_ID
        if not folder_id:
            raise EnrichmentError('No recordings folder configured (MEETING_RECORDINGS_FOLDER_ID)')

        timer = PipelineTimer()
        result = EnrichmentResult(
            run_id=new_run_id(),
            dry_run=self.dry_run,
            max_errors=self.settings.MAX_REPORTED_ERRORS,
        )

        with logging_context(run_id=result.run_id):
            logger.info('enrichment_started', dry_run=self.dry_run, folder_id=folder_id)

            with timer.stage('extraction'):
                if extraction is None:
                    extraction = await self.extractor.extract(now)

            with timer.stage('indexing'):
                index = await self._load_index(result)

            with timer.stage('recording_map'):
                recording_map = await build_recording_map(
                    self.origin,
                    [r.origin_id for r in extraction.records if r.origin_id in index],
                )
            result.recordings_mapped = len(recording_map)
            for origin_id in recording_map.failed:
                result.warnings.append(f'{origin_id}: recording lookup failed')

            with timer.stage('artifacts'):
                artifacts = await self.target.list_recording_files(folder_id)
            result.artifacts_total = len(artifacts)

            matches = self.enrichment.match_all(artifacts, recording_map, index)
            for group in self._group_by_target(matches, result).values():
                await self._enrich_target(group, result, timer)

            result.finish(timer)
            logger.info(
                'enrichment_complete',
                artifacts=result.artifacts_total,
                matched=result.matched,
                unmatched=len(result.unmatched),
                enriched=result.enriched,
                errored=result.errored,
                **timer.summary(),
            )
        return result

    @staticmethod
    def _group_by_target(
        matches: list[ArtifactMatch],
        result: EnrichmentResult,
    ) -> dict[str, list[ArtifactMatch]]:
        """Count matches and gather them per meeting, in first-seen order."""
        groups: dict[str, list[ArtifactMatch]] = {}
        for match in matches:
            if match.target is None:
                result.unmatched.append(match.to_dict())
                logger.warning(
                    'artifact_unmatched',
                    filename=match.artifact.filename,
                    tokens=list(match.tokens),
                )
                continue

            if match.strategy == MatchStrategy.RECORDING_INDIRECT:
                result.matched_indirect += 1
            else:
                result.matched_direct += 1
            if match.needs_confirmation:
                result.needs_confirmation.append(match.to_dict())
            groups.setdefault(match.target.id, []).append(match)

        # Stable section order whatever order the File Manager lists files in
        for group in groups.values():
            group.sort(key=lambda m: (m.artifact.filename, m.artifact.id))
        return groups

    async def _enrich_target(
        self,
        group: list[ArtifactMatch],
        result: EnrichmentResult,
        timer: PipelineTimer,
    ) -> None:
        """Write every recording matched to one meeting in a single update."""
        target = group[0].target
        filenames = ', '.join(m.artifact.filename for m in group)
        urls = [m.artifact.url for m in group]

        with logging_context(origin_id=group[0].origin_id, target_id=target.id):
            try:
                plan = plan_enrichment(target.body, urls)
                if not plan.needed:
                    result.already_enriched += 1
                    return

                transcript = None
                if plan.write_transcript:
                    transcript = await self._fetch_transcripts(group, result, timer)

                new_body = apply_enrichment(target.body, plan, urls, transcript)
                if new_body == target.body:
                    result.already_enriched += 1
                    return

                with timer.stage('enrichment_write'):
                    await self.target.update_meeting_body(target.id, new_body)
                result.enriched += 1
                result.enriched_ids.append(target.id)
                logger.info(
                    'meeting_enriched',
                    filenames=filenames,
                    recordings=len(group),
                    **plan.to_dict(),
                )

            except MeetingSyncError as e:
                logger.warning('enrichment_failed', error=str(e), error_type=type(e).__name__)
                result.add_error(f'{filenames}: {e}')
            except Exception as e:
                logger.exception('enrichment_failed_unexpected', error_type=type(e).__name__)
                result.add_error(f'{filenames}: unexpected {type(e).__name__}: {e}')

    async def _fetch_transcripts(
        self,
        group: list[ArtifactMatch],
        result: EnrichmentResult,
        timer: PipelineTimer,
    ) -> str | None:
        parts: list[tuple[str, str]] = []
        seen: set[str] = set()
        for match in group:
            if not (match.recording_id and match.origin_id) or match.recording_id in seen:
                continue
            seen.add(match.recording_id)
            with timer.stage('transcripts'):
                raw = await self.origin.get_transcript(match.origin_id, match.recording_id)
            text = format_transcript(raw)
            if text:
                result.transcripts_fetched += 1
                parts.append((match.artifact.filename, text))
        return combine_transcripts(parts)
