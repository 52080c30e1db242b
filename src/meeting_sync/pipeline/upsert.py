"""
Upsert engine: create missing meetings, carefully upgrade existing ones.

Creation always embeds the origin-id marker and records the new id in the
ledger. Updates only ever rewrite a body this tool generated and nobody has
meaningfully edited since.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..clients.hubspot_client import HubSpotClient, is_dry_run_id
from ..errors import UpsertError
from ..formatting import build_body, is_safe_to_upgrade, split_enrichment
from ..ledger import IdLedger
from ..logging import get_logger
from ..models.source import SourceRecord
from ..models.target import TargetKind, TargetRecord
from ..utils import to_epoch_ms, to_iso

logger = get_logger(__name__)

DEFAULT_DURATION = timedelta(hours=1)


def resolve_time_window(
    start: datetime,
    end: datetime | None,
) -> tuple[datetime, datetime]:
    """
    Meeting window with ``end > start`` guaranteed.

    A missing end, or one at or before the start, becomes start + 1 hour.
    """
    if end is None or end <= start:
        return start, start + DEFAULT_DURATION
    return start, end


class UpsertAction(str, Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'
    PROTECTED = 'protected'


@dataclass
class UpsertResult:
    action: UpsertAction
    record: TargetRecord
    reason: str | None = None


class UpsertEngine:
    """
    Creates and upgrades HubSpot meetings.

    Usage:
        engine = UpsertEngine(hubspot_client, ledger)
        created = await engine.create(source)
        result = await engine.update(source, existing)
    """

    def __init__(
        self,
        target: HubSpotClient,
        ledger: IdLedger | None = None,
        upgrade_threshold: int = 500,
    ):
        self.target = target
        self.ledger = ledger
        self.upgrade_threshold = upgrade_threshold

    def build_properties(self, source: SourceRecord) -> dict[str, Any]:
        """HubSpot create payload properties for an origin record."""
        if source.start_time is None:
            raise UpsertError(
                'Cannot build meeting without a start time',
                context={'origin_id': source.origin_id},
            )
        start, end = resolve_time_window(source.start_time, source.end_time)
        return {
            'hs_meeting_title': source.title,
            'hs_meeting_body': build_body(source),
            'hs_meeting_location': source.location,
            'hs_timestamp': to_epoch_ms(start),
            'hs_meeting_start_time': to_iso(start),
            'hs_meeting_end_time': to_iso(end),
        }

    async def create(self, source: SourceRecord) -> TargetRecord | None:
        """
        Create the target meeting for a new origin record.

        Returns:
            The created TargetRecord, or None when the record has no
            usable start time (caller counts it as skipped)
        """
        if source.start_time is None:
            logger.warning('create_skipped_no_start', origin_id=source.origin_id)
            return None

        properties = self.build_properties(source)
        response = await self.target.create_meeting(properties, origin_id=source.origin_id)
        if not response or not response.get('id'):
            raise UpsertError(
                'Create returned no meeting id',
                context={'origin_id': source.origin_id, 'response': response},
            )

        start, end = resolve_time_window(source.start_time, source.end_time)
        record = TargetRecord(
            id=str(response['id']),
            title=properties['hs_meeting_title'],
            body=properties['hs_meeting_body'],
            start_time=start,
            end_time=end,
            kind=TargetKind.CRM,
        )

        if self.ledger is not None and not is_dry_run_id(record.id):
            self.ledger.record(source.origin_id, record.id)

        logger.info('meeting_created', origin_id=source.origin_id, target_id=record.id)
        return record

    async def update(self, source: SourceRecord, existing: TargetRecord) -> UpsertResult:
        """
        Regenerate an existing meeting body when it is safe to do so.

        Enrichment sections already on the body are carried over unchanged.
        """
        if not is_safe_to_upgrade(existing.body, self.upgrade_threshold):
            logger.debug('body_protected', target_id=existing.id)
            return UpsertResult(UpsertAction.PROTECTED, existing, reason='body_edited')

        _, sections = split_enrichment(existing.body)
        new_body = build_body(source)
        if sections:
            new_body = f'{new_body}\n\n{sections}'

        if new_body.strip() == existing.body.strip():
            return UpsertResult(UpsertAction.UNCHANGED, existing)

        await self.target.update_meeting_body(existing.id, new_body)
        logger.info('meeting_body_upgraded', origin_id=source.origin_id, target_id=existing.id)
        return UpsertResult(
            UpsertAction.UPDATED,
            existing.model_copy(update={'body': new_body}),
        )
