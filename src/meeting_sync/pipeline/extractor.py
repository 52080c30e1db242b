"""
Source extraction: list, normalize and validate origin meetings.

Every page is fetched before validation starts. Items that fail
validation are counted and logged, never fatal. An incremental run
passes ``since`` and only keeps items created after it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError as SchemaError

from ..clients.attio_client import AttioClient
from ..errors import ValidationError
from ..logging import get_logger
from ..models.source import SourceRecord, SourceType
from ..utils import utcnow
from .normalizer import normalize_meeting

logger = get_logger(__name__)


@dataclass
class ExtractionOutput:
    """Validated records plus rejection counts."""

    records: list[SourceRecord] = field(default_factory=list)
    total_fetched: int = 0
    rejected_no_date: int = 0
    rejected_future: int = 0
    rejected_invalid: int = 0
    duplicates_collapsed: int = 0
    skipped_before_since: int = 0
    since: datetime | None = None
    rejections: list[dict[str, Any]] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return len(self.records)

    @property
    def rejected_count(self) -> int:
        return self.rejected_no_date + self.rejected_future + self.rejected_invalid

    def to_dict(self) -> dict[str, Any]:
        return {
            'total_fetched': self.total_fetched,
            'valid': self.valid_count,
            'rejected_no_date': self.rejected_no_date,
            'rejected_future': self.rejected_future,
            'rejected_invalid': self.rejected_invalid,
            'duplicates_collapsed': self.duplicates_collapsed,
            'skipped_before_since': self.skipped_before_since,
            'since': self.since.isoformat() if self.since else None,
        }


class SourceExtractor:
    """
    Pulls meetings (and optionally calls) from Attio.

    Usage:
        extractor = SourceExtractor(attio_client)
        output = await extractor.extract()
        recent = await extractor.extract(since=last_run)
    """

    def __init__(self, origin: AttioClient, include_calls: bool = False):
        self.origin = origin
        self.include_calls = include_calls

    async def extract(
        self,
        now: datetime | None = None,
        since: datetime | None = None,
    ) -> ExtractionOutput:
        """
        Fetch every origin item and validate it.

        Args:
            now: Reference time for the future-date check (default: current UTC)
            since: Only keep items created strictly after this time
        """
        now = now or utcnow()

        items: list[tuple[dict[str, Any], SourceType]] = [
            (raw, SourceType.MEETING) for raw in await self.origin.list_meetings()
        ]
        if self.include_calls:
            items.extend((raw, SourceType.CALL) for raw in await self.origin.list_calls())

        output = self.validate(items, now, since=since)
        logger.info('extraction_complete', **output.to_dict())
        return output

    def validate(
        self,
        items: list[tuple[dict[str, Any], SourceType]],
        now: datetime,
        since: datetime | None = None,
    ) -> ExtractionOutput:
        """
        Normalize and filter raw items.

        Rejects items without an id or start time, and items starting
        strictly after ``now``. With ``since``, items created at or before
        it, or with no creation time, are skipped without being counted as
        rejections. When the same id appears twice (a meeting and its
        call), the first one listed wins.
        """
        output = ExtractionOutput(total_fetched=len(items), since=since)
        seen: set[str] = set()

        for raw, source_type in items:
            try:
                record = normalize_meeting(raw, source_type)
            except ValidationError as e:
                reason = e.context.get('reason', 'invalid')
                if reason == 'no_start':
                    output.rejected_no_date += 1
                else:
                    output.rejected_invalid += 1
                output.rejections.append({'origin_id': e.context.get('origin_id'), 'reason': reason})
                logger.warning('source_record_rejected', reason=reason, origin_id=e.context.get('origin_id'))
                continue
            except SchemaError as e:
                output.rejected_invalid += 1
                output.rejections.append({'origin_id': None, 'reason': 'malformed'})
                logger.warning('source_record_rejected', reason='malformed', error=str(e))
                continue

            if since is not None and (record.created_at is None or record.created_at <= since):
                output.skipped_before_since += 1
                logger.debug('source_record_skipped', reason='before_since', origin_id=record.origin_id)
                continue

            if record.start_time > now:
                output.rejected_future += 1
                output.rejections.append({'origin_id': record.origin_id, 'reason': 'future_start'})
                logger.warning(
                    'source_record_rejected',
                    reason='future_start',
                    origin_id=record.origin_id,
                    start_time=record.start_time.isoformat(),
                )
                continue

            if record.origin_id in seen:
                output.duplicates_collapsed += 1
                continue
            seen.add(record.origin_id)
            output.records.append(record)

        return output
