"""
Deal engagement backfill.

A deal created after its companies and contacts starts with none of the
activity already logged against them. For each deal:

1. Read the deal's companies and contacts
2. Add every contact of those companies
3. Collect the meetings, calls, notes, emails and tasks of all of them
4. Associate each engagement the deal does not have yet

Writes are additive only. A failed lookup on one company or contact is a
warning; a failed deal is counted and the run moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from operator import attrgetter
from typing import Any

from ..clients.hubspot_client import HubSpotClient
from ..config import SyncSettings, get_settings
from ..errors import MeetingSyncError
from ..logging import PipelineTimer, get_logger, logging_context
from ..models.source import EntityType
from ..models.target import ENGAGEMENT_OBJECTS, AssociationEdge
from .pipeline import RunReport, new_run_id
from .reconciler import missing_edges

logger = get_logger(__name__)

DEAL_OBJECT = 'deals'


def _per_type() -> dict[str, int]:
    return dict.fromkeys(ENGAGEMENT_OBJECTS, 0)


@dataclass
class DealActivity:
    """Records around one deal and the engagements logged against them."""

    deal_id: str
    companies: set[str] = field(default_factory=set)
    contacts: set[str] = field(default_factory=set)
    engagements: dict[str, set[str]] = field(default_factory=dict)

    def edges(self) -> set[AssociationEdge]:
        """engagement -> deal edges for every engagement found."""
        return {
            AssociationEdge(engagement_id, EntityType.DEAL, self.deal_id, record_type=engagement_type)
            for engagement_type, ids in self.engagements.items()
            for engagement_id in ids
        }


@dataclass
class DealBackfillResult(RunReport):
    """Result of a deal engagement backfill run."""

    since: datetime | None = None

    deals_total: int = 0
    deals_selected: int = 0
    deals_processed: int = 0
    companies_found: int = 0
    contacts_found: int = 0
    engagements_found: dict[str, int] = field(default_factory=_per_type)
    associations_created: dict[str, int] = field(default_factory=_per_type)
    already_associated: int = 0
    association_failures: int = 0

    updated_deal_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            'since': self.since.isoformat() if self.since else None,
            'deals_total': self.deals_total,
            'deals_selected': self.deals_selected,
            'deals_processed': self.deals_processed,
            'companies_found': self.companies_found,
            'contacts_found': self.contacts_found,
            'engagements_found': self.engagements_found,
            'associations_created': self.associations_created,
            'already_associated': self.already_associated,
            'association_failures': self.association_failures,
            'updated_deal_ids': self.updated_deal_ids,
        }


class DealEngagementBackfill:
    """
    Associates deals with the engagements of their companies and contacts.

    Usage:
        backfill = DealEngagementBackfill.from_env(dry_run=True)
        try:
            result = await backfill.run(since=cutoff)
        finally:
            await backfill.close()
    """

    def __init__(self, target: HubSpotClient, settings: SyncSettings | None = None):
        self.target = target
        self.settings = settings or get_settings()
        self.dry_run = target.dry_run

    @classmethod
    def from_env(cls, dry_run: bool | None = None) -> DealEngagementBackfill:
        """Only HUBSPOT_ACCESS_TOKEN is required."""
        settings = get_settings()
        dry_run = settings.DRY_RUN if dry_run is None else dry_run
        return cls(HubSpotClient(settings=settings, dry_run=dry_run), settings=settings)

    async def close(self) -> None:
        await self.target.close()

    async def run(
        self,
        since: datetime | None = None,
        deal_ids: list[str] | None = None,
    ) -> DealBackfillResult:
        """
        Backfill every selected deal.

        Args:
            since: Only deals created or modified at or after this time
            deal_ids: Exactly these deals; skips the deal listing
        """
        timer = PipelineTimer()
        result = DealBackfillResult(
            run_id=new_run_id(),
            dry_run=self.dry_run,
            max_errors=self.settings.MAX_REPORTED_ERRORS,
            since=since,
        )

        with logging_context(run_id=result.run_id):
            logger.info(
                'deal_backfill_started',
                dry_run=self.dry_run,
                since=since.isoformat() if since else None,
                deal_ids=deal_ids,
            )

            with timer.stage('deals'):
                selected = await self._select_deals(result, since, deal_ids)
            result.deals_selected = len(selected)

            for deal_id in selected:
                await self._backfill_deal(deal_id, result, timer)

            result.finish(timer)
            logger.info(
                'deal_backfill_complete',
                deals=result.deals_processed,
                created=sum(result.associations_created.values()),
                already_associated=result.already_associated,
                errored=result.errored,
                **timer.summary(),
            )
        return result

    async def _select_deals(
        self,
        result: DealBackfillResult,
        since: datetime | None,
        deal_ids: list[str] | None,
    ) -> list[str]:
        if deal_ids:
            selected = list(dict.fromkeys(str(d) for d in deal_ids))
            result.deals_total = len(selected)
            return selected

        deals = await self.target.list_deals()
        result.deals_total = len(deals)
        if since is None:
            return [d.id for d in deals]
        return [d.id for d in deals if d.last_changed is not None and d.last_changed >= since]

    # =========================================================================
    # Per deal
    # =========================================================================

    async def gather(self, deal_id: str, failures: list[str] | None = None) -> DealActivity:
        """Companies, contacts and their engagements for one deal."""
        failures = failures if failures is not None else []
        activity = DealActivity(deal_id)

        activity.companies = await self._associated(DEAL_OBJECT, deal_id, 'companies', failures)
        activity.contacts = await self._associated(DEAL_OBJECT, deal_id, 'contacts', failures)
        for company_id in sorted(activity.companies):
            activity.contacts |= await self._associated('companies', company_id, 'contacts', failures)

        records = [('companies', c) for c in sorted(activity.companies)]
        records += [('contacts', c) for c in sorted(activity.contacts)]
        for engagement_type in ENGAGEMENT_OBJECTS:
            found: set[str] = set()
            for object_type, object_id in records:
                found |= await self._associated(object_type, object_id, engagement_type, failures)
            activity.engagements[engagement_type] = found

        return activity

    async def existing_edges(self, deal_id: str) -> set[AssociationEdge]:
        """Engagements already associated with the deal."""
        edges: set[AssociationEdge] = set()
        for engagement_type in ENGAGEMENT_OBJECTS:
            ids = await self.target.list_associated_ids(DEAL_OBJECT, deal_id, engagement_type)
            edges.update(
                AssociationEdge(eid, EntityType.DEAL, deal_id, record_type=engagement_type)
                for eid in ids
            )
        return edges

    async def _associated(
        self,
        from_type: str,
        object_id: str,
        to_type: str,
        failures: list[str],
    ) -> set[str]:
        try:
            return await self.target.list_associated_ids(from_type, object_id, to_type)
        except MeetingSyncError as e:
            logger.warning(
                'association_lookup_failed',
                from_type=from_type,
                object_id=object_id,
                to_type=to_type,
                error=str(e),
            )
            failures.append(f'{from_type}:{object_id} -> {to_type} lookup failed: {e}')
            return set()

    async def _backfill_deal(
        self,
        deal_id: str,
        result: DealBackfillResult,
        timer: PipelineTimer,
    ) -> None:
        result.deals_processed += 1

        with logging_context(target_id=deal_id):
            try:
                with timer.stage('gather'):
                    failures: list[str] = []
                    activity = await self.gather(deal_id, failures)
                    result.warnings.extend(failures)
                result.companies_found += len(activity.companies)
                result.contacts_found += len(activity.contacts)
                for engagement_type, ids in activity.engagements.items():
                    result.engagements_found[engagement_type] += len(ids)

                desired = activity.edges()
                if not desired:
                    return

                with timer.stage('existing'):
                    existing = await self.existing_edges(deal_id)
                missing = missing_edges(desired, existing, key=attrgetter('item_id'))
                result.already_associated += len(desired) - len(missing)
                if not missing:
                    return

                with timer.stage('associate'):
                    batch = await self.target.create_associations(missing)
                by_item = {e.item_id: e for e in missing}
                for item in batch.succeeded:
                    result.associations_created[by_item[item.item_id].record_type] += 1
                for item in batch.failed:
                    edge = by_item[item.item_id]
                    result.association_failures += 1
                    result.warnings.append(
                        f'deal {deal_id}: {edge.record_type}:{edge.record_id} failed: {item.error}'
                    )
                if batch.succeeded:
                    result.updated_deal_ids.append(deal_id)

                logger.info(
                    'deal_backfilled',
                    desired=len(desired),
                    existing=len(existing),
                    created=len(batch.succeeded),
                    failed=len(batch.failed),
                )

            except MeetingSyncError as e:
                logger.warning('deal_failed', error=str(e), error_type=type(e).__name__)
                result.add_error(f'deal {deal_id}: {e}')
            except Exception as e:
                logger.exception('deal_failed_unexpected', error_type=type(e).__name__)
                result.add_error(f'deal {deal_id}: unexpected {type(e).__name__}: {e}')
