"""
HubSpot (target) API client.

Handles:
- Listing meetings from both the CRM objects API and legacy engagements
- Search-by-property for identity resolution
- Meeting create / body patch
- Live association listing and batched association creation (v4)
- Deal listing for the engagement backfill
- Recording file listing from the File Manager

In dry-run mode every mutating call (create, patch, association create)
is replaced with a log line; reads behave identically.
"""

from typing import Any

import httpx

from ..config import SyncSettings, get_settings
from ..errors import MeetingSyncError, NotFoundError, PartialSuccessResult
from ..logging import get_logger
from ..models.artifact import EnrichmentArtifact
from ..models.source import EntityType
from ..models.target import (
    DEAL_PROPERTIES,
    MEETING_OBJECT,
    MEETING_PROPERTIES,
    AssociationEdge,
    DealRecord,
    TargetRecord,
)
from .http import ApiClient, RetryPolicy, run_in_batches

logger = get_logger(__name__)

DRY_RUN_ID_PREFIX = 'dry-run:'


def is_dry_run_id(record_id: str) -> bool:
    return record_id.startswith(DRY_RUN_ID_PREFIX)


class HubSpotClient(ApiClient):
    """
    Async HubSpot client.

    Configuration via environment variables:
    - HUBSPOT_ACCESS_TOKEN: Private app token (required)
    - HUBSPOT_BASE_URL: API root (default: https://api.hubapi.com)
    - HUBSPOT_PORTAL_ID / HUBSPOT_APP_HOST: used to build File Manager URLs
    - ASSOCIATION_BATCH_SIZE / ASSOCIATION_BATCH_DELAY_SECONDS
    """

    service_name = 'hubspot'
    CRM_PAGE_LIMIT = 100
    ENGAGEMENT_PAGE_LIMIT = 250
    ASSOCIATION_PAGE_LIMIT = 500
    FILE_PAGE_LIMIT = 100

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        dry_run: bool | None = None,
        settings: SyncSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.access_token = access_token or settings.HUBSPOT_ACCESS_TOKEN
        if not self.access_token:
            raise ValueError('HUBSPOT_ACCESS_TOKEN environment variable is required')

        self.dry_run = settings.DRY_RUN if dry_run is None else dry_run
        self.portal_id = settings.HUBSPOT_PORTAL_ID
        self.app_host = settings.HUBSPOT_APP_HOST
        self.batch_size = settings.ASSOCIATION_BATCH_SIZE
        self.batch_delay = settings.ASSOCIATION_BATCH_DELAY_SECONDS

        super().__init__(
            base_url=base_url or settings.HUBSPOT_BASE_URL,
            headers={'Authorization': f'Bearer {self.access_token}'},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            page_delay=settings.PAGE_DELAY_SECONDS,
            transport=transport,
        )

    # =========================================================================
    # Meetings
    # =========================================================================

    async def list_meetings(self, include_legacy: bool = True) -> list[TargetRecord]:
        """
        Every meeting in the portal.

        CRM objects are listed first; legacy engagements only contribute
        ids the CRM listing did not already return.
        """
        records: dict[str, TargetRecord] = {}

        for record in await self._list_crm_meetings():
            records.setdefault(record.id, record)

        if include_legacy:
            for record in await self._list_engagement_meetings():
                records.setdefault(record.id, record)

        logger.info('hubspot_meetings_listed', count=len(records))
        return list(records.values())

    async def _list_crm_meetings(self) -> list[TargetRecord]:
        async def fetch_page(after: str | None) -> tuple[list[TargetRecord], str | None]:
            params: dict[str, Any] = {
                'limit': self.CRM_PAGE_LIMIT,
                'properties': ','.join(MEETING_PROPERTIES),
            }
            if after:
                params['after'] = after
            payload = await self.request('GET', '/crm/v3/objects/meetings', params=params) or {}
            next_after = ((payload.get('paging') or {}).get('next') or {}).get('after')
            return [TargetRecord.from_crm(r) for r in payload.get('results') or []], next_after

        return await self.exhaust_pages(fetch_page)

    async def _list_engagement_meetings(self) -> list[TargetRecord]:
        async def fetch_page(offset: int | None) -> tuple[list[TargetRecord], int | None]:
            params: dict[str, Any] = {'limit': self.ENGAGEMENT_PAGE_LIMIT}
            if offset:
                params['offset'] = offset
            payload = await self.request(
                'GET', '/engagements/v1/engagements/paged', params=params
            ) or {}
            meetings = [
                TargetRecord.from_engagement(r)
                for r in payload.get('results') or []
                if (r.get('engagement') or {}).get('type') == 'MEETING'
            ]
            next_offset = payload.get('offset') if payload.get('hasMore') else None
            return meetings, next_offset

        return await self.exhaust_pages(fetch_page)

    async def create_meeting(
        self,
        properties: dict[str, Any],
        origin_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a CRM meeting. Dry-run returns a synthetic id and writes nothing."""
        if self.dry_run:
            logger.info(
                'dry_run_create_meeting',
                origin_id=origin_id,
                title=properties.get('hs_meeting_title'),
            )
            return {'id': f'{DRY_RUN_ID_PREFIX}{origin_id or "new"}', 'properties': properties}

        return await self.request(
            'POST', '/crm/v3/objects/meetings', json={'properties': properties}
        )

    async def update_meeting_body(self, meeting_id: str, body: str) -> None:
        if self.dry_run:
            logger.info('dry_run_update_meeting_body', target_id=meeting_id, body_length=len(body))
            return

        await self.request(
            'PATCH',
            f'/crm/v3/objects/meetings/{meeting_id}',
            json={'properties': {'hs_meeting_body': body}},
        )

    # =========================================================================
    # Search
    # =========================================================================

    async def search_object_id(
        self,
        entity_type: EntityType,
        property_name: str,
        value: str,
    ) -> str | None:
        """
        Id of the first object whose property equals ``value``, or None.

        A miss is a normal result, not an error.
        """
        payload = await self.request(
            'POST',
            f'/crm/v3/objects/{entity_type.value}/search',
            json={
                'filterGroups': [
                    {'filters': [{'propertyName': property_name, 'operator': 'EQ', 'value': value}]}
                ],
                'properties': [property_name],
                'limit': 1,
            },
        ) or {}
        results = payload.get('results') or []
        return str(results[0]['id']) if results else None

    # =========================================================================
    # Associations
    # =========================================================================

    async def list_associated_ids(self, from_type: str, object_id: str, to_type: str) -> set[str]:
        """
        Ids of ``to_type`` objects associated with one object (v4).

        A missing object has no associations.
        """
        path = f'/crm/v4/objects/{from_type}/{object_id}/associations/{to_type}'

        async def fetch_page(after: str | None) -> tuple[list[str], str | None]:
            params: dict[str, Any] = {'limit': self.ASSOCIATION_PAGE_LIMIT}
            if after:
                params['after'] = after
            payload = await self.request('GET', path, params=params) or {}
            next_after = ((payload.get('paging') or {}).get('next') or {}).get('after')
            ids = [str(r['toObjectId']) for r in payload.get('results') or [] if 'toObjectId' in r]
            return ids, next_after

        try:
            return set(await self.exhaust_pages(fetch_page))
        except NotFoundError:
            return set()

    async def list_association_ids(self, meeting_id: str, entity_type: EntityType) -> set[str]:
        """Ids of ``entity_type`` objects currently associated with the meeting."""
        if is_dry_run_id(meeting_id):
            return set()
        return await self.list_associated_ids(MEETING_OBJECT, meeting_id, entity_type.value)

    async def list_association_edges(self, meeting_id: str) -> set[AssociationEdge]:
        """Live edges across contacts, companies and deals."""
        edges: set[AssociationEdge] = set()
        for entity_type in EntityType:
            for entity_id in await self.list_association_ids(meeting_id, entity_type):
                edges.add(AssociationEdge(meeting_id, entity_type, entity_id))
        return edges

    async def create_association(self, edge: AssociationEdge) -> None:
        if self.dry_run:
            logger.info(
                'dry_run_create_association',
                record_type=edge.record_type,
                target_id=edge.record_id,
                entity_type=edge.entity_type.value,
                entity_id=edge.entity_id,
            )
            return

        await self.request(
            'PUT',
            f'/crm/v4/objects/{edge.record_type}/{edge.record_id}/associations/'
            f'{edge.entity_type.value}/{edge.entity_id}',
            json=[{'associationCategory': 'HUBSPOT_DEFINED', 'associationTypeId': edge.type_id}],
        )

    async def create_associations(self, edges: list[AssociationEdge]) -> PartialSuccessResult:
        """
        Create edges in batches of ``ASSOCIATION_BATCH_SIZE``.

        Per-edge API failures are collected under ``edge.item_id``, not raised.
        """
        result = PartialSuccessResult()
        outcomes = await run_in_batches(
            edges,
            self.create_association,
            batch_size=self.batch_size,
            delay=self.batch_delay,
            sleep=self.retry_policy.sleep,
        )
        for edge, outcome in zip(edges, outcomes):
            if isinstance(outcome, MeetingSyncError):
                result.add_failure(outcome, item_id=edge.item_id)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.add_success(item_id=edge.item_id)
        return result

    # =========================================================================
    # Deals
    # =========================================================================

    async def list_deals(self) -> list[DealRecord]:
        """Every deal in the portal, with its create and modify times."""

        async def fetch_page(after: str | None) -> tuple[list[DealRecord], str | None]:
            params: dict[str, Any] = {
                'limit': self.CRM_PAGE_LIMIT,
                'properties': ','.join(DEAL_PROPERTIES),
            }
            if after:
                params['after'] = after
            payload = await self.request('GET', '/crm/v3/objects/deals', params=params) or {}
            next_after = ((payload.get('paging') or {}).get('next') or {}).get('after')
            return [DealRecord.from_crm(r) for r in payload.get('results') or []], next_after

        deals = await self.exhaust_pages(fetch_page)
        logger.info('hubspot_deals_listed', count=len(deals))
        return deals

    # =========================================================================
    # Files
    # =========================================================================

    def secure_file_url(self, file_id: str, folder_id: str | None = None) -> str:
        """Login-gated File Manager link for a file."""
        url = f'https://{self.app_host}/files/{self.portal_id}/'
        if folder_id:
            return f'{url}?folderId={folder_id}&showDetails={file_id}'
        return f'{url}?showDetails={file_id}'

    async def list_recording_files(self, folder_id: str) -> list[EnrichmentArtifact]:
        """MP4 video files in a File Manager folder."""

        async def fetch_page(after: str | None) -> tuple[list[dict[str, Any]], str | None]:
            params: dict[str, Any] = {'parentFolderIds': folder_id, 'limit': self.FILE_PAGE_LIMIT}
            if after:
                params['after'] = after
            payload = await self.request('GET', '/files/v3/files/search', params=params) or {}
            next_after = ((payload.get('paging') or {}).get('next') or {}).get('after')
            return payload.get('results') or [], next_after

        files = await self.exhaust_pages(fetch_page)
        artifacts = [
            EnrichmentArtifact.from_hubspot_file(
                f, url=self.secure_file_url(str(f['id']), folder_id)
            )
            for f in files
            if (f.get('extension') or '').lower() == 'mp4' and f.get('type', 'MOVIE') == 'MOVIE'
        ]
        logger.info('hubspot_recording_files_listed', total=len(files), videos=len(artifacts))
        return artifacts
