"""
Attio (origin) API client.

Read-only. Lists meetings and calls, the call recordings of a meeting,
and recording transcripts. Every listing is cursor-paginated and fully
drained before returning.
"""

from typing import Any

import httpx

from ..config import SyncSettings, get_settings
from ..errors import NotFoundError
from ..logging import get_logger
from .http import ApiClient, RetryPolicy

logger = get_logger(__name__)


class AttioClient(ApiClient):
    """
    Async Attio client.

    Configuration via environment variables:
    - ATTIO_API_KEY: Bearer token (required)
    - ATTIO_BASE_URL: API root (default: https://api.attio.com)
    """

    service_name = 'attio'
    PAGE_LIMIT = 200

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        settings: SyncSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.ATTIO_API_KEY
        if not self.api_key:
            raise ValueError('ATTIO_API_KEY environment variable is required')

        super().__init__(
            base_url=base_url or settings.ATTIO_BASE_URL,
            headers={'Authorization': f'Bearer {self.api_key}'},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            page_delay=settings.PAGE_DELAY_SECONDS,
            transport=transport,
        )

    async def _list(self, path: str) -> list[dict[str, Any]]:
        async def fetch_page(cursor: str | None) -> tuple[list[dict[str, Any]], str | None]:
            params: dict[str, Any] = {'limit': self.PAGE_LIMIT}
            if cursor:
                params['cursor'] = cursor
            payload = await self.request('GET', path, params=params) or {}
            next_cursor = (payload.get('pagination') or {}).get('next_cursor')
            return payload.get('data') or [], next_cursor

        return await self.exhaust_pages(fetch_page)

    async def list_meetings(self) -> list[dict[str, Any]]:
        """All meetings, raw."""
        meetings = await self._list('/v2/meetings')
        logger.info('attio_meetings_listed', count=len(meetings))
        return meetings

    async def list_calls(self) -> list[dict[str, Any]]:
        """All calls, raw. Same shape as meetings."""
        calls = await self._list('/v2/calls')
        logger.info('attio_calls_listed', count=len(calls))
        return calls

    async def list_call_recordings(self, meeting_id: str) -> list[str]:
        """
        Recording ids for one meeting.

        A 404 means the meeting has no recordings sub-resource and is
        returned as an empty list.
        """
        try:
            items = await self._list(f'/v2/meetings/{meeting_id}/call_recordings')
        except NotFoundError:
            return []

        recording_ids = []
        for item in items:
            raw_id = item.get('id')
            if isinstance(raw_id, dict):
                raw_id = raw_id.get('call_recording_id')
            if raw_id:
                recording_ids.append(str(raw_id))
        return recording_ids

    async def get_transcript(self, meeting_id: str, recording_id: str) -> Any:
        """
        Transcript payload for a recording, or None if it does not exist.

        Paginated segment lists are concatenated; a payload with only a raw
        text transcript is returned as that string.
        """
        path = f'/v2/meetings/{meeting_id}/call_recordings/{recording_id}/transcript'
        raw_text: list[str] = []

        async def fetch_page(cursor: str | None) -> tuple[list[Any], str | None]:
            params = {'cursor': cursor} if cursor else None
            payload = await self.request('GET', path, params=params) or {}
            data = payload.get('data', payload)
            next_cursor = (payload.get('pagination') or {}).get('next_cursor')
            if isinstance(data, list):
                return data, next_cursor
            if isinstance(data, dict):
                if data.get('raw_transcript'):
                    raw_text.append(data['raw_transcript'])
                return data.get('transcript') or [], next_cursor
            if isinstance(data, str):
                raw_text.append(data)
            return [], next_cursor

        try:
            segments = await self.exhaust_pages(fetch_page)
        except NotFoundError:
            return None

        if segments:
            return segments
        if raw_text:
            return '\n'.join(raw_text)
        return None
