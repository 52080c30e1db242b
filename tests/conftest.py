"""
Pytest configuration and shared fixtures.

Both external systems are simulated in-process:
- FakeHubSpotAPI: meetings, legacy engagements, deals, object search, v4
  associations and File Manager files, served through httpx.MockTransport
- FakeAttioAPI: meetings, calls, call recordings and transcripts

The real AttioClient / HubSpotClient run against these fakes, so URL
shapes, pagination and error mapping are exercised end to end. No
network access or credentials are needed.

Key fixtures:
- settings: SyncSettings with zero delays and dummy tokens
- sleeps / fast_retry: recorded sleep calls and a retry policy using them
- hubspot_api / attio_api: the fake servers
- hubspot / attio: real clients wired to the fakes
"""

import itertools
import json
import re
import sys
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from meeting_sync.clients.attio_client import AttioClient  # noqa: E402
from meeting_sync.clients.http import RetryPolicy  # noqa: E402
from meeting_sync.clients.hubspot_client import HubSpotClient  # noqa: E402
from meeting_sync.config import SyncSettings  # noqa: E402

M1 = '11111111-1111-4111-8111-111111111111'
M2 = '22222222-2222-4222-8222-222222222222'
M3 = '33333333-3333-4333-8333-333333333333'
R1 = 'aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa'
R2 = 'bbbbbbbb-bbbb-4bbb-8bbb-bbbbbbbbbbbb'


def _json(status: int, payload: Any = None) -> httpx.Response:
    if payload is None:
        return httpx.Response(status)
    return httpx.Response(status, json=payload)


def _page(items: list[Any], after: str | None, size: int) -> tuple[list[Any], str | None]:
    start = int(after) if after else 0
    chunk = items[start:start + size]
    next_after = str(start + size) if start + size < len(items) else None
    return chunk, next_after


# =============================================================================
# Fake HubSpot
# =============================================================================


class FakeHubSpotAPI:
    """In-memory HubSpot with just enough surface for the sync."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self._ids = itertools.count(9001)
        self.meetings: dict[str, dict[str, Any]] = {}
        self.engagements: list[dict[str, Any]] = []
        self.objects: dict[str, dict[str, dict[str, Any]]] = {
            'contacts': {},
            'companies': {},
            'deals': {},
        }
        self.associations: dict[str, set[tuple[str, str]]] = {}
        self.links: dict[tuple[str, str], set[tuple[str, str]]] = {}
        self.missing_objects: set[tuple[str, str]] = set()
        self.failing_objects: set[tuple[str, str]] = set()
        self.files: list[dict[str, Any]] = []

        self.calls: list[tuple[str, str]] = []
        self.association_puts: list[tuple[str, str, str, Any]] = []
        self.fail_association_ids: set[str] = set()
        self.fail_create_titles: set[str] = set()
        self.search_failures: set[str] = set()

    # -- seeding helpers ------------------------------------------------------

    def add_meeting(self, body: str, title: str = 'Existing', meeting_id: str | None = None) -> str:
        meeting_id = meeting_id or str(next(self._ids))
        self.meetings[meeting_id] = {
            'hs_meeting_title': title,
            'hs_meeting_body': body,
            'hs_meeting_start_time': '2024-01-01T10:00:00.000Z',
            'hs_meeting_end_time': '2024-01-01T11:00:00.000Z',
        }
        return meeting_id

    def add_engagement(self, body: str, engagement_id: str) -> None:
        self.engagements.append({
            'engagement': {'id': int(engagement_id), 'type': 'MEETING', 'timestamp': 1704103200000},
            'metadata': {'title': 'Legacy', 'body': body, 'startTime': 1704103200000},
        })

    def add_object(self, object_type: str, object_id: str, **properties: Any) -> None:
        self.objects[object_type][object_id] = properties

    def add_file(self, file_id: str, name: str, extension: str = 'mp4', file_type: str = 'MOVIE') -> None:
        self.files.append({'id': file_id, 'name': name, 'extension': extension, 'type': file_type})

    def add_deal(self, deal_id: str, created: str, modified: str | None = None, **properties: Any) -> None:
        self.objects['deals'][deal_id] = {
            'dealname': f'Deal {deal_id}',
            'createdate': created,
            'hs_lastmodifieddate': modified or created,
            **properties,
        }

    def link(self, from_type: str, from_id: str, to_type: str, to_id: str) -> None:
        """Associate two objects; HubSpot associations read back from both ends."""
        self.links.setdefault((from_type, from_id), set()).add((to_type, to_id))
        self.links.setdefault((to_type, to_id), set()).add((from_type, from_id))
        if from_type == 'meetings':
            self.associations.setdefault(from_id, set()).add((to_type, to_id))

    def linked(self, object_type: str, object_id: str) -> set[tuple[str, str]]:
        found = set(self.links.get((object_type, object_id), set()))
        if object_type == 'meetings':
            found |= self.edges(object_id)
        return found

    def edges(self, meeting_id: str) -> set[tuple[str, str]]:
        return self.associations.get(meeting_id, set())

    def bodies_with_marker(self, origin_id: str) -> list[str]:
        return [
            mid for mid, props in self.meetings.items()
            if f'Original ID: {origin_id}' in (props.get('hs_meeting_body') or '')
        ]

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in ('POST', 'PATCH', 'PUT') and '/search' not in c[1]]

    # -- transport ------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        params = request.url.params
        body = json.loads(request.content) if request.content else None
        self.calls.append((method, path))

        if path == '/crm/v3/objects/meetings' and method == 'GET':
            items = [{'id': mid, 'properties': dict(p)} for mid, p in self.meetings.items()]
            chunk, after = _page(items, params.get('after'), self.page_size)
            payload: dict[str, Any] = {'results': chunk}
            if after:
                payload['paging'] = {'next': {'after': after}}
            return _json(200, payload)

        if path == '/crm/v3/objects/meetings' and method == 'POST':
            props = body['properties']
            if props.get('hs_meeting_title') in self.fail_create_titles:
                return _json(400, {'message': 'Property values were not valid'})
            meeting_id = str(next(self._ids))
            self.meetings[meeting_id] = dict(props)
            return _json(201, {'id': meeting_id, 'properties': props})

        match = re.fullmatch(r'/crm/v3/objects/meetings/(\w+)', path)
        if match and method == 'PATCH':
            meeting_id = match.group(1)
            if meeting_id not in self.meetings:
                self.meetings[meeting_id] = {}
            self.meetings[meeting_id].update(body['properties'])
            return _json(200, {'id': meeting_id})

        if path == '/engagements/v1/engagements/paged':
            return _json(200, {'results': self.engagements, 'hasMore': False, 'offset': 0})

        match = re.fullmatch(r'/crm/v3/objects/(contacts|companies|deals)/search', path)
        if match:
            object_type = match.group(1)
            flt = body['filterGroups'][0]['filters'][0]
            if flt['value'] in self.search_failures:
                return _json(503, {'message': 'unavailable'})
            hits = [
                {'id': oid}
                for oid, props in self.objects[object_type].items()
                if str(props.get(flt['propertyName'], '')).lower() == str(flt['value']).lower()
            ]
            return _json(200, {'total': len(hits), 'results': hits[: body.get('limit', 10)]})

        if path == '/crm/v3/objects/deals' and method == 'GET':
            items = [
                {
                    'id': did,
                    'properties': dict(p),
                    'createdAt': p.get('createdate'),
                    'updatedAt': p.get('hs_lastmodifieddate'),
                }
                for did, p in self.objects['deals'].items()
            ]
            chunk, after = _page(items, params.get('after'), self.page_size)
            payload = {'results': chunk}
            if after:
                payload['paging'] = {'next': {'after': after}}
            return _json(200, payload)

        match = re.fullmatch(r'/crm/v4/objects/(\w+)/(\w+)/associations/(\w+)', path)
        if match and method == 'GET':
            from_type, from_id, to_type = match.groups()
            if (from_type, from_id) in self.failing_objects:
                return _json(503, {'message': 'unavailable'})
            if (from_type, from_id) in self.missing_objects:
                return _json(404, {'message': 'object not found'})
            ids = sorted(oid for t, oid in self.linked(from_type, from_id) if t == to_type)
            return _json(200, {'results': [{'toObjectId': int(i) if i.isdigit() else i} for i in ids]})

        match = re.fullmatch(r'/crm/v4/objects/(\w+)/(\w+)/associations/(\w+)/(\w+)', path)
        if match and method == 'PUT':
            from_type, from_id, to_type, to_id = match.groups()
            self.association_puts.append((from_id, to_type, to_id, body))
            if to_id in self.fail_association_ids or from_id in self.fail_association_ids:
                return _json(400, {'message': 'invalid association'})
            self.link(from_type, from_id, to_type, to_id)
            return _json(200, {'fromObjectId': from_id, 'toObjectId': to_id})

        if path == '/files/v3/files/search':
            chunk, after = _page(self.files, params.get('after'), self.page_size)
            payload = {'results': chunk}
            if after:
                payload['paging'] = {'next': {'after': after}}
            return _json(200, payload)

        return _json(404, {'message': f'no route {method} {path}'})


# =============================================================================
# Fake Attio
# =============================================================================


class FakeAttioAPI:
    """In-memory Attio meetings, calls, recordings and transcripts."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.meetings: list[dict[str, Any]] = []
        self.call_items: list[dict[str, Any]] = []
        self.recordings: dict[str, list[str]] = {}
        self.transcripts: dict[tuple[str, str], Any] = {}
        self.failing_recordings: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def add_meeting(
        self,
        meeting_id: str,
        start: str | None = '2024-01-01T10:00:00Z',
        end: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        item: dict[str, Any] = {'id': {'meeting_id': meeting_id}, 'title': f'Meeting {meeting_id[:4]}'}
        if start is not None:
            item['start'] = {'datetime': start}
        if end is not None:
            item['end'] = {'datetime': end}
        item.update(extra)
        self.meetings.append(item)
        return item

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _listing(self, items: list[Any], cursor: str | None) -> httpx.Response:
        chunk, next_cursor = _page(items, cursor, self.page_size)
        return _json(200, {'data': chunk, 'pagination': {'next_cursor': next_cursor}})

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        cursor = request.url.params.get('cursor')
        self.calls.append((request.method, path))

        if path == '/v2/meetings':
            return self._listing(self.meetings, cursor)
        if path == '/v2/calls':
            return self._listing(self.call_items, cursor)

        match = re.fullmatch(r'/v2/meetings/([\w-]+)/call_recordings', path)
        if match:
            meeting_id = match.group(1)
            if meeting_id in self.failing_recordings:
                return _json(500, {'message': 'boom'})
            if meeting_id not in self.recordings:
                return _json(404, {'message': 'not found'})
            items = [{'id': {'call_recording_id': rid}} for rid in self.recordings[meeting_id]]
            return self._listing(items, cursor)

        match = re.fullmatch(r'/v2/meetings/([\w-]+)/call_recordings/([\w-]+)/transcript', path)
        if match:
            key = (match.group(1), match.group(2))
            if key not in self.transcripts:
                return _json(404, {'message': 'not found'})
            return _json(200, {'data': {'transcript': self.transcripts[key]}, 'pagination': {}})

        return _json(404, {'message': f'no route {path}'})


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> SyncSettings:
    """Settings with dummy tokens and no delays."""
    return SyncSettings(
        ATTIO_API_KEY='attio-test-key',
        HUBSPOT_ACCESS_TOKEN='hubspot-test-token',
        HUBSPOT_PORTAL_ID='4242',
        HUBSPOT_APP_HOST='app.hubspot.com',
        MEETING_RECORDINGS_FOLDER_ID='folder-1',
        PAGE_DELAY_SECONDS=0,
        ASSOCIATION_BATCH_SIZE=10,
        ASSOCIATION_BATCH_DELAY_SECONDS=0,
        RETRY_MAX_ATTEMPTS=3,
        RETRY_BASE_DELAY_SECONDS=1,
        RETRY_MAX_DELAY_SECONDS=30,
        ID_LEDGER_PATH='',
        INCLUDE_CALLS=False,
        DRY_RUN=False,
        MAX_REPORTED_ERRORS=10,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the code under test."""
    return []


@pytest.fixture
def fast_retry(sleeps: list[float]) -> RetryPolicy:
    """Retry policy that records its sleeps instead of waiting."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, sleep=fake_sleep)


@pytest.fixture
def hubspot_api() -> FakeHubSpotAPI:
    return FakeHubSpotAPI()


@pytest.fixture
def attio_api() -> FakeAttioAPI:
    return FakeAttioAPI()


@pytest_asyncio.fixture
async def hubspot(settings, fast_retry, hubspot_api):
    client = HubSpotClient(
        settings=settings,
        retry_policy=fast_retry,
        transport=hubspot_api.transport(),
    )
    yield client
    await client.close()


@pytest_asyncio.fixture
async def dry_hubspot(settings, fast_retry, hubspot_api):
    client = HubSpotClient(
        settings=settings,
        dry_run=True,
        retry_policy=fast_retry,
        transport=hubspot_api.transport(),
    )
    yield client
    await client.close()


@pytest_asyncio.fixture
async def attio(settings, fast_retry, attio_api):
    client = AttioClient(
        settings=settings,
        retry_policy=fast_retry,
        transport=attio_api.transport(),
    )
    yield client
    await client.close()
