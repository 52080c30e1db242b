"""
Tests for SourceExtractor.

Covers:
- All origin pages are drained before returning
- Records without a start are rejected and counted, extraction continues
- Records starting after "now" are rejected
- Optional call inclusion, with meetings winning on id collisions
- Incremental runs keep only records created after "since"

Run with: pytest tests/test_extractor.py -v
"""

from datetime import datetime, timezone

import pytest

from meeting_sync.models.source import SourceType
from meeting_sync.pipeline.extractor import SourceExtractor

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestExtract:
    @pytest.mark.asyncio
    async def test_drains_pages_and_counts(self, attio, attio_api):
        attio_api.add_meeting('m1')
        attio_api.add_meeting('m2', start=None)
        attio_api.add_meeting('m3', start='2030-01-01T00:00:00Z')
        attio_api.add_meeting('m4', start='2024-05-31T23:59:59Z')
        attio_api.meetings.append({'title': 'no id', 'start': '2024-01-01T10:00:00Z'})

        output = await SourceExtractor(attio).extract(now=NOW)

        assert [r.origin_id for r in output.records] == ['m1', 'm4']
        assert output.total_fetched == 5
        assert output.rejected_no_date == 1
        assert output.rejected_future == 1
        assert output.rejected_invalid == 1
        assert output.valid_count == 2
        # page size 2 over 5 items
        assert attio_api.calls.count(('GET', '/v2/meetings')) == 3

    @pytest.mark.asyncio
    async def test_future_rejection_is_strict(self, attio, attio_api):
        attio_api.add_meeting('edge', start='2024-06-01T00:00:00Z')

        output = await SourceExtractor(attio).extract(now=NOW)

        assert [r.origin_id for r in output.records] == ['edge']
        assert output.rejected_future == 0

    @pytest.mark.asyncio
    async def test_rejections_listed_with_reason(self, attio, attio_api):
        attio_api.add_meeting('late', start='2025-01-01T00:00:00Z')
        attio_api.add_meeting('undated', start=None)

        output = await SourceExtractor(attio).extract(now=NOW)

        assert {(r['origin_id'], r['reason']) for r in output.rejections} == {
            ('late', 'future_start'),
            ('undated', 'no_start'),
        }

    @pytest.mark.asyncio
    async def test_calls_excluded_by_default(self, attio, attio_api):
        attio_api.add_meeting('m1')
        attio_api.call_items.append({'id': {'call_id': 'c1'}, 'start': '2024-01-01T10:00:00Z'})

        output = await SourceExtractor(attio).extract(now=NOW)

        assert [r.origin_id for r in output.records] == ['m1']
        assert ('GET', '/v2/calls') not in attio_api.calls

    @pytest.mark.asyncio
    async def test_calls_included_and_deduplicated(self, attio, attio_api):
        attio_api.add_meeting('shared', title='From meetings')
        attio_api.call_items.append({'id': {'call_id': 'shared'}, 'start': '2024-01-01T10:00:00Z'})
        attio_api.call_items.append({'id': {'call_id': 'c2'}, 'start': '2024-01-02T10:00:00Z'})

        output = await SourceExtractor(attio, include_calls=True).extract(now=NOW)

        by_id = {r.origin_id: r for r in output.records}
        assert set(by_id) == {'shared', 'c2'}
        assert by_id['shared'].source_type == SourceType.MEETING
        assert by_id['shared'].title == 'From meetings'
        assert by_id['c2'].source_type == SourceType.CALL
        assert output.duplicates_collapsed == 1

    @pytest.mark.asyncio
    async def test_since_keeps_only_newer_records(self, attio, attio_api):
        attio_api.add_meeting('old', created_at='2024-03-01T00:00:00Z')
        attio_api.add_meeting('boundary', created_at='2024-04-01T00:00:00Z')
        attio_api.add_meeting('new', created_at='2024-04-15T00:00:00Z')
        attio_api.add_meeting('values', values={'created_at': [{'value': '2024-05-01T00:00:00Z'}]})
        attio_api.add_meeting('unknown')
        attio_api.add_meeting('new-future', start='2030-01-01T00:00:00Z', created_at='2024-05-01T00:00:00Z')
        since = datetime(2024, 4, 1, tzinfo=timezone.utc)

        output = await SourceExtractor(attio).extract(now=NOW, since=since)

        assert [r.origin_id for r in output.records] == ['new', 'values']
        assert output.skipped_before_since == 3
        assert output.rejected_future == 1
        assert output.rejected_count == 1
        assert output.to_dict()['since'] == since.isoformat()

    @pytest.mark.asyncio
    async def test_no_since_keeps_everything(self, attio, attio_api):
        attio_api.add_meeting('old', created_at='2020-01-01T00:00:00Z')
        attio_api.add_meeting('unknown')

        output = await SourceExtractor(attio).extract(now=NOW)

        assert len(output.records) == 2
        assert output.skipped_before_since == 0
        assert output.records[0].created_at == datetime(2020, 1, 1, tzinfo=timezone.utc)


class TestValidate:
    def test_malformed_item_rejected(self):
        extractor = SourceExtractor(origin=None)
        items = [
            ({'id': 'ok', 'start': '2024-01-01T10:00:00Z'}, SourceType.MEETING),
            (
                {'id': 'bad', 'start': '2024-01-01T10:00:00Z', 'participants': [{'name': {'first': 'x'}}]},
                SourceType.MEETING,
            ),
        ]

        output = extractor.validate(items, NOW)

        assert [r.origin_id for r in output.records] == ['ok']
        assert output.rejected_invalid == 1
