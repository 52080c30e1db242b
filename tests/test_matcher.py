"""
Tests for RecordMatcher and body marker parsing.

Covers:
- Index built from "Original ID: <id>" markers (with or without backticks)
- Duplicate markers: first wins, conflict reported, nothing repaired
- Ledger entries take priority over markers
- The index is a read-only snapshot with case-insensitive id lookup
- Classification by set membership

Run with: pytest tests/test_matcher.py -v
"""

from datetime import datetime, timezone

import pytest

from meeting_sync.formatting import parse_origin_id
from meeting_sync.ledger import IdLedger
from meeting_sync.models import SourceRecord, TargetRecord
from meeting_sync.pipeline.matcher import RecordMatcher

from conftest import M1, M2, M3

START = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)


def _target(target_id: str, body: str) -> TargetRecord:
    return TargetRecord(id=target_id, body=body)


def _source(origin_id: str) -> SourceRecord:
    return SourceRecord(origin_id=origin_id, start_time=START)


class TestParseOriginId:
    @pytest.mark.parametrize('body, expected', [
        (f'Meeting imported from Attio. Original ID: {M1}\n\nNotes', M1),
        (f'Original ID: `{M2}`', M2),
        ('Original ID:m1.', 'm1'),
        ('Original ID: call_42 and more', 'call_42'),
        ('No marker here', None),
        ('', None),
        (None, None),
    ])
    def test_parse(self, body, expected):
        assert parse_origin_id(body) == expected


class TestBuildIndex:
    def test_indexes_by_marker(self):
        matcher = RecordMatcher()
        index = matcher.build_index([
            _target('100', f'Meeting imported from Attio. Original ID: {M1}'),
            _target('200', 'Manually created meeting'),
            _target('300', f'Original ID: `{M2}`'),
        ])

        assert index.get(M1).id == '100'
        assert index.get(M2).id == '300'
        assert len(index) == 2
        assert index.unmarked == 1
        assert index.marker_hits == 2
        assert index.conflicts == ()

    def test_duplicate_marker_first_wins(self):
        index = RecordMatcher().build_index([
            _target('100', f'Original ID: {M1}'),
            _target('200', f'Original ID: {M1}'),
        ])

        assert index.get(M1).id == '100'
        assert len(index.conflicts) == 1
        conflict = index.conflicts[0]
        assert (conflict.origin_id, conflict.kept_id, conflict.duplicate_id) == (M1, '100', '200')
        assert conflict.source == 'marker'

    def test_same_record_listed_twice_is_not_a_conflict(self):
        index = RecordMatcher().build_index([
            _target('100', f'Original ID: {M1}'),
            _target('100', f'Original ID: {M1}'),
        ])
        assert index.conflicts == ()

    def test_ledger_takes_priority(self):
        ledger = IdLedger(entries={M1: '200'})
        index = RecordMatcher().build_index(
            [
                _target('100', f'Original ID: {M1}'),
                _target('200', f'Original ID: {M1}'),
            ],
            ledger=ledger,
        )

        assert index.get(M1).id == '200'
        assert index.ledger_hits == 1
        assert len(index.conflicts) == 1
        assert index.conflicts[0].source == 'ledger'
        assert index.conflicts[0].duplicate_id == '100'

    def test_ledger_entry_for_missing_target_falls_back_to_marker(self):
        ledger = IdLedger(entries={M1: '999'})
        index = RecordMatcher().build_index([_target('100', f'Original ID: {M1}')], ledger=ledger)

        assert index.get(M1).id == '100'
        assert index.ledger_hits == 0

    def test_ledger_matches_record_without_marker(self):
        ledger = IdLedger(entries={M3: '300'})
        index = RecordMatcher().build_index([_target('300', 'Body rewritten by a user')], ledger=ledger)

        assert index.get(M3).id == '300'

    def test_marker_only_mappings(self):
        ledger = IdLedger(entries={M1: '100'})
        index = RecordMatcher().build_index(
            [_target('100', f'Original ID: {M1}'), _target('200', f'Original ID: {M2}')],
            ledger=ledger,
        )
        assert index.marker_only_mappings() == {M2: '200'}

    def test_canonical_id_ignores_case(self):
        mixed = 'AbCdEf01-2345-4678-9aBc-DEF012345678'
        index = RecordMatcher().build_index([_target('100', f'Original ID: {mixed}')])

        assert index.canonical_id(mixed.lower()) == mixed
        assert index.canonical_id(mixed) == mixed
        assert index.canonical_id(M2) is None
        assert index.get(mixed.lower()) is None

    def test_index_is_read_only(self):
        index = RecordMatcher().build_index([_target('100', f'Original ID: {M1}')])
        with pytest.raises(TypeError):
            index.records[M2] = _target('200', '')


class TestClassify:
    def test_set_membership(self):
        matcher = RecordMatcher()
        index = matcher.build_index([_target('100', f'Original ID: {M1}')])

        result = matcher.classify([_source(M1), _source(M2)], index)

        assert [s.origin_id for s in result.to_create] == [M2]
        assert [(s.origin_id, t.id) for s, t in result.to_reconcile] == [(M1, '100')]
