"""
Tests for the command-line entry point.

Run with: pytest tests/test_cli.py -v
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from meeting_sync import cli
from meeting_sync.config import SyncSettings
from meeting_sync.errors import UpsertError


@pytest.fixture
def configured(monkeypatch, settings):
    monkeypatch.setattr(cli, 'get_settings', lambda: settings)
    return settings


class TestParser:
    def test_defaults_defer_to_settings(self):
        args = cli.build_parser().parse_args(['sync'])
        assert args.command == 'sync'
        assert args.dry_run is None
        assert args.include_calls is None
        assert args.folder_id is None

    def test_flags(self):
        args = cli.build_parser().parse_args(['full', '-n', '--include-calls', '--folder-id', '77'])
        assert args.dry_run is True
        assert args.include_calls is True
        assert args.folder_id == '77'

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(['migrate'])

    def test_since_parsed(self):
        args = cli.build_parser().parse_args(['sync', '--since', '2024-03-01'])
        assert args.since == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_bad_since_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(['sync', '--since', 'last tuesday'])

    def test_backfill_deal_ids(self):
        args = cli.build_parser().parse_args(['backfill-deals', '--deal-id', '1', '--deal-id', '2'])
        assert args.command == 'backfill-deals'
        assert args.deal_ids == ['1', '2']


class TestMain:
    def test_missing_credentials(self, monkeypatch):
        empty = SyncSettings(ATTIO_API_KEY='', HUBSPOT_ACCESS_TOKEN='')
        run = AsyncMock(return_value={})
        monkeypatch.setattr(cli, 'get_settings', lambda: empty)
        monkeypatch.setattr(cli, 'run_command', run)

        assert cli.main(['sync', '--log-level', 'ERROR']) == 2
        run.assert_not_called()

    def test_enrich_needs_folder(self, monkeypatch, configured):
        no_folder = configured.model_copy(update={'MEETING_RECORDINGS_FOLDER_ID': ''})
        monkeypatch.setattr(cli, 'get_settings', lambda: no_folder)
        monkeypatch.setattr(cli, 'run_command', AsyncMock(return_value={'enrich': {'success': True}}))

        assert cli.main(['enrich', '--log-level', 'ERROR']) == 2
        assert cli.main(['enrich', '--folder-id', '77', '--log-level', 'ERROR']) == 0

    def test_report_printed(self, monkeypatch, configured, capsys):
        report = {'sync': {'success': True, 'created': 3}}
        run = AsyncMock(return_value=report)
        monkeypatch.setattr(cli, 'run_command', run)

        assert cli.main(['sync', '-n', '--log-level', 'ERROR']) == 0
        assert json.loads(capsys.readouterr().out) == report
        assert run.call_args.args[0].dry_run is True

    def test_failed_records_exit_1(self, monkeypatch, configured):
        report = {'sync': {'success': True}, 'enrich': {'success': False}}
        monkeypatch.setattr(cli, 'run_command', AsyncMock(return_value=report))

        assert cli.main(['full', '--log-level', 'ERROR']) == 1

    def test_run_error_exit_1(self, monkeypatch, configured, capsys):
        monkeypatch.setattr(cli, 'run_command', AsyncMock(side_effect=UpsertError('boom')))

        assert cli.main(['sync', '--log-level', 'ERROR']) == 1
        assert capsys.readouterr().out == ''

    def test_backfill_needs_no_attio_key(self, monkeypatch, configured):
        hubspot_only = configured.model_copy(update={'ATTIO_API_KEY': ''})
        run = AsyncMock(return_value={'backfill_deals': {'success': True}})
        monkeypatch.setattr(cli, 'get_settings', lambda: hubspot_only)
        monkeypatch.setattr(cli, 'run_command', run)

        assert cli.main(['backfill-deals', '--log-level', 'ERROR']) == 0
        assert cli.main(['sync', '--log-level', 'ERROR']) == 2
        assert run.await_count == 1


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_since_passed_to_sync(self, monkeypatch):
        pipeline = AsyncMock()
        pipeline.run.return_value.to_dict = lambda: {'success': True}
        monkeypatch.setattr(cli.MeetingSyncPipeline, 'from_env', lambda **_: pipeline)
        args = cli.build_parser().parse_args(['sync', '--since', '2024-03-01'])

        report = await cli.run_command(args)

        assert report == {'sync': {'success': True}}
        assert pipeline.run.call_args.kwargs['since'] == datetime(2024, 3, 1, tzinfo=timezone.utc)
        pipeline.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backfill_dispatched(self, monkeypatch):
        backfill = AsyncMock()
        backfill.run.return_value.to_dict = lambda: {'success': True}
        monkeypatch.setattr(cli.DealEngagementBackfill, 'from_env', lambda **_: backfill)
        args = cli.build_parser().parse_args(['backfill-deals', '-n', '--deal-id', '7'])

        report = await cli.run_command(args)

        assert report == {'backfill_deals': {'success': True}}
        assert backfill.run.call_args.kwargs == {'since': None, 'deal_ids': ['7']}
        backfill.close.assert_awaited_once()
