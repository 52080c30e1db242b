"""
Command-line entry point.

    meeting-sync sync           [--dry-run] [--include-calls] [--since DATE] [--json-logs]
    meeting-sync enrich         [--dry-run] [--folder-id ID] [--json-logs]
    meeting-sync full           [--dry-run] [--include-calls] [--since DATE] [--folder-id ID]
    meeting-sync backfill-deals [--dry-run] [--since DATE] [--deal-id ID ...]

``--since`` makes sync incremental (Attio meetings created after DATE);
for backfill-deals it selects deals created or modified since DATE.

Logs go to stderr; the run report is printed to stdout as JSON. The exit
status is 1 when any record failed, 2 on configuration errors.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from typing import Any

from .config import get_settings
from .errors import MeetingSyncError
from .logging import configure_logging, get_logger
from .pipeline.deal_backfill import DealEngagementBackfill
from .pipeline.pipeline import MeetingSyncPipeline
from .utils import parse_timestamp

logger = get_logger(__name__)

COMMANDS = ['sync', 'enrich', 'full', 'backfill-deals']


def timestamp_arg(value: str) -> datetime:
    """argparse type for ISO dates, ISO datetimes and epoch values."""
    parsed = parse_timestamp(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f'not a date or timestamp: {value!r}')
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='meeting-sync',
        description='Sync Attio meetings into HubSpot and attach call recordings',
    )
    parser.add_argument(
        'command',
        choices=COMMANDS,
        help='sync meetings, enrich with recordings, both in one run, '
             'or associate deals with their companies\' and contacts\' engagements',
    )
    parser.add_argument(
        '--dry-run', '-n',
        action='store_true',
        default=None,
        help='Read, resolve and diff everything but write nothing to HubSpot',
    )
    parser.add_argument(
        '--include-calls',
        action='store_true',
        default=None,
        help='Also sync Attio calls alongside meetings',
    )
    parser.add_argument(
        '--since',
        type=timestamp_arg,
        help='Incremental run: meetings created after, or deals changed since, this date',
    )
    parser.add_argument(
        '--deal-id',
        action='append',
        dest='deal_ids',
        help='backfill-deals: only this deal (repeatable)',
    )
    parser.add_argument(
        '--folder-id',
        help='HubSpot File Manager folder with recordings (default: MEETING_RECORDINGS_FOLDER_ID)',
    )
    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Emit JSON log lines instead of console output',
    )
    parser.add_argument(
        '--log-level',
        help='Override LOG_LEVEL',
    )
    return parser


async def run_backfill(args: argparse.Namespace) -> dict[str, Any]:
    backfill = DealEngagementBackfill.from_env(dry_run=args.dry_run)
    try:
        result = await backfill.run(since=args.since, deal_ids=args.deal_ids)
        return {'backfill_deals': result.to_dict()}
    finally:
        await backfill.close()


async def run_command(args: argparse.Namespace) -> dict[str, Any]:
    """Run the selected command and return its report."""
    if args.command == 'backfill-deals':
        return await run_backfill(args)

    pipeline = MeetingSyncPipeline.from_env(
        dry_run=args.dry_run,
        include_calls=args.include_calls,
    )
    try:
        report: dict[str, Any] = {}
        if args.command in ('sync', 'full'):
            sync_result = await pipeline.run(since=args.since)
            report['sync'] = sync_result.to_dict()
        if args.command in ('enrich', 'full'):
            enrich_result = await pipeline.enrich(folder_id=args.folder_id)
            report['enrich'] = enrich_result.to_dict()
        return report
    finally:
        await pipeline.close()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    settings = get_settings()
    missing = settings.missing_required(
        enrichment=args.command in ('enrich', 'full'),
        origin=args.command != 'backfill-deals',
    )
    if args.folder_id and 'MEETING_RECORDINGS_FOLDER_ID' in missing:
        missing.remove('MEETING_RECORDINGS_FOLDER_ID')
    if missing:
        logger.error('missing_configuration', keys=missing)
        return 2

    try:
        report = asyncio.run(run_command(args))
    except MeetingSyncError as e:
        logger.error('run_failed', error=str(e), error_type=type(e).__name__)
        return 1

    print(json.dumps(report, indent=2, default=str))
    return 0 if all(part['success'] for part in report.values()) else 1


if __name__ == '__main__':
    sys.exit(main())
