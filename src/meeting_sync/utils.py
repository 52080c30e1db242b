"""
Timestamp helpers shared by the origin normalizer and the target models.

Both APIs mix ISO-8601 strings, date-only strings and epoch milliseconds.
Everything is normalized to timezone-aware UTC datetimes; naive values are
assumed to already be UTC.
"""

import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_ONLY = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_NUMERIC = re.compile(r'^-?\d+(\.\d+)?$')

# Epoch values above this are milliseconds (year 5138 in seconds)
_MS_CUTOFF = 100_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a loosely-typed timestamp into an aware UTC datetime.

    Accepts datetimes, dates, epoch seconds/milliseconds (numbers or numeric
    strings), date-only strings and ISO-8601 strings with or without a 'Z'.
    Returns None for empty, zero/negative epochs and unparseable input.
    """
    if value is None or value == '':
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        return _from_epoch(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if _NUMERIC.match(text):
        return _from_epoch(float(text))
    if _DATE_ONLY.match(text):
        text = f'{text}T00:00:00+00:00'
    elif text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _from_epoch(value: float) -> datetime | None:
    # 0 and negatives are the "1970" placeholder some exports emit
    if value <= 0:
        return None
    seconds = value / 1000 if value >= _MS_CUTOFF else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_epoch_ms(value: datetime) -> int:
    """Epoch milliseconds, as HubSpot's hs_timestamp expects."""
    return int(value.timestamp() * 1000)


def to_iso(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a 'Z' suffix."""
    utc = value.astimezone(timezone.utc)
    return utc.strftime('%Y-%m-%dT%H:%M:%S.') + f'{utc.microsecond // 1000:03d}Z'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
