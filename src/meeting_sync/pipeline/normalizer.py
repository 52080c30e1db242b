"""
Normalization adapter for Attio meeting and call payloads.

Attio has returned meetings in several shapes over time: top-level
``start`` objects, attribute-style ``values`` lists, flat ``start_time``
fields. Every field lookup that has to try more than one location lives
here, so the rest of the pipeline only ever sees a SourceRecord.
"""

from datetime import datetime
from typing import Any

from ..errors import ValidationError
from ..models.source import (
    EntityType,
    LinkedEntity,
    Participant,
    SourceRecord,
    SourceType,
)
from ..utils import parse_timestamp

DEFAULT_TITLE = 'Meeting imported from Attio'

_START_KEYS = ('start_time', 'start', 'start_at')
_END_KEYS = ('end_time', 'end', 'end_at')
_PARTICIPANT_KEYS = ('participants', 'attendees', 'people')
_LINKED_KEYS = ('linked_records', 'accounts', 'organizations')

_COMPANY_TYPES = {'companies', 'company', 'accounts', 'account'}
_DEAL_TYPES = {'deals', 'deal', 'opportunities', 'opportunity'}
_PERSON_TYPES = {'people', 'person'}


def _unwrap(value: Any) -> Any:
    """First scalar out of Attio's ``[{value: ...}]`` attribute lists."""
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    if isinstance(value, dict):
        for key in ('value', 'datetime', 'date', 'timestamp'):
            if value.get(key) not in (None, ''):
                return value[key]
        return None
    return value


def _first(*candidates: Any) -> Any:
    for candidate in candidates:
        value = _unwrap(candidate)
        if value not in (None, ''):
            return value
    return None


def _values(raw: dict[str, Any]) -> dict[str, Any]:
    values = raw.get('values')
    return values if isinstance(values, dict) else {}


def _attributes(raw: dict[str, Any]) -> dict[str, Any]:
    attributes = raw.get('attributes')
    return attributes if isinstance(attributes, dict) else {}


def resolve_origin_id(raw: dict[str, Any]) -> str | None:
    raw_id = raw.get('id')
    if isinstance(raw_id, dict):
        raw_id = raw_id.get('meeting_id') or raw_id.get('call_id') or raw_id.get('record_id')
    return str(raw_id) if raw_id else None


def _resolve_time(raw: dict[str, Any], keys: tuple[str, str, str]) -> datetime | None:
    time_key, plain_key, at_key = keys
    values = _values(raw)
    attributes = _attributes(raw)
    candidates = [
        raw.get(plain_key),
        values.get(time_key),
        values.get(plain_key),
        values.get(at_key),
        attributes.get(time_key),
        attributes.get(plain_key),
        raw.get(time_key),
        raw.get(at_key),
    ]
    for candidate in candidates:
        parsed = parse_timestamp(_unwrap(candidate))
        if parsed is not None:
            return parsed
    return None


def resolve_start(raw: dict[str, Any]) -> datetime | None:
    """Start time from any known field location, or None."""
    return _resolve_time(raw, _START_KEYS)


def resolve_end(raw: dict[str, Any]) -> datetime | None:
    return _resolve_time(raw, _END_KEYS)


def resolve_created_at(raw: dict[str, Any]) -> datetime | None:
    """Creation time, top-level or attribute-style."""
    return parse_timestamp(_first(raw.get('created_at'), _values(raw).get('created_at')))


def _text(raw: dict[str, Any], key: str) -> str:
    value = _first(_values(raw).get(key), raw.get(key))
    return str(value).strip() if value is not None else ''


def _record_id(item: dict[str, Any]) -> str | None:
    ref = item.get('target_record_id') or item.get('record_id') or item.get('id')
    if isinstance(ref, dict):
        ref = ref.get('record_id')
    return str(ref) if ref else None


def normalize_participant(item: dict[str, Any]) -> Participant:
    kind = item.get('target_object') or item.get('type') or item.get('object_slug')
    identity_ref = _record_id(item) if kind in _PERSON_TYPES else None

    name = (
        item.get('name')
        or item.get('full_name')
        or ' '.join(p for p in (item.get('first_name'), item.get('last_name')) if p)
        or item.get('display_name')
        or None
    )
    email = item.get('email_address') or item.get('email') or None
    role = 'host' if item.get('is_organizer') or item.get('is_host') else None

    return Participant(
        identity_ref=identity_ref,
        email=email.strip().lower() if email else None,
        name=name,
        role=role,
        status=item.get('status') or None,
    )


def _linked_entities(raw: dict[str, Any]) -> list[LinkedEntity]:
    values = _values(raw)
    entities: list[LinkedEntity] = []

    linked = next(
        (src[k] for k in _LINKED_KEYS for src in (values, raw) if isinstance(src.get(k), list)),
        [],
    )
    for item in linked:
        if not isinstance(item, dict):
            continue
        kind = item.get('target_object') or item.get('type') or item.get('object_slug')
        ref = _record_id(item)
        if not ref:
            continue
        if kind in _COMPANY_TYPES:
            entities.append(LinkedEntity(entity_type=EntityType.COMPANY, origin_entity_id=ref))
        elif kind in _DEAL_TYPES:
            entities.append(LinkedEntity(entity_type=EntityType.DEAL, origin_entity_id=ref))

    # Older exports kept companies and deals in their own lists
    for key, entity_type in (('companies', EntityType.COMPANY), ('deals', EntityType.DEAL)):
        for item in values.get(key) or raw.get(key) or []:
            ref = _record_id(item) if isinstance(item, dict) else None
            if ref:
                entities.append(LinkedEntity(entity_type=entity_type, origin_entity_id=ref))

    # Preserve first-seen order, drop repeats
    return list(dict.fromkeys(entities))


def normalize_meeting(
    raw: dict[str, Any],
    source_type: SourceType = SourceType.MEETING,
) -> SourceRecord:
    """
    Convert one raw Attio item into a SourceRecord.

    Raises:
        ValidationError: No id, or no resolvable start time. The error
            context carries ``reason`` ('missing_id' or 'no_start').
    """
    origin_id = resolve_origin_id(raw)
    if not origin_id:
        raise ValidationError('Origin item has no id', context={'reason': 'missing_id'})

    start = resolve_start(raw)
    if start is None:
        raise ValidationError(
            'Origin item has no resolvable start time',
            context={'reason': 'no_start', 'origin_id': origin_id},
        )

    values = _values(raw)
    participants_raw = next(
        (src[k] for k in _PARTICIPANT_KEYS for src in (values, raw) if isinstance(src.get(k), list)),
        [],
    )

    return SourceRecord(
        origin_id=origin_id,
        title=_text(raw, 'title') or DEFAULT_TITLE,
        start_time=start,
        end_time=resolve_end(raw),
        description=_text(raw, 'description'),
        location=_text(raw, 'location'),
        participants=tuple(
            normalize_participant(p) for p in participants_raw if isinstance(p, dict)
        ),
        linked_entities=tuple(_linked_entities(raw)),
        source_type=source_type,
        created_at=resolve_created_at(raw),
    )
