"""Transcript formatting for the enrichment section."""

import re
from typing import Any

_TAG = re.compile(r'<[^>]+>')
_INLINE_SPACE = re.compile(r'[ \t]+')
_BLANK_RUNS = re.compile(r'\n\s*\n')


def _speaker_name(segment: dict[str, Any]) -> str:
    speaker = segment.get('speaker') or segment.get('name')
    if isinstance(speaker, dict):
        speaker = speaker.get('name') or speaker.get('email_address')
    return str(speaker).strip() if speaker else 'Unknown Speaker'


def _segment_text(segment: dict[str, Any]) -> str:
    for key in ('speech', 'text', 'content', 'word'):
        value = segment.get(key)
        if value:
            return str(value).strip()
    return ''


def _clean_text(text: str) -> str:
    text = _TAG.sub('', text)
    text = _INLINE_SPACE.sub(' ', text)
    return _BLANK_RUNS.sub('\n\n', text).strip()


def format_transcript(raw: Any) -> str | None:
    """
    Render a transcript payload as readable text.

    Segment lists are grouped into consecutive speaker turns, one
    ``**Speaker:** text`` paragraph per turn. Plain strings are stripped
    of markup. Returns None when there is nothing to show.
    """
    if raw is None:
        return None

    if isinstance(raw, str):
        return _clean_text(raw) or None

    if isinstance(raw, dict):
        return format_transcript(raw.get('transcript') or raw.get('raw_transcript'))

    if not isinstance(raw, list):
        return None

    turns: list[tuple[str, list[str]]] = []
    for segment in raw:
        if not isinstance(segment, dict):
            continue
        text = _segment_text(segment)
        if not text:
            continue
        speaker = _speaker_name(segment)
        if turns and turns[-1][0] == speaker:
            turns[-1][1].append(text)
        else:
            turns.append((speaker, [text]))

    if not turns:
        return None
    return '\n\n'.join(f'**{speaker}:** {" ".join(parts)}' for speaker, parts in turns)
