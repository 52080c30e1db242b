"""
Meeting body layout.

A migrated meeting body looks like:

    Meeting imported from Attio. Original ID: <originId>

    <description or placeholder>

    Attio participants:
    - Jane Doe <jane@example.com> (host) [accepted]

    === VIDEO ===
    Call recording: <file manager url>
    === VIDEO ===

    === TRANSCRIPT ===
    <formatted transcript>
    === TRANSCRIPT ===

The first line is the import preamble plus the origin-id marker. The two
enrichment sections are delimited by the same marker line on both ends so
they can be located and replaced in place.
"""

import re

from .models.source import Participant, SourceRecord

IMPORT_PREAMBLE = 'Meeting imported from Attio.'
NO_DESCRIPTION_PLACEHOLDER = 'No description provided'
PARTICIPANTS_HEADING = 'Attio participants:'

VIDEO_MARKER = '=== VIDEO ==='
TRANSCRIPT_MARKER = '=== TRANSCRIPT ==='
VIDEO_LABEL = 'Call recording:'
LEGACY_TRANSCRIPT_LABEL = 'Transcript:'
TRANSCRIPT_UNAVAILABLE = 'Transcript not available for this recording.'

# Origin ids are opaque; accept an optional pair of backticks around them
MARKER_PATTERN = re.compile(r'Original ID:\s*`?([A-Za-z0-9](?:[A-Za-z0-9_.:\-]*[A-Za-z0-9])?)`?')


def origin_marker(origin_id: str) -> str:
    return f'Original ID: {origin_id}'


def parse_origin_id(body: str | None) -> str | None:
    """First origin id marker in a body, or None."""
    if not body:
        return None
    match = MARKER_PATTERN.search(body)
    return match.group(1) if match else None


def participant_line(participant: Participant) -> str:
    line = f'- {participant.label}'
    if participant.role == 'host':
        line += ' (host)'
    if participant.status:
        line += f' [{participant.status}]'
    return line


def build_body(record: SourceRecord) -> str:
    """Regenerate the import body (without enrichment sections)."""
    lines = [
        f'{IMPORT_PREAMBLE} {origin_marker(record.origin_id)}',
        '',
        record.description.strip() or NO_DESCRIPTION_PLACEHOLDER,
    ]
    if record.participants:
        lines.extend(['', PARTICIPANTS_HEADING])
        lines.extend(participant_line(p) for p in record.participants)
    return '\n'.join(lines)


def split_enrichment(body: str) -> tuple[str, str]:
    """
    Split a body into (core, enrichment sections).

    Everything from the first section marker onward is enrichment. Legacy
    unmarked recording text stays in the core.
    """
    positions = [p for p in (body.find(VIDEO_MARKER), body.find(TRANSCRIPT_MARKER)) if p >= 0]
    if not positions:
        return body.rstrip(), ''
    cut = min(positions)
    return body[:cut].rstrip(), body[cut:].strip()


def is_safe_to_upgrade(body: str | None, threshold: int = 500) -> bool:
    """
    True when regenerating the body cannot destroy a human edit.

    The body must start with the import preamble, and either still carry
    the empty-description placeholder or be shorter than ``threshold``.
    Enrichment sections are ignored for the size test. Bodies holding
    unmarked legacy recording text are never regenerated.
    """
    if not body:
        return False
    core, _ = split_enrichment(body.lstrip())
    if not core.startswith(IMPORT_PREAMBLE):
        return False
    if VIDEO_LABEL in core:
        return False
    return NO_DESCRIPTION_PLACEHOLDER in core or len(core) < threshold


# =============================================================================
# Enrichment sections
# =============================================================================


def _section_pattern(marker: str) -> re.Pattern[str]:
    escaped = re.escape(marker)
    # Bodies edited in HubSpot's UI can come back with CRLF line endings
    return re.compile(rf'{escaped}\r?\n(.*?)\r?\n{escaped}', re.DOTALL)


def render_section(marker: str, content: str) -> str:
    return f'{marker}\n{content.strip()}\n{marker}'


def find_section(body: str | None, marker: str) -> str | None:
    """Content of a delimited section, or None if absent."""
    if not body:
        return None
    match = _section_pattern(marker).search(body)
    return match.group(1) if match else None


def upsert_section(body: str, marker: str, content: str) -> str:
    """Replace a section in place, or append it if missing."""
    section = render_section(marker, content)
    pattern = _section_pattern(marker)
    if pattern.search(body):
        return pattern.sub(lambda _: section, body, count=1)
    if not body.strip():
        return section
    return f'{body.rstrip()}\n\n{section}'


def render_video(urls: list[str]) -> str:
    """One recording line per URL."""
    return '\n'.join(f'{VIDEO_LABEL} {url}' for url in urls)


def parse_video_urls(section: str | None) -> list[str]:
    """
    Exact URLs of the recording lines in a video section.

    Lines are compared whole, so ``.../f1`` is never found inside
    ``.../f10``.
    """
    if not section:
        return []
    urls = []
    for line in section.splitlines():
        line = line.strip()
        if line.startswith(VIDEO_LABEL):
            url = line[len(VIDEO_LABEL):].strip()
            if url:
                urls.append(url)
    return urls


def has_video(body: str | None) -> bool:
    """Marked video section, or legacy unmarked recording text."""
    if not body:
        return False
    return VIDEO_MARKER in body or VIDEO_LABEL in body


def has_transcript(body: str | None) -> bool:
    if not body:
        return False
    # A marker line that no longer pairs up still means a transcript was written
    if TRANSCRIPT_MARKER in body:
        return True
    # Legacy bodies carried "Call recording: ... Transcript: ..." without markers
    return VIDEO_MARKER not in body and VIDEO_LABEL in body and LEGACY_TRANSCRIPT_LABEL in body
