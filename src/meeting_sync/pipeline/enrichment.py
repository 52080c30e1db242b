"""
Enrichment: attach recording links and transcripts to migrated meetings.

Recording files in HubSpot are named after Attio identifiers in one of
three ways:

    <uuid>.mp4              bare id
    <prefix>-<uuid>.mp4     prefixed id
    <uuid>_<uuid>.mp4       two ids

Any of those ids may be a call recording id or a meeting id, and the name
alone cannot tell which. Each token is therefore tried as a recording id
first (resolved through the recording -> meeting map) and only then as a
meeting id. Matches made the second way are flagged for confirmation.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..clients.attio_client import AttioClient
from ..errors import MeetingSyncError
from ..formatting import (
    TRANSCRIPT_MARKER,
    TRANSCRIPT_UNAVAILABLE,
    VIDEO_MARKER,
    find_section,
    has_transcript,
    has_video,
    parse_video_urls,
    render_video,
    upsert_section,
)
from ..logging import get_logger
from ..models.artifact import ArtifactMatch, EnrichmentArtifact, MatchStrategy
from .matcher import MatchIndex

logger = get_logger(__name__)

UUID_PATTERN = re.compile(
    r'[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}'
)
MAX_TOKENS = 2


def _stem(filename: str) -> str:
    name, dot, extension = filename.rpartition('.')
    if dot and extension.isalnum() and len(extension) <= 5:
        return name
    return filename


def extract_tokens(filename: str, pattern: re.Pattern[str] = UUID_PATTERN) -> tuple[str, ...]:
    """
    Up to two id tokens from a filename, in filename order.

    Tokens are lower-cased and de-duplicated.
    """
    tokens: list[str] = []
    for match in pattern.finditer(_stem(filename)):
        token = match.group(0).lower()
        if token not in tokens:
            tokens.append(token)
        if len(tokens) == MAX_TOKENS:
            break
    return tuple(tokens)


# =============================================================================
# Recording map
# =============================================================================


@dataclass
class RecordingMap:
    """recording id -> origin meeting id, plus build diagnostics."""

    mapping: dict[str, str] = field(default_factory=dict)
    queried: int = 0
    failed: list[str] = field(default_factory=list)

    def get(self, recording_id: str) -> str | None:
        return self.mapping.get(recording_id.lower())

    def recordings_for(self, origin_id: str) -> list[str]:
        return [rid for rid, oid in self.mapping.items() if oid == origin_id]

    def __contains__(self, recording_id: object) -> bool:
        return isinstance(recording_id, str) and recording_id.lower() in self.mapping

    def __len__(self) -> int:
        return len(self.mapping)


async def build_recording_map(origin: AttioClient, origin_ids: Iterable[str]) -> RecordingMap:
    """
    Query the recordings sub-resource of every origin meeting.

    A meeting whose lookup fails is logged and left out; the map is
    many-to-one and the first meeting to claim a recording keeps it.
    """
    result = RecordingMap()
    for origin_id in origin_ids:
        result.queried += 1
        try:
            recording_ids = await origin.list_call_recordings(origin_id)
        except MeetingSyncError as e:
            logger.warning('recording_lookup_failed', origin_id=origin_id, error=str(e))
            result.failed.append(origin_id)
            continue

        for recording_id in recording_ids:
            key = recording_id.lower()
            claimed = result.mapping.setdefault(key, origin_id)
            if claimed != origin_id:
                logger.warning(
                    'recording_claimed_twice',
                    recording_id=recording_id,
                    kept_origin_id=claimed,
                    ignored_origin_id=origin_id,
                )

    logger.info(
        'recording_map_built',
        meetings=result.queried,
        recordings=len(result.mapping),
        failed=len(result.failed),
    )
    return result


# =============================================================================
# Matching
# =============================================================================


class EnrichmentMatcher:
    """Resolves artifacts to target meetings through the run's indexes."""

    def __init__(self, token_pattern: re.Pattern[str] | None = None):
        self.token_pattern = token_pattern or UUID_PATTERN

    def match(
        self,
        artifact: EnrichmentArtifact,
        recording_map: Mapping[str, str] | RecordingMap,
        index: MatchIndex,
    ) -> ArtifactMatch:
        tokens = extract_tokens(artifact.filename, self.token_pattern)
        if not tokens:
            return ArtifactMatch(artifact=artifact, strategy=MatchStrategy.UNMATCHED)

        for token in tokens:
            mapped = recording_map.get(token)
            origin_id = index.canonical_id(mapped) if mapped is not None else None
            if origin_id is not None:
                return ArtifactMatch(
                    artifact=artifact,
                    strategy=MatchStrategy.RECORDING_INDIRECT,
                    target=index.get(origin_id),
                    origin_id=origin_id,
                    recording_id=token,
                    matched_via=token,
                    tokens=tokens,
                )

            origin_id = index.canonical_id(token)
            if origin_id is not None:
                return ArtifactMatch(
                    artifact=artifact,
                    strategy=MatchStrategy.DIRECT_RECORD,
                    target=index.get(origin_id),
                    origin_id=origin_id,
                    recording_id=self._recording_for_direct(origin_id, tokens, recording_map),
                    matched_via=token,
                    needs_confirmation=True,
                    tokens=tokens,
                )

        return ArtifactMatch(artifact=artifact, strategy=MatchStrategy.UNMATCHED, tokens=tokens)

    def match_all(
        self,
        artifacts: Iterable[EnrichmentArtifact],
        recording_map: Mapping[str, str] | RecordingMap,
        index: MatchIndex,
    ) -> list[ArtifactMatch]:
        return [self.match(a, recording_map, index) for a in artifacts]

    @staticmethod
    def _recording_for_direct(
        origin_id: str,
        tokens: tuple[str, ...],
        recording_map: Mapping[str, str] | RecordingMap,
    ) -> str | None:
        # Another token in the name that maps to the same meeting
        for token in tokens:
            if token != origin_id and recording_map.get(token) == origin_id:
                return token
        # Otherwise only an unambiguous single recording
        if isinstance(recording_map, RecordingMap):
            candidates = recording_map.recordings_for(origin_id)
        else:
            candidates = [rid for rid, oid in recording_map.items() if oid == origin_id]
        return candidates[0] if len(candidates) == 1 else None


# =============================================================================
# Body sections
# =============================================================================


@dataclass
class EnrichmentPlan:
    """Which sections of a meeting body need (re)writing."""

    needs_video: bool = False
    stale_video: bool = False
    needs_transcript: bool = False
    stale_transcript: bool = False

    @property
    def write_video(self) -> bool:
        return self.needs_video or self.stale_video

    @property
    def write_transcript(self) -> bool:
        return self.needs_transcript or self.stale_transcript

    @property
    def needed(self) -> bool:
        return self.write_video or self.write_transcript

    def to_dict(self) -> dict[str, Any]:
        return {
            'needs_video': self.needs_video,
            'stale_video': self.stale_video,
            'needs_transcript': self.needs_transcript,
            'stale_transcript': self.stale_transcript,
        }


def _urls(video_urls: str | Sequence[str]) -> list[str]:
    if isinstance(video_urls, str):
        video_urls = [video_urls]
    return list(dict.fromkeys(url for url in video_urls if url))


def plan_enrichment(body: str | None, video_urls: str | Sequence[str]) -> EnrichmentPlan:
    """
    Inspect a body for existing video and transcript sections.

    ``video_urls`` are all recordings matched to the meeting in this run.
    A marked video section whose recording lines are not exactly that set
    is stale, and so is its transcript, which is rebuilt once a transcript
    is available. A transcript section that only holds the "not available"
    placeholder is stale. Unmarked legacy recording text counts as present.
    """
    plan = EnrichmentPlan()
    wanted = _urls(video_urls)

    video = find_section(body, VIDEO_MARKER)
    if video is None:
        plan.needs_video = not has_video(body)
    elif wanted and set(parse_video_urls(video)) != set(wanted):
        plan.stale_video = True

    transcript = find_section(body, TRANSCRIPT_MARKER)
    if transcript is None:
        plan.needs_transcript = not has_transcript(body)
    elif plan.stale_video or transcript.strip() == TRANSCRIPT_UNAVAILABLE:
        plan.stale_transcript = True

    return plan


def apply_enrichment(
    body: str | None,
    plan: EnrichmentPlan,
    video_urls: str | Sequence[str],
    transcript: str | None,
) -> str:
    """
    Write the planned sections into a body.

    A stale transcript is only replaced by a real transcript; re-applying
    with the same inputs returns the same body.
    """
    result = body or ''
    if plan.write_video:
        result = upsert_section(result, VIDEO_MARKER, render_video(_urls(video_urls)))
    if plan.needs_transcript:
        result = upsert_section(result, TRANSCRIPT_MARKER, transcript or TRANSCRIPT_UNAVAILABLE)
    elif plan.stale_transcript and transcript:
        result = upsert_section(result, TRANSCRIPT_MARKER, transcript)
    return result


def combine_transcripts(parts: Sequence[tuple[str, str]]) -> str | None:
    """
    One transcript section body from (label, transcript) pairs.

    A single recording is written as is; several are each headed by
    their file name.
    """
    parts = [(label, text) for label, text in parts if text]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0][1]
    return '\n\n'.join(f'--- {label} ---\n{text}' for label, text in parts)
