"""
Enrichment artifact models.

An artifact is a recording file already uploaded to the HubSpot File
Manager. Its filename carries the origin identifiers used to find the
meeting it belongs to.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..utils import parse_timestamp
from .target import TargetRecord


class MatchStrategy(str, Enum):
    """How an artifact was tied to a target record."""

    RECORDING_INDIRECT = 'recording-indirect'
    DIRECT_RECORD = 'direct-record'
    UNMATCHED = 'unmatched'


class EnrichmentArtifact(BaseModel):
    """A recording file listed from the target's file store."""

    model_config = {'frozen': True}

    id: str
    filename: str = Field(..., description='Full name including extension')
    url: str = Field(default='', description='Login-gated File Manager URL')
    size: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_hubspot_file(cls, data: dict[str, Any], url: str = '') -> 'EnrichmentArtifact':
        name = data.get('name') or ''
        extension = data.get('extension') or ''
        filename = name if not extension or name.endswith(f'.{extension}') else f'{name}.{extension}'
        return cls(
            id=str(data['id']),
            filename=filename,
            url=url,
            size=data.get('size'),
            created_at=parse_timestamp(data.get('createdAt')),
        )


@dataclass
class ArtifactMatch:
    """Outcome of resolving one artifact against the run's indexes."""

    artifact: EnrichmentArtifact
    strategy: MatchStrategy
    target: TargetRecord | None = None
    origin_id: str | None = None
    recording_id: str | None = None
    matched_via: str | None = None
    needs_confirmation: bool = False
    tokens: tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return self.target is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            'artifact_id': self.artifact.id,
            'filename': self.artifact.filename,
            'strategy': self.strategy.value,
            'target_id': self.target.id if self.target else None,
            'origin_id': self.origin_id,
            'recording_id': self.recording_id,
            'matched_via': self.matched_via,
            'needs_confirmation': self.needs_confirmation,
        }
