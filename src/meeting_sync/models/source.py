"""
Canonical origin-side models.

A SourceRecord is what every origin meeting (or call) looks like once it
has passed through the normalization adapter. It is frozen: nothing in the
pipeline mutates origin data during a run.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    """Target object types a meeting can be associated with."""

    CONTACT = 'contacts'
    COMPANY = 'companies'
    DEAL = 'deals'


class SourceType(str, Enum):
    MEETING = 'meeting'
    CALL = 'call'


class Participant(BaseModel):
    """
    A meeting attendee as the origin reports it.

    ``identity_ref`` is the origin person record id when the attendee is a
    known person; otherwise only ``email`` may be present.
    """

    model_config = {'frozen': True}

    identity_ref: str | None = Field(default=None, description='Origin person record id')
    email: str | None = None
    name: str | None = None
    role: str | None = Field(default=None, description="e.g. 'host'")
    status: str | None = Field(default=None, description="RSVP status, e.g. 'accepted'")

    @property
    def label(self) -> str:
        """Display label used in the participants section of a body."""
        if self.name and self.email:
            return f'{self.name} <{self.email}>'
        return self.name or self.email or 'Unknown participant'


class LinkedEntity(BaseModel):
    """A company or deal record linked to the meeting in the origin."""

    model_config = {'frozen': True}

    entity_type: EntityType
    origin_entity_id: str = Field(..., min_length=1)


class SourceRecord(BaseModel):
    """Validated origin meeting, immutable for the duration of a run."""

    model_config = {'frozen': True}

    origin_id: str = Field(..., min_length=1, description='Stable origin meeting id')
    title: str = 'Meeting imported from Attio'
    start_time: datetime | None = Field(..., description='None only when unresolvable')
    end_time: datetime | None = None
    description: str = ''
    location: str = ''
    participants: tuple[Participant, ...] = ()
    linked_entities: tuple[LinkedEntity, ...] = ()
    source_type: SourceType = SourceType.MEETING
    created_at: datetime | None = Field(None, description='When the record was created in Attio')
