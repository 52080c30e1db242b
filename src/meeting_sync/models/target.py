"""
Target-side (HubSpot) models.

TargetRecord is a read snapshot of a HubSpot meeting. It can come from the
CRM objects API or from the legacy engagements API; both shapes are
folded into the same model. Association edges are never stored on the
record: they are fetched live by the reconciler.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..utils import parse_timestamp
from .source import EntityType

# HubSpot-defined association type ids (meeting -> object)
ASSOCIATION_TYPE_IDS: dict[EntityType, int] = {
    EntityType.CONTACT: 200,
    EntityType.COMPANY: 188,
    EntityType.DEAL: 212,
}

MEETING_OBJECT = 'meetings'

# Engagement object types a deal can collect from its companies and contacts
ENGAGEMENT_OBJECTS = ('meetings', 'calls', 'notes', 'emails', 'tasks')

# HubSpot-defined association type ids (engagement -> deal)
ENGAGEMENT_DEAL_TYPE_IDS: dict[str, int] = {
    'meetings': ASSOCIATION_TYPE_IDS[EntityType.DEAL],
    'calls': 206,
    'notes': 214,
    'emails': 210,
    'tasks': 216,
}

# Cross-reference properties holding the origin record id on HubSpot objects
CROSS_REFERENCE_PROPERTIES: dict[EntityType, str] = {
    EntityType.CONTACT: 'contact_record_id_attio',
    EntityType.COMPANY: 'company_record_id_attio',
    EntityType.DEAL: 'deal_record_id_attio',
}

MEETING_PROPERTIES = [
    'hs_meeting_title',
    'hs_meeting_body',
    'hs_meeting_start_time',
    'hs_meeting_end_time',
    'hs_timestamp',
]

DEAL_PROPERTIES = ['dealname', 'createdate', 'hs_lastmodifieddate']


class TargetKind(str, Enum):
    CRM = 'crm'
    ENGAGEMENT = 'engagement'


class TargetRecord(BaseModel):
    """A HubSpot meeting as read at the start of a run."""

    id: str = Field(..., min_length=1)
    title: str = ''
    body: str = ''
    start_time: datetime | None = None
    end_time: datetime | None = None
    kind: TargetKind = TargetKind.CRM

    @classmethod
    def from_crm(cls, data: dict[str, Any]) -> 'TargetRecord':
        """Build from a CRM v3 meeting object (``{id, properties}``)."""
        props = data.get('properties') or {}
        return cls(
            id=str(data['id']),
            title=props.get('hs_meeting_title') or '',
            body=props.get('hs_meeting_body') or '',
            start_time=parse_timestamp(
                props.get('hs_meeting_start_time') or props.get('hs_timestamp')
            ),
            end_time=parse_timestamp(props.get('hs_meeting_end_time')),
            kind=TargetKind.CRM,
        )

    @classmethod
    def from_engagement(cls, data: dict[str, Any]) -> 'TargetRecord':
        """Build from a legacy engagement (``{engagement, metadata}``)."""
        engagement = data.get('engagement') or {}
        metadata = data.get('metadata') or {}
        return cls(
            id=str(engagement['id']),
            title=metadata.get('title') or '',
            body=metadata.get('body') or '',
            start_time=parse_timestamp(
                metadata.get('startTime') or engagement.get('timestamp')
            ),
            end_time=parse_timestamp(metadata.get('endTime')),
            kind=TargetKind.ENGAGEMENT,
        )


class DealRecord(BaseModel):
    """A HubSpot deal as listed for the engagement backfill."""

    id: str = Field(..., min_length=1)
    name: str = ''
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def last_changed(self) -> datetime | None:
        stamps = [t for t in (self.created_at, self.updated_at) if t is not None]
        return max(stamps) if stamps else None

    @classmethod
    def from_crm(cls, data: dict[str, Any]) -> 'DealRecord':
        properties = data.get('properties') or {}
        return cls(
            id=str(data['id']),
            name=properties.get('dealname') or '',
            created_at=parse_timestamp(data.get('createdAt') or properties.get('createdate')),
            updated_at=parse_timestamp(
                data.get('updatedAt') or properties.get('hs_lastmodifieddate')
            ),
        )


@dataclass(frozen=True)
class AssociationEdge:
    """
    (record, related type, related id). Hashable so edge sets diff cleanly.

    ``record_type`` is the HubSpot object the edge starts from: a meeting
    for sync runs, any engagement type for the deal backfill.
    """

    record_id: str
    entity_type: EntityType
    entity_id: str
    record_type: str = MEETING_OBJECT

    @property
    def key(self) -> tuple[EntityType, str]:
        return (self.entity_type, self.entity_id)

    @property
    def item_id(self) -> str:
        return f'{self.record_type}:{self.record_id}->{self.entity_type.value}:{self.entity_id}'

    @property
    def type_id(self) -> int:
        """HubSpot-defined association type id for this pair of objects."""
        if self.record_type == MEETING_OBJECT:
            return ASSOCIATION_TYPE_IDS[self.entity_type]
        if self.entity_type == EntityType.DEAL and self.record_type in ENGAGEMENT_DEAL_TYPE_IDS:
            return ENGAGEMENT_DEAL_TYPE_IDS[self.record_type]
        raise ValueError(f'No association type for {self.record_type} -> {self.entity_type.value}')


@dataclass
class DesiredAssociations:
    """Target ids a meeting should be associated with, per object type."""

    contacts: set[str] = field(default_factory=set)
    companies: set[str] = field(default_factory=set)
    deals: set[str] = field(default_factory=set)

    def for_type(self, entity_type: EntityType) -> set[str]:
        return {
            EntityType.CONTACT: self.contacts,
            EntityType.COMPANY: self.companies,
            EntityType.DEAL: self.deals,
        }[entity_type]

    def add(self, entity_type: EntityType, target_id: str) -> None:
        self.for_type(entity_type).add(str(target_id))

    def edges(self, record_id: str) -> set[AssociationEdge]:
        return {
            AssociationEdge(record_id, entity_type, entity_id)
            for entity_type in EntityType
            for entity_id in self.for_type(entity_type)
        }

    @property
    def total(self) -> int:
        return len(self.contacts) + len(self.companies) + len(self.deals)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            'contacts': sorted(self.contacts),
            'companies': sorted(self.companies),
            'deals': sorted(self.deals),
        }
