"""
Association reconciliation: create the missing edges, never delete.

missing = desired - existing, keyed on (object type, object id). A second
run over the same desired set finds nothing missing and creates nothing.
"""

from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Any

from ..clients.hubspot_client import HubSpotClient
from ..logging import get_logger
from ..models.target import AssociationEdge, DesiredAssociations

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """Edges examined and created for one meeting."""

    record_id: str
    desired: set[AssociationEdge] = field(default_factory=set)
    existing: set[AssociationEdge] = field(default_factory=set)
    created: list[AssociationEdge] = field(default_factory=list)
    failed: list[tuple[AssociationEdge, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            'record_id': self.record_id,
            'desired': len(self.desired),
            'existing': len(self.existing),
            'created': len(self.created),
            'failed': [
                {'entity_type': e.entity_type.value, 'entity_id': e.entity_id, 'error': err}
                for e, err in self.failed
            ],
        }


def missing_edges(
    desired: set[AssociationEdge],
    existing: set[AssociationEdge],
    key: Callable[[AssociationEdge], Hashable] = attrgetter('key'),
) -> list[AssociationEdge]:
    """
    Desired edges with no existing counterpart, in a stable order.

    Edges of one meeting compare on ``key``; edges from many records to
    one deal compare on ``item_id``.
    """
    existing_keys = {key(edge) for edge in existing}
    return sorted(
        (edge for edge in desired if key(edge) not in existing_keys),
        key=lambda e: (e.entity_type.value, e.entity_id, e.record_type, e.record_id),
    )


class AssociationReconciler:
    """Diffs desired against live edges and creates the difference."""

    def __init__(self, target: HubSpotClient):
        self.target = target

    async def reconcile(
        self,
        record_id: str,
        desired: DesiredAssociations,
        existing: set[AssociationEdge] | None = None,
    ) -> ReconcileResult:
        """
        Args:
            record_id: HubSpot meeting id
            desired: Target associations for the meeting
            existing: Known current edges; fetched live when None. Pass an
                empty set only for a meeting created in this run.
        """
        if existing is None:
            existing = await self.target.list_association_edges(record_id)

        result = ReconcileResult(
            record_id=record_id,
            desired=desired.edges(record_id),
            existing=set(existing),
        )
        missing = missing_edges(result.desired, result.existing)
        if not missing:
            return result

        batch = await self.target.create_associations(missing)
        by_key = {e.item_id: e for e in missing}
        result.created = [by_key[item.item_id] for item in batch.succeeded if item.item_id in by_key]
        result.failed = [
            (by_key[item.item_id], str(item.error))
            for item in batch.failed
            if item.item_id in by_key
        ]

        logger.info(
            'associations_reconciled',
            target_id=record_id,
            desired=len(result.desired),
            existing=len(result.existing),
            created=len(result.created),
            failed=len(result.failed),
        )
        return result
