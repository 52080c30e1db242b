"""
Association resolution: the full set of HubSpot objects a meeting should
be linked to.
"""

from ..errors import MeetingSyncError
from ..logging import get_logger
from ..models.source import EntityType, SourceRecord
from ..models.target import DesiredAssociations
from .identity import IdentityResolver

logger = get_logger(__name__)


class AssociationResolver:
    """
    Computes desired associations for one origin record.

    Participants become contacts; linked company and deal records become
    companies and deals. Each reference is resolved on its own so one
    failing lookup never drops the others. Results are sets, so the same
    object reached twice yields one edge.
    """

    def __init__(self, identity: IdentityResolver):
        self.identity = identity

    async def desired_associations(
        self,
        source: SourceRecord,
        failures: list[str] | None = None,
    ) -> DesiredAssociations:
        """
        Args:
            source: Origin record
            failures: Optional list that collects a message per failed lookup

        Returns:
            DesiredAssociations of HubSpot ids
        """
        desired = DesiredAssociations()
        misses = 0

        for participant in source.participants:
            try:
                contact_id = await self.identity.resolve_participant(participant)
            except (MeetingSyncError, ValueError) as e:
                self._record_failure(source, 'contact', participant.identity_ref or participant.email, e, failures)
                continue
            if contact_id is None:
                misses += 1
            else:
                desired.add(EntityType.CONTACT, contact_id)

        for linked in source.linked_entities:
            try:
                target_id = await self.identity.resolve(linked.entity_type, linked.origin_entity_id)
            except (MeetingSyncError, ValueError) as e:
                self._record_failure(source, linked.entity_type.value, linked.origin_entity_id, e, failures)
                continue
            if target_id is None:
                misses += 1
            else:
                desired.add(linked.entity_type, target_id)

        logger.debug(
            'associations_resolved',
            origin_id=source.origin_id,
            misses=misses,
            **{k: len(v) for k, v in desired.to_dict().items()},
        )
        return desired

    @staticmethod
    def _record_failure(
        source: SourceRecord,
        kind: str,
        ref: str | None,
        error: Exception,
        failures: list[str] | None,
    ) -> None:
        logger.warning(
            'association_lookup_failed',
            origin_id=source.origin_id,
            kind=kind,
            ref=ref,
            error=str(error),
        )
        if failures is not None:
            failures.append(f'{source.origin_id}: {kind} lookup failed for {ref}: {error}')
