"""
Identity resolution: origin person/company/deal reference -> HubSpot id.

Lookups go to HubSpot every time; nothing is cached across calls or runs.
A miss returns None and is an expected outcome.
"""

from ..clients.hubspot_client import HubSpotClient
from ..models.source import EntityType, Participant
from ..models.target import CROSS_REFERENCE_PROPERTIES


class IdentityResolver:
    """Resolves origin references through HubSpot search."""

    def __init__(self, target: HubSpotClient):
        self.target = target

    async def resolve(self, entity_type: EntityType, origin_ref: str) -> str | None:
        """
        HubSpot id of the object whose cross-reference property equals ``origin_ref``.

        Raises:
            ValueError: Empty reference
        """
        ref = (origin_ref or '').strip()
        if not ref:
            raise ValueError(f'Empty {entity_type.value} reference')
        return await self.target.search_object_id(
            entity_type, CROSS_REFERENCE_PROPERTIES[entity_type], ref
        )

    async def resolve_email(self, email: str) -> str | None:
        """
        HubSpot contact id for an email address.

        Raises:
            ValueError: Not an email address
        """
        address = (email or '').strip().lower()
        if '@' not in address:
            raise ValueError(f'Malformed email address: {email!r}')
        return await self.target.search_object_id(EntityType.CONTACT, 'email', address)

    async def resolve_participant(self, participant: Participant) -> str | None:
        """Contact id by person reference, falling back to email on a miss."""
        if participant.identity_ref:
            contact_id = await self.resolve(EntityType.CONTACT, participant.identity_ref)
            if contact_id is not None:
                return contact_id
        if participant.email:
            return await self.resolve_email(participant.email)
        return None
