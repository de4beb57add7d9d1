"""
Group resolution.

Finds every stored contact touching a fragment and picks the primary that
should lead the resulting group. Leadership always goes to the oldest
primary reachable from the touched contacts: directly (a touched primary)
or through a touched secondary's ``linked_id``.
"""

import logging
from dataclasses import dataclass, field

from src.exceptions import InvalidInputError
from src.models.contact import Contact, Fragment, LinkPrecedence
from src.services.contact_store import ContactQuery, ContactStore

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Snapshot of the groups a fragment touches."""

    fragment: Fragment
    # Contacts matching the fragment's email or phone number, oldest first
    touched: list[Contact] = field(default_factory=list)
    primary: Contact | None = None
    # Every current primary reachable from ``touched``, oldest first
    leaders: list[Contact] = field(default_factory=list)
    # linked_id values of touched secondaries whose target is gone or not primary
    stale_link_ids: set[int] = field(default_factory=set)

    @property
    def is_new_group(self) -> bool:
        return not self.touched

    @property
    def losing_primaries(self) -> list[Contact]:
        if self.primary is None:
            return []
        return [c for c in self.leaders if c.id != self.primary.id]


def fragment_query(fragment: Fragment) -> ContactQuery:
    """Match contacts sharing the fragment's email or phone number."""
    clauses = []
    if fragment.email is not None:
        clauses.append({"email": fragment.email})
    if fragment.phone_number is not None:
        clauses.append({"phone_number": fragment.phone_number})
    return ContactQuery.any_of(*clauses)


class GroupResolver:
    """Locates the identity group(s) a fragment belongs to."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def resolve(self, fragment: Fragment) -> Resolution:
        """
        Resolve a fragment against the store.

        Args:
            fragment: Normalised email / phone number input

        Returns:
            Resolution with the touched contacts and the chosen primary.
            ``primary`` is None only when nothing matched.

        Raises:
            InvalidInputError: If the fragment has neither email nor phone number
        """
        if fragment.is_empty:
            raise InvalidInputError("At least one field required")

        touched = await self.store.find_many(fragment_query(fragment))
        resolution = Resolution(fragment=fragment, touched=touched)
        if not touched:
            logger.debug("No contacts match fragment; new group required")
            return resolution

        leaders = {c.id: c for c in touched if c.is_primary}
        for contact in touched:
            if contact.is_primary or contact.linked_id is None:
                continue
            target_id = contact.linked_id
            if target_id in leaders or target_id in resolution.stale_link_ids:
                continue
            leader = await self._follow_link(target_id, resolution.stale_link_ids)
            if leader is not None:
                leaders[leader.id] = leader
            else:
                logger.warning(
                    "Contact %d links to %d, which leads to no active primary",
                    contact.id,
                    target_id,
                )

        resolution.leaders = sorted(leaders.values(), key=lambda c: c.sort_key)
        if resolution.leaders:
            resolution.primary = resolution.leaders[0]
        else:
            resolution.primary = await self._promote(touched[0])
            resolution.leaders = [resolution.primary]

        logger.debug(
            "Fragment touches %d contacts across %d group(s); primary is %d",
            len(touched),
            len(resolution.leaders),
            resolution.primary.id,
        )
        return resolution

    async def _follow_link(self, target_id: int, stale: set[int]) -> Contact | None:
        """
        Walk ``linked_id`` hops from ``target_id`` to an active primary.

        A concurrent merge can demote a primary after a secondary was linked
        to it, so the target may itself be a live secondary. Every hop that is
        not an active primary is recorded in ``stale`` so the merge re-points
        its dependents. Returns None when the chain ends at a deleted or
        missing contact.
        """
        current_id: int | None = target_id
        while current_id is not None and current_id not in stale:
            target = await self.store.find_unique(current_id)
            if target is not None and target.is_primary and not target.is_deleted:
                return target
            stale.add(current_id)
            if target is None or target.is_deleted:
                return None
            logger.info(
                "Contact %d was demoted; following its link to %s",
                target.id,
                target.linked_id,
            )
            current_id = target.linked_id
        return None

    async def _promote(self, contact: Contact) -> Contact:
        """Make an orphaned contact the primary of its group."""
        logger.info("Promoting contact %d to primary", contact.id)
        return await self.store.update(
            contact.id,
            {"link_precedence": LinkPrecedence.PRIMARY, "linked_id": None},
        )
