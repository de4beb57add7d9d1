"""
Recording of new information from a fragment.

When a fragment is not already stored verbatim, a secondary contact is
created under the group's primary. Two requests racing to store the same
fragment collide on the store's uniqueness constraint; the loser does not
fail but adopts the winner's contact as the secondary instead.
"""

import logging
from collections.abc import Sequence
from typing import Any

from src.exceptions import InternalError
from src.identity.resolver import Resolution
from src.models.contact import Contact, Fragment, LinkPrecedence
from src.services.contact_store import (
    ContactQuery,
    ContactStore,
    Created,
    Update,
    UpdateMany,
)

logger = logging.getLogger(__name__)


def exact_match(fragment: Fragment, contacts: Sequence[Contact]) -> bool:
    """True if any contact stores exactly the fragment's email and phone number."""
    return any(fragment.matches_exactly(c) for c in contacts)


def exact_query(fragment: Fragment) -> ContactQuery:
    return ContactQuery.any_of(
        {"email": fragment.email, "phone_number": fragment.phone_number}
    )


def partial_query(fragment: Fragment) -> ContactQuery | None:
    """Contacts holding one of the fragment's values with the other field empty."""
    clauses: list[dict[str, Any]] = []
    if fragment.email is not None and fragment.phone_number is not None:
        clauses.append({"email": fragment.email, "phone_number": None})
        clauses.append({"email": None, "phone_number": fragment.phone_number})
    if not clauses:
        return None
    return ContactQuery.any_of(*clauses)


class RecordReconciler:
    """Creates, or adopts, the secondary contact a fragment calls for."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def reconcile(self, resolution: Resolution) -> Contact | None:
        """
        Store the fragment as a secondary of the resolved primary if it is new.

        Args:
            resolution: Output of GroupResolver (after merging)

        Returns:
            The created or adopted secondary contact, or None when the
            fragment was already stored exactly.

        Raises:
            InternalError: If a uniqueness conflict cannot be traced to a contact
        """
        fragment = resolution.fragment
        primary = resolution.primary
        if primary is None:
            raise InternalError("Cannot reconcile a fragment without a primary")

        if exact_match(fragment, resolution.touched):
            logger.debug("Fragment already stored; no new contact needed")
            return None

        result = await self.store.create(fragment.to_draft(primary))
        if isinstance(result, Created):
            logger.info(
                "Created secondary contact %d under primary %d",
                result.contact.id,
                primary.id,
            )
            return result.contact

        return await self._adopt_conflicting(fragment, primary)

    async def find_conflicting(
        self, fragment: Fragment, primary: Contact
    ) -> Contact | None:
        """Locate the contact another request stored for this fragment."""
        exact = await self.store.find_first(exact_query(fragment))
        if exact is not None and exact.id != primary.id:
            return exact

        query = partial_query(fragment)
        if query is None:
            return None
        for contact in await self.store.find_many(query):
            if contact.id != primary.id:
                return contact
        return None

    async def _adopt_conflicting(self, fragment: Fragment, primary: Contact) -> Contact:
        conflicting = await self.find_conflicting(fragment, primary)
        if conflicting is None:
            raise InternalError(
                "Uniqueness conflict for fragment "
                f"(email={fragment.email}, phone={fragment.phone_number}) "
                "but no conflicting contact was found"
            )

        values: dict[str, Any] = {
            "link_precedence": LinkPrecedence.SECONDARY,
            "linked_id": primary.id,
        }
        # Only fill gaps; values already on the contact are kept
        if conflicting.email is None and fragment.email is not None:
            values["email"] = fragment.email
        if conflicting.phone_number is None and fragment.phone_number is not None:
            values["phone_number"] = fragment.phone_number

        logger.info(
            "Adopting concurrently created contact %d as secondary of %d",
            conflicting.id,
            primary.id,
        )

        if not conflicting.is_primary:
            return await self.store.update(conflicting.id, values)

        # A demoted primary takes its own secondaries along
        await self.store.transaction(
            [
                Update(conflicting.id, values),
                UpdateMany(
                    ContactQuery.any_of({"linked_id": conflicting.id}),
                    {"linked_id": primary.id},
                ),
            ]
        )
        adopted = await self.store.find_unique(conflicting.id)
        if adopted is None:
            raise InternalError(f"Contact {conflicting.id} vanished during adoption")
        return adopted
