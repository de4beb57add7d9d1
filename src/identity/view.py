"""Consolidated identity view of a group."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from src.models.contact import Contact
from src.services.contact_store import ContactQuery, ContactStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityView:
    """Everything known about one person."""

    primary_contact_id: int
    emails: list[str]
    phone_numbers: list[str]
    secondary_contact_ids: list[int]


def _distinct(values: Iterable[str | None]) -> list[str]:
    # dict preserves first-seen order
    return list(dict.fromkeys(v for v in values if v is not None))


class ViewBuilder:
    """Builds the IdentityView for a primary contact's current group."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def build(self, primary: Contact) -> IdentityView:
        """
        Assemble the view for ``primary``'s group.

        The primary's own email and phone number come first; the rest follow
        in the order of the oldest contact carrying them.
        """
        members = await self.store.find_many(
            ContactQuery.any_of({"id": primary.id}, {"linked_id": primary.id})
        )
        ordered = [c for c in members if c.id == primary.id] + [
            c for c in members if c.id != primary.id
        ]
        if not ordered or ordered[0].id != primary.id:
            # Primary is deleted; its secondaries still make up the group
            logger.warning("Primary %d is not among the group members", primary.id)

        return IdentityView(
            primary_contact_id=primary.id,
            emails=_distinct(c.email for c in ordered),
            phone_numbers=_distinct(c.phone_number for c in ordered),
            secondary_contact_ids=[c.id for c in ordered if not c.is_primary],
        )
