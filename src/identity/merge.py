"""Merging of identity groups bridged by a fragment."""

import logging

from src.identity.resolver import Resolution
from src.models.contact import LinkPrecedence
from src.services.contact_store import ContactQuery, ContactStore, In, UpdateMany

logger = logging.getLogger(__name__)


class MergeEngine:
    """
    Folds every group touched by a fragment into the chosen primary's group.

    Losing primaries are demoted to secondaries of the winner and their
    secondaries are re-pointed at the winner in the same transaction, so the
    primary/secondary graph never holds a secondary-to-secondary link.
    """

    def __init__(self, store: ContactStore):
        self.store = store

    async def merge(self, resolution: Resolution) -> int:
        """
        Merge the groups in ``resolution`` under its primary.

        Returns:
            Number of primaries demoted (0 when there was nothing to merge)
        """
        primary = resolution.primary
        if primary is None:
            return 0

        loser_ids = {c.id for c in resolution.losing_primaries}
        relink_ids = loser_ids | resolution.stale_link_ids
        if not relink_ids:
            return 0

        operations = []
        if loser_ids:
            operations.append(
                UpdateMany(
                    ContactQuery.any_of({"id": In(loser_ids)}),
                    {
                        "link_precedence": LinkPrecedence.SECONDARY,
                        "linked_id": primary.id,
                    },
                )
            )
        operations.append(
            UpdateMany(
                ContactQuery.any_of({"linked_id": In(relink_ids)}),
                {"linked_id": primary.id},
            )
        )

        counts = await self.store.transaction(operations)
        demoted = counts[0] if loser_ids else 0
        relinked = counts[-1]
        logger.info(
            "Merged into primary %d: %d primaries demoted, %d contacts re-linked",
            primary.id,
            demoted,
            relinked,
        )
        return demoted
