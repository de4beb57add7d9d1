"""
Identity reconciliation pipeline.

Each request runs:
1. GroupResolver - find touched contacts and choose the group primary
2. MergeEngine - fold every touched group into that primary
3. RecordReconciler - store the fragment as a secondary if it is new
4. ViewBuilder - report the consolidated identity

No in-process locking is used between requests; coordination happens
through the store's transactions and uniqueness constraint.
"""

import logging

from src.exceptions import InternalError
from src.identity.merge import MergeEngine
from src.identity.reconciler import RecordReconciler, exact_query
from src.identity.resolver import GroupResolver
from src.identity.view import IdentityView, ViewBuilder
from src.models.contact import Contact, Fragment
from src.services.contact_store import ContactStore, Created

logger = logging.getLogger(__name__)


class IdentityService:
    """Resolves fragments into consolidated identities."""

    def __init__(self, store: ContactStore):
        self.store = store
        self.resolver = GroupResolver(store)
        self.merger = MergeEngine(store)
        self.reconciler = RecordReconciler(store)
        self.views = ViewBuilder(store)

    async def identify(self, fragment: Fragment) -> IdentityView:
        """
        Resolve a fragment into the identity it belongs to.

        Args:
            fragment: Email and/or phone number supplied by the caller

        Returns:
            IdentityView of the (possibly newly created or merged) group

        Raises:
            InvalidInputError: If the fragment is empty
            InternalError: On storage failures or unresolved conflicts
        """
        resolution = await self.resolver.resolve(fragment)

        if resolution.is_new_group:
            primary = await self._create_primary(fragment)
            return await self.views.build(primary)

        assert resolution.primary is not None
        await self.merger.merge(resolution)
        await self.reconciler.reconcile(resolution)
        return await self.views.build(resolution.primary)

    async def _create_primary(self, fragment: Fragment) -> Contact:
        result = await self.store.create(fragment.to_draft())
        if isinstance(result, Created):
            logger.info("Created primary contact %d", result.contact.id)
            return result.contact

        # A concurrent request stored this exact fragment first; join its group
        existing = await self.store.find_first(exact_query(fragment))
        if existing is None:
            raise InternalError(
                "Uniqueness conflict creating primary "
                f"(email={fragment.email}, phone={fragment.phone_number}) "
                "but no conflicting contact was found"
            )
        if existing.is_primary:
            return existing

        leader = None
        if existing.linked_id is not None:
            leader = await self.store.find_unique(existing.linked_id)
        if leader is None or not leader.is_primary or leader.is_deleted:
            raise InternalError(
                f"Contact {existing.id} links to {existing.linked_id}, "
                "which is not an active primary"
            )
        return leader
