"""Tests for merging identity groups."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.identity.merge import MergeEngine
from src.identity.resolver import GroupResolver
from src.models.contact import Fragment, LinkPrecedence
from src.services.contact_store import ContactStore
from src.services.memory_contact_store import InMemoryContactStore
from tests.conftest import active, assert_flat_groups, seed


class TestMergeEngine:
    """Tests for MergeEngine.merge."""

    @pytest.mark.anyio
    async def test_single_group_is_noop(
        self, memory_store: InMemoryContactStore
    ) -> None:
        primary = await seed(memory_store, email="doc@hillvalley.edu")
        await seed(
            memory_store, email="doc@hillvalley.edu", phone_number="1", linked_to=primary
        )
        resolution = await GroupResolver(memory_store).resolve(
            Fragment("doc@hillvalley.edu", "1")
        )
        before = list(memory_store.contacts)

        demoted = await MergeEngine(memory_store).merge(resolution)

        assert demoted == 0
        assert memory_store.contacts == before

    @pytest.mark.anyio
    async def test_noop_issues_no_writes(
        self, memory_store: InMemoryContactStore
    ) -> None:
        await seed(memory_store, email="doc@hillvalley.edu")
        resolution = await GroupResolver(memory_store).resolve(
            Fragment(email="doc@hillvalley.edu")
        )
        store = AsyncMock(spec=ContactStore)

        await MergeEngine(store).merge(resolution)

        store.transaction.assert_not_called()
        store.update_many.assert_not_called()

    @pytest.mark.anyio
    async def test_younger_primary_and_dependents_join_older(
        self, memory_store: InMemoryContactStore
    ) -> None:
        """Demotion and re-linking leave no secondary pointing at a secondary."""
        older = await seed(memory_store, email="lorraine@hillvalley.edu")
        younger = await seed(memory_store, phone_number="123456")
        dependent = await seed(
            memory_store,
            email="mcfly@hillvalley.edu",
            phone_number="123456",
            linked_to=younger,
        )
        resolution = await GroupResolver(memory_store).resolve(
            Fragment("lorraine@hillvalley.edu", "123456")
        )

        demoted = await MergeEngine(memory_store).merge(resolution)

        assert demoted == 1
        demoted_contact = await memory_store.find_unique(younger.id)
        relinked = await memory_store.find_unique(dependent.id)
        assert demoted_contact is not None and relinked is not None
        assert demoted_contact.link_precedence == LinkPrecedence.SECONDARY
        assert demoted_contact.linked_id == older.id
        assert relinked.linked_id == older.id
        assert_flat_groups(active(memory_store))

    @pytest.mark.anyio
    async def test_merge_is_one_transaction(
        self, memory_store: InMemoryContactStore
    ) -> None:
        """Demotion and re-linking are submitted together."""
        await seed(memory_store, email="lorraine@hillvalley.edu")
        await seed(memory_store, phone_number="123456")
        resolution = await GroupResolver(memory_store).resolve(
            Fragment("lorraine@hillvalley.edu", "123456")
        )
        store = AsyncMock(spec=ContactStore)
        store.transaction.return_value = [1, 0]

        await MergeEngine(store).merge(resolution)

        store.transaction.assert_awaited_once()
        operations = store.transaction.await_args.args[0]
        assert len(operations) == 2
        store.update.assert_not_called()
        store.update_many.assert_not_called()

    @pytest.mark.anyio
    async def test_stale_links_follow_promoted_contact(
        self, memory_store: InMemoryContactStore
    ) -> None:
        """Contacts linked to a deleted primary move to the promoted orphan."""
        gone = await seed(memory_store, email="einstein@hillvalley.edu")
        first = await seed(
            memory_store, email="einstein@hillvalley.edu", phone_number="1", linked_to=gone
        )
        second = await seed(
            memory_store, email="einstein@hillvalley.edu", phone_number="2", linked_to=gone
        )
        await memory_store.update(
            gone.id, {"deleted_at": datetime(2023, 5, 1, tzinfo=timezone.utc)}
        )

        resolution = await GroupResolver(memory_store).resolve(
            Fragment(phone_number="1")
        )
        await MergeEngine(memory_store).merge(resolution)

        moved = await memory_store.find_unique(second.id)
        assert resolution.primary is not None
        assert resolution.primary.id == first.id
        assert moved is not None
        assert moved.linked_id == first.id
        assert_flat_groups(active(memory_store))
