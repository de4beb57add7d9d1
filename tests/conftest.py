"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator, Protocol

import pytest
from httpx import ASGITransport, AsyncClient

from src.clients.contact_store import get_contact_store
from src.identity.service import IdentityService
from src.main import app
from src.models.contact import Contact, ContactDraft, LinkPrecedence
from src.services.contact_store import ContactStore, Created
from src.services.memory_contact_store import InMemoryContactStore

BASE_TIME = datetime(2023, 4, 1, 9, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Clock that advances one second on every reading."""

    def __init__(self, start: datetime = BASE_TIME):
        self._now = start

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Configure pytest-anyio to use asyncio."""
    return "asyncio"


@pytest.fixture
def memory_store() -> InMemoryContactStore:
    """Empty in-memory contact store with a deterministic clock."""
    return InMemoryContactStore(clock=SteppingClock())


@pytest.fixture
def identity_service(memory_store: InMemoryContactStore) -> IdentityService:
    """Identity pipeline over the in-memory store."""
    return IdentityService(memory_store)


async def seed(
    store: ContactStore,
    email: str | None = None,
    phone_number: str | None = None,
    linked_to: Contact | None = None,
) -> Contact:
    """Store a contact directly, bypassing the identity pipeline."""
    if linked_to is None:
        draft = ContactDraft(email=email, phone_number=phone_number)
    else:
        draft = ContactDraft(
            email=email,
            phone_number=phone_number,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=linked_to.id,
        )
    result = await store.create(draft)
    assert isinstance(result, Created)
    return result.contact


def active(store: InMemoryContactStore) -> list[Contact]:
    """Non-deleted contacts, oldest first."""
    return [c for c in store.contacts if not c.is_deleted]


def assert_flat_groups(contacts: list[Contact]) -> None:
    """
    Check the primary/secondary graph of ``contacts``.

    Every secondary must point at an active primary, and every connected
    group (shared email, shared phone number or link) must hold exactly one
    primary.
    """
    by_id = {c.id: c for c in contacts}
    for contact in contacts:
        if contact.is_primary:
            assert contact.linked_id is None, f"primary {contact.id} has a link"
            continue
        leader = by_id.get(contact.linked_id) if contact.linked_id else None
        assert leader is not None, f"secondary {contact.id} has no active leader"
        assert leader.is_primary, f"secondary {contact.id} links to a secondary"

    parent = {c.id: c.id for c in contacts}

    def root(cid: int) -> int:
        while parent[cid] != cid:
            cid = parent[cid]
        return cid

    owners: dict[str, int] = {}
    for contact in contacts:
        neighbours = []
        if contact.linked_id in by_id:
            neighbours.append(by_id[contact.linked_id].id)
        for key in (f"email:{contact.email}", f"phone:{contact.phone_number}"):
            if key.endswith(":None"):
                continue
            if key in owners:
                neighbours.append(owners[key])
            else:
                owners[key] = contact.id
        for other in neighbours:
            parent[root(contact.id)] = root(other)

    groups: dict[int, list[Contact]] = {}
    for contact in contacts:
        groups.setdefault(root(contact.id), []).append(contact)
    for members in groups.values():
        primaries = [c.id for c in members if c.is_primary]
        assert len(primaries) == 1, (
            f"group {[c.id for c in members]} has primaries {primaries}"
        )


class ClientFactory(Protocol):
    """Protocol for client factory fixture."""

    def __call__(self, raise_app_exceptions: bool = True) -> AsyncClient: ...


@pytest.fixture
def client_factory(
    memory_store: InMemoryContactStore,
) -> Generator[ClientFactory, None, None]:
    """Factory for creating test clients backed by the in-memory store."""

    def _create_client(raise_app_exceptions: bool = True) -> AsyncClient:
        app.dependency_overrides[get_contact_store] = lambda: memory_store

        transport = ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
        return AsyncClient(transport=transport, base_url="http://testserver")

    yield _create_client

    app.dependency_overrides.clear()


@pytest.fixture
async def client(
    client_factory: ClientFactory,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client for testing endpoints."""
    async with client_factory() as c:
        yield c
