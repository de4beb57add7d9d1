"""Dependency injection provider for the contact store."""

import os

from src.services.contact_store import ContactStore
from src.services.memory_contact_store import InMemoryContactStore
from src.services.sql_contact_store import create_sql_contact_store
from src.settings import settings

_contact_store: ContactStore | None = None


def get_contact_store() -> ContactStore:
    """Get or create the ContactStore singleton for the configured backend."""
    global _contact_store
    if _contact_store is None:
        if settings.store_backend == "postgres":
            # In tests, we'll override this dependency
            if os.getenv("PYTEST_CURRENT_TEST"):
                raise RuntimeError(
                    "SQLContactStore should be replaced in tests via dependency override"
                )
            _contact_store = create_sql_contact_store()
        else:
            _contact_store = InMemoryContactStore()
    return _contact_store


async def close_contact_store() -> None:
    """Release the store's resources and forget the singleton."""
    global _contact_store
    if _contact_store is not None:
        await _contact_store.close()
        _contact_store = None
