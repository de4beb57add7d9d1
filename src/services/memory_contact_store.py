"""
In-process contact store.

Keeps contacts in a dict guarded by an ``asyncio.Lock``. Writes are
serialised so that the uniqueness check in ``create`` and multi-step
``transaction`` calls are atomic with respect to other coroutines. Every
public call yields to the event loop before touching state, so concurrent
requests interleave the way they would against a networked database.

Uniqueness mirrors the SQL schema: among non-deleted contacts the pair
``(email, phone_number)`` is unique, with NULLs compared as equal.
"""

import asyncio
import itertools
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from src.exceptions import ContactNotFoundError, StoreError
from src.models.contact import Contact, ContactDraft
from src.services.contact_store import (
    ContactQuery,
    Created,
    CreateResult,
    StoreOperation,
    UniquenessConflict,
    Update,
    UpdateMany,
    check_update_values,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryContactStore:
    """ContactStore backed by process memory."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or _utcnow
        self._contacts: dict[int, Contact] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def contacts(self) -> list[Contact]:
        """Snapshot of every stored contact, deleted ones included, oldest first."""
        return sorted(self._contacts.values(), key=lambda c: c.sort_key)

    async def find_many(
        self, query: ContactQuery, oldest_first: bool = True
    ) -> list[Contact]:
        await asyncio.sleep(0)
        matched = [c for c in self._contacts.values() if query.matches(c)]
        if oldest_first:
            matched.sort(key=lambda c: c.sort_key)
        return matched

    async def find_unique(self, contact_id: int) -> Contact | None:
        await asyncio.sleep(0)
        return self._contacts.get(contact_id)

    async def find_first(self, query: ContactQuery) -> Contact | None:
        matched = await self.find_many(query)
        return matched[0] if matched else None

    async def create(self, draft: ContactDraft) -> CreateResult:
        await asyncio.sleep(0)
        async with self._lock:
            if self._violates_uniqueness(
                self._contacts, draft.email, draft.phone_number
            ):
                logger.debug(
                    "Uniqueness conflict creating contact (email=%s, phone=%s)",
                    draft.email,
                    draft.phone_number,
                )
                return UniquenessConflict(
                    email=draft.email, phone_number=draft.phone_number
                )

            now = self._clock()
            contact = Contact(
                id=next(self._ids),
                email=draft.email,
                phone_number=draft.phone_number,
                linked_id=draft.linked_id,
                link_precedence=draft.link_precedence,
                created_at=now,
                updated_at=now,
            )
            self._contacts[contact.id] = contact
            return Created(contact)

    async def update(self, contact_id: int, values: Mapping[str, Any]) -> Contact:
        await asyncio.sleep(0)
        async with self._lock:
            staged = dict(self._contacts)
            self._apply_update(staged, Update(contact_id, values))
            self._contacts = staged
            return staged[contact_id]

    async def update_many(self, query: ContactQuery, values: Mapping[str, Any]) -> int:
        counts = await self.transaction([UpdateMany(query, values)])
        return counts[0]

    async def transaction(self, operations: Sequence[StoreOperation]) -> list[int]:
        await asyncio.sleep(0)
        async with self._lock:
            # Work on a copy; state is swapped in only if every step succeeds
            staged = dict(self._contacts)
            counts = []
            for operation in operations:
                if isinstance(operation, Update):
                    self._apply_update(staged, operation)
                    counts.append(1)
                else:
                    counts.append(self._apply_update_many(staged, operation))
            self._contacts = staged
            return counts

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def _apply_update(self, staged: dict[int, Contact], operation: Update) -> None:
        check_update_values(operation.values)
        current = staged.get(operation.contact_id)
        if current is None:
            raise ContactNotFoundError(operation.contact_id)
        self._write(staged, current, operation.values)

    def _apply_update_many(
        self, staged: dict[int, Contact], operation: UpdateMany
    ) -> int:
        check_update_values(operation.values)
        targets = [c for c in staged.values() if operation.query.matches(c)]
        for contact in targets:
            self._write(staged, contact, operation.values)
        return len(targets)

    def _write(
        self,
        staged: dict[int, Contact],
        current: Contact,
        values: Mapping[str, Any],
    ) -> None:
        updated = replace(current, updated_at=self._clock(), **values)
        if not updated.is_deleted and (
            updated.email != current.email
            or updated.phone_number != current.phone_number
            or current.is_deleted
        ):
            others = {cid: c for cid, c in staged.items() if cid != current.id}
            if self._violates_uniqueness(others, updated.email, updated.phone_number):
                raise StoreError(
                    f"Contact {current.id} would duplicate "
                    f"(email={updated.email}, phone={updated.phone_number})"
                )
        staged[current.id] = updated

    @staticmethod
    def _violates_uniqueness(
        contacts: Mapping[int, Contact],
        email: str | None,
        phone_number: str | None,
    ) -> bool:
        return any(
            not c.is_deleted and c.email == email and c.phone_number == phone_number
            for c in contacts.values()
        )
