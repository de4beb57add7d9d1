"""
Contact store contract.

The identity core only talks to storage through the narrow ``ContactStore``
protocol defined here. Two implementations ship with the service:

- ``InMemoryContactStore``: process-local, used for development and tests
- ``SQLContactStore``: PostgreSQL through SQLAlchemy's asyncio extension

Queries are expressed as ``ContactQuery`` objects (an OR of AND-clauses over
contact fields) so both implementations evaluate the same predicate.
A uniqueness conflict on ``create`` is an expected outcome under concurrent
requests and is returned as a ``UniquenessConflict`` value, not raised.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias

from src.models.contact import Contact, ContactDraft

# Fields a query clause may test
QUERY_FIELDS = frozenset(
    {"id", "email", "phone_number", "linked_id", "link_precedence"}
)

# Fields update operations may write
UPDATABLE_FIELDS = frozenset(
    {"email", "phone_number", "linked_id", "link_precedence", "deleted_at"}
)


@dataclass(frozen=True, init=False)
class In:
    """Membership test for a query clause value."""

    values: frozenset[Any]

    def __init__(self, values: Iterable[Any]):
        object.__setattr__(self, "values", frozenset(values))


@dataclass(frozen=True)
class ContactQuery:
    """
    Predicate over contacts.

    A contact matches if it satisfies every field test of at least one clause.
    ``None`` as a value means IS NULL; ``In`` means membership.
    Soft-deleted contacts never match unless ``include_deleted`` is set.
    """

    clauses: tuple[tuple[tuple[str, Any], ...], ...]
    include_deleted: bool = False

    @classmethod
    def any_of(
        cls, *clauses: Mapping[str, Any], include_deleted: bool = False
    ) -> "ContactQuery":
        if not clauses:
            raise ValueError("ContactQuery needs at least one clause")
        normalised = []
        for clause in clauses:
            unknown = set(clause) - QUERY_FIELDS
            if unknown:
                raise ValueError(f"Unknown contact query fields: {sorted(unknown)}")
            normalised.append(tuple(sorted(clause.items())))
        return cls(clauses=tuple(normalised), include_deleted=include_deleted)

    def matches(self, contact: Contact) -> bool:
        """Evaluate the predicate against a single contact."""
        if contact.is_deleted and not self.include_deleted:
            return False
        return any(
            all(_field_matches(getattr(contact, name), value) for name, value in clause)
            for clause in self.clauses
        )


def _field_matches(actual: Any, expected: Any) -> bool:
    if isinstance(expected, In):
        return actual in expected.values
    return actual == expected


def check_update_values(values: Mapping[str, Any]) -> None:
    """Reject writes to fields the store does not allow to change."""
    unknown = set(values) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")


@dataclass(frozen=True)
class Created:
    """``create`` stored a new contact."""

    contact: Contact


@dataclass(frozen=True)
class UniquenessConflict:
    """``create`` collided with an existing contact on a unique field combination."""

    email: str | None
    phone_number: str | None


CreateResult: TypeAlias = Created | UniquenessConflict


@dataclass(frozen=True)
class Update:
    """Transaction step: update one contact by id."""

    contact_id: int
    values: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateMany:
    """Transaction step: update every contact matching ``query``."""

    query: ContactQuery
    values: Mapping[str, Any] = field(default_factory=dict)


StoreOperation: TypeAlias = Update | UpdateMany


class ContactStore(Protocol):
    """Durable contact storage used by the identity core."""

    async def find_many(
        self, query: ContactQuery, oldest_first: bool = True
    ) -> list[Contact]: ...

    async def find_unique(self, contact_id: int) -> Contact | None: ...

    async def find_first(self, query: ContactQuery) -> Contact | None: ...

    async def create(self, draft: ContactDraft) -> CreateResult: ...

    async def update(self, contact_id: int, values: Mapping[str, Any]) -> Contact: ...

    async def update_many(
        self, query: ContactQuery, values: Mapping[str, Any]
    ) -> int: ...

    async def transaction(self, operations: Sequence[StoreOperation]) -> list[int]: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...
