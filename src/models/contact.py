"""
Contact records and request fragments.

A contact is either the primary (canonical) record of an identity group or
a secondary record linked to exactly one primary through ``linked_id``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class LinkPrecedence(str, Enum):
    """Role of a contact within its identity group."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class Contact:
    """A stored contact record."""

    id: int
    email: str | None
    phone_number: str | None
    linked_id: int | None
    link_precedence: LinkPrecedence
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Oldest-first ordering key; ids break creation-time ties."""
        return (self.created_at, self.id)


@dataclass(frozen=True)
class ContactDraft:
    """Field values for a contact that has not been stored yet."""

    email: str | None
    phone_number: str | None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    linked_id: int | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Fragment:
    """Partial identity supplied by a caller."""

    email: str | None = None
    phone_number: str | None = None

    @classmethod
    def from_values(
        cls, email: str | None, phone_number: int | str | None
    ) -> "Fragment":
        """Build a fragment, treating blank values as absent."""
        phone = None if phone_number is None else str(phone_number)
        return cls(email=_clean(email), phone_number=_clean(phone))

    @property
    def is_empty(self) -> bool:
        return self.email is None and self.phone_number is None

    def matches_exactly(self, contact: Contact) -> bool:
        """True if ``contact`` holds exactly this email and phone number."""
        return (
            contact.email == self.email and contact.phone_number == self.phone_number
        )

    def to_draft(self, primary: Contact | None = None) -> ContactDraft:
        """Draft a new record for this fragment, secondary to ``primary`` if given."""
        if primary is None:
            return ContactDraft(email=self.email, phone_number=self.phone_number)
        return ContactDraft(
            email=self.email,
            phone_number=self.phone_number,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=primary.id,
        )
