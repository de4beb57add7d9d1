"""Schemas for the identify endpoint."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.identity.view import IdentityView
from src.models.contact import Fragment

# Matches the width of the stored phone_number column
PHONE_MAX_LENGTH = 32


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IdentifyRequest(CamelModel):
    """Request model for identifying a contact fragment."""

    email: str | None = Field(
        default=None,
        max_length=255,
        description="Email address of the contact",
    )
    phone_number: (
        Annotated[int, Field(ge=0, lt=10**PHONE_MAX_LENGTH)]
        | Annotated[str, Field(max_length=PHONE_MAX_LENGTH)]
        | None
    ) = Field(
        default=None,
        description="Phone number of the contact (number or string)",
    )

    def to_fragment(self) -> Fragment:
        return Fragment.from_values(self.email, self.phone_number)


class ContactSummary(CamelModel):
    """Consolidated identity of one person."""

    primary_contact_id: int = Field(description="ID of the group's primary contact")
    emails: list[str] = Field(
        default_factory=list,
        description="Distinct emails in the group, primary's first",
    )
    phone_numbers: list[str] = Field(
        default_factory=list,
        description="Distinct phone numbers in the group, primary's first",
    )
    secondary_contact_ids: list[int] = Field(
        default_factory=list,
        description="IDs of the group's secondary contacts",
    )

    @classmethod
    def from_view(cls, view: IdentityView) -> "ContactSummary":
        return cls(
            primary_contact_id=view.primary_contact_id,
            emails=view.emails,
            phone_numbers=view.phone_numbers,
            secondary_contact_ids=view.secondary_contact_ids,
        )


class IdentifyResponse(BaseModel):
    """Response model for the identify endpoint."""

    contact: ContactSummary


class ErrorResponse(BaseModel):
    """Body returned for failed requests."""

    error: str
