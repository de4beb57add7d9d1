"""Custom exceptions for the identity service."""


class IdentityServiceError(Exception):
    """Base exception for identity service errors."""

    pass


class InvalidInputError(IdentityServiceError):
    """Fragment carries neither an email nor a phone number."""

    pass


class InternalError(IdentityServiceError):
    """Unexpected failure while resolving an identity."""

    pass


class StoreError(InternalError):
    """Error during contact store operations."""

    pass


class ContactNotFoundError(StoreError):
    """Update targeted a contact id that does not exist."""

    def __init__(self, contact_id: int):
        super().__init__(f"Contact {contact_id} not found")
        self.contact_id = contact_id
