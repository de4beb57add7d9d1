"""Shared dependencies for routers."""

from typing import Annotated

from fastapi import Depends

from src.clients.contact_store import get_contact_store
from src.identity.service import IdentityService
from src.services.contact_store import ContactStore

# Typed dependency aliases for use in endpoint signatures
ContactStoreDep = Annotated[ContactStore, Depends(get_contact_store)]


def get_identity_service(store: ContactStoreDep) -> IdentityService:
    """Build the identity pipeline over the configured contact store."""
    return IdentityService(store)


IdentityServiceDep = Annotated[IdentityService, Depends(get_identity_service)]
