"""Identify endpoint for contact fragments."""

import logging

from fastapi import APIRouter

from src.routers.deps import IdentityServiceDep
from src.schemas.identify import (
    ContactSummary,
    ErrorResponse,
    IdentifyRequest,
    IdentifyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Identity"])


@router.post(
    "/identify",
    response_model=IdentifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No email or phone number"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def identify(
    request: IdentifyRequest,
    identity_service: IdentityServiceDep,
) -> IdentifyResponse:
    """
    Resolve an email and/or phone number into a consolidated identity.

    At least one of ``email`` and ``phoneNumber`` is required. The response
    lists the group's primary contact, every known email and phone number,
    and the ids of its secondary contacts. New information is recorded as a
    secondary contact; fragments that bridge two identities merge them under
    the older primary.
    """
    fragment = request.to_fragment()
    logger.info(
        "Identify request (has_email=%s, has_phone=%s)",
        fragment.email is not None,
        fragment.phone_number is not None,
    )
    view = await identity_service.identify(fragment)
    return IdentifyResponse(contact=ContactSummary.from_view(view))
