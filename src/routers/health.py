"""Health check endpoint."""

from fastapi import APIRouter

from src.routers.deps import ContactStoreDep
from src.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    contact_store: ContactStoreDep,
) -> HealthResponse:
    """Check service health including contact store connectivity."""
    store_healthy = await contact_store.health_check()

    return HealthResponse(
        status="healthy" if store_healthy else "degraded",
        database=store_healthy,
    )
