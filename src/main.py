"""Identity reconciliation service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.clients.contact_store import close_contact_store, get_contact_store
from src.exceptions import InternalError, InvalidInputError
from src.routers import health, identify
from src.settings import settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "identity-reconciliation"
SERVICE_VERSION = "0.1.0"


def configure_logging() -> None:
    """Route service logs to stderr at the configured level."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan management."""
    # Startup
    configure_logging()
    get_contact_store()
    logger.info("Server is running (store=%s)", settings.store_backend)
    yield
    # Shutdown
    await close_contact_store()


app = FastAPI(
    title="Identity Reconciliation",
    description="Consolidates contact fragments (email / phone number) into one identity per person",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(InvalidInputError)
async def handle_invalid_input(request: Request, exc: InvalidInputError) -> JSONResponse:
    """Fragments without an email or phone number are rejected with 400."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc)},
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle malformed request bodies and return 422."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "Invalid request body",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(InternalError)
async def handle_internal_error(request: Request, exc: InternalError) -> JSONResponse:
    """Log identity-core failures and hide their details from callers."""
    logger.error("Identity resolution failed: %s", exc, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@app.exception_handler(Exception)
async def handle_unhandled_exceptions(request: Request, exc: Exception) -> JSONResponse:
    """Catch and log all unhandled exceptions."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# Register routers
app.include_router(health.router)
app.include_router(identify.router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": SERVICE_NAME, "version": SERVICE_VERSION}


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
