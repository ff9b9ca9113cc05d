"""taskgate - authorization and audit trail for tasks, groups and users."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskgate.core.config import settings
from taskgate.core.db_client import close_connection, init_db
from taskgate.core.errors import FatalMutationError, classify_error_with_response
from taskgate.core.logging import configure_logfire, instrument_fastapi
from taskgate.interface.api_router import router as api_router


logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "dev-secret-change-me"


def validate_startup_configuration() -> None:
    """Fail fast when production runs with the development signing secret."""
    logger.info("startup_validation_begin")

    try:
        secret = settings.require_credential("secret_key", "Principal token signing")
        if settings.is_production and secret == DEFAULT_SECRET_KEY:
            raise ValueError("SECRET_KEY must be changed from its development default in production")
        logger.info("startup_validation_complete", extra={"status": "ok"})
    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so validation logs are captured
    configure_logfire()
    validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    yield

    await close_connection()


app = FastAPI(
    title="taskgate",
    description="Role-based task management with an immutable audit trail",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(api_router)


@app.exception_handler(FatalMutationError)
async def fatal_mutation_handler(_request: Request, exc: FatalMutationError) -> JSONResponse:
    """A mutation that could not be committed in full was rolled back."""
    logger.error("fatal_mutation", extra={"error": exc.reason})
    return JSONResponse(
        status_code=500,
        content={"error": classify_error_with_response(exc).model_dump(mode="json"), "status": "fatal"},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)
