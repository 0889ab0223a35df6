"""FastAPI application factory for Assetrecon.

This module provides the main application factory function that creates
and configures a FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Service lifecycle management (database, embedding client, job engine)
- Mapping of domain errors to HTTP responses

Error responses share one shape: ``{"status": "error", "message": ...}``.

Example usage:
    >>> from assetrecon.config import AssetReconConfig
    >>> from assetrecon.web.app import create_app
    >>>
    >>> app = create_app(AssetReconConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=3000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assetrecon import __version__
from assetrecon.config import AssetReconConfig
from assetrecon.errors import (
    InfrastructureError,
    JobStateError,
    NotFoundError,
    ProviderError,
    ReconciliationError,
    ValidationError,
)
from assetrecon.logging import get_logger
from assetrecon.services import open_services
from assetrecon.web.middleware import RequestLoggingMiddleware
from assetrecon.web.routes.catalog import create_catalog_router
from assetrecon.web.routes.health import create_health_router
from assetrecon.web.routes.jobs import create_jobs_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

# Most specific classes first
ERROR_STATUS_CODES: tuple[tuple[type[ReconciliationError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (JobStateError, 409),
    (ProviderError, 502),
    (InfrastructureError, 503),
)


def status_code_for(exc: ReconciliationError) -> int:
    """HTTP status for a domain error (500 when unmapped)."""
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_response(status_code: int, message: str) -> JSONResponse:
    """Build the common error body."""
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": message},
    )


async def reconciliation_error_handler(
    request: Request, exc: ReconciliationError
) -> JSONResponse:
    """Map a domain error to its HTTP status."""
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_error",
        path=request.url.path,
        status_code=status_code,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return error_response(status_code, str(exc))


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request input as 400."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    logger.info("request_invalid", path=request.url.path, errors=details)
    return error_response(400, f"Invalid request: {details}")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report unexpected failures as 500 without leaking internals."""
    logger.error(
        "request_unhandled_error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return error_response(500, "Internal server error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open services on startup and close them on shutdown.

    Services are stored on ``app.state.services`` for dependency injection.
    """
    config: AssetReconConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    async with open_services(config) as services:
        app.state.services = services
        yield
        logger.info("app_shutdown_begin")

    app.state.services = None


def create_app(config: AssetReconConfig | None = None) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional AssetReconConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = AssetReconConfig()

    app = FastAPI(
        title="Assetrecon",
        version=__version__,
        description="Semantic reconciliation of legacy ERP inventory against an asset catalog",
        lifespan=lifespan,
    )

    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(ReconciliationError, reconciliation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(create_health_router())
    app.include_router(create_jobs_router())
    app.include_router(create_catalog_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=__version__,
    )

    return app
