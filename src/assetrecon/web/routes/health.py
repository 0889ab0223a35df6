"""Health check endpoints for Assetrecon.

This module provides health and readiness endpoints for:
- Liveness checks (/health/)
- Readiness checks (/health/ready), which verify database connectivity

Example:
    >>> from fastapi import FastAPI
    >>> from assetrecon.web.routes.health import create_health_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_health_router())
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from assetrecon.logging import get_logger

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Liveness response.

    Attributes:
        status: Always "ok" while the process serves requests
    """

    status: str


class ReadinessResponse(BaseModel):
    """Readiness response.

    Attributes:
        status: "ok" or "unhealthy"
        database: "connected" or "disconnected"
    """

    status: str
    database: str


def create_health_router() -> APIRouter:
    """Create health check router with endpoints.

    Routes:
        GET /health/ - Basic liveness check
        GET /health/ready - Readiness check with database verification
    """
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        """Basic liveness check."""
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(request: Request) -> dict[str, Any]:
        """Readiness check that runs a trivial query.

        Returns:
            Status response with database connectivity information.
        """
        services = getattr(request.app.state, "services", None)
        if services is None:
            return {"status": "unhealthy", "database": "disconnected"}

        try:
            async with services.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("readiness_check_failed", error=str(exc))
            return {"status": "unhealthy", "database": "disconnected"}

        return {"status": "ok", "database": "connected"}

    return router
