"""FastAPI dependencies for Assetrecon routes."""

from __future__ import annotations

from fastapi import Request

from assetrecon.errors import NotConnectedError
from assetrecon.services import Services


def get_services(request: Request) -> Services:
    """Retrieve the service graph stored on app.state by the lifespan.

    Raises:
        NotConnectedError: If the application has not started its services.
    """
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise NotConnectedError()
    return services
