"""Route factories for the Assetrecon HTTP API."""

from assetrecon.web.routes.catalog import create_catalog_router
from assetrecon.web.routes.health import create_health_router
from assetrecon.web.routes.jobs import create_jobs_router

__all__ = [
    "create_catalog_router",
    "create_health_router",
    "create_jobs_router",
]
