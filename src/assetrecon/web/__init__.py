"""HTTP API for Assetrecon.

This module provides the FastAPI application exposing reconciliation jobs,
catalog search and maintenance endpoints, and health checks.
"""

from __future__ import annotations

from assetrecon.web.app import create_app
from assetrecon.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
