"""Database layer for Assetrecon.

This module handles database connections, session management, and provides
the SQLAlchemy async engine configuration for PostgreSQL with pgvector.

Public API:
    Database: Explicitly connected database handle.
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from assetrecon.database.connection import Database, get_engine, get_session_factory
from assetrecon.database.models import (
    Base,
    CatalogAsset,
    JobRow,
    JobStatus,
    ReconciliationJob,
    RowDecision,
    TimestampMixin,
)

__all__ = [
    "Database",
    "get_engine",
    "get_session_factory",
    "Base",
    "TimestampMixin",
    "CatalogAsset",
    "ReconciliationJob",
    "JobRow",
    "JobStatus",
    "RowDecision",
]
