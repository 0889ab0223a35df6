"""SQLAlchemy ORM models for Assetrecon.

This module defines the database schema: the managed asset catalog and the
reconciliation jobs with their legacy rows.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from assetrecon.database.models.asset import (
    EMBEDDING_DIMENSIONS,
    SKIP_REASON_MISSING_NAME,
    CatalogAsset,
)
from assetrecon.database.models.base import Base, TimestampMixin, utcnow
from assetrecon.database.models.job import (
    JobRow,
    JobStatus,
    ReconciliationJob,
    RowDecision,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "utcnow",
    "CatalogAsset",
    "EMBEDDING_DIMENSIONS",
    "SKIP_REASON_MISSING_NAME",
    "ReconciliationJob",
    "JobRow",
    "JobStatus",
    "RowDecision",
]
