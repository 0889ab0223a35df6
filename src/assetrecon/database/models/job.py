"""Reconciliation job models for Assetrecon.

Defines the ReconciliationJob table and its JobRow children. A job holds
the legacy ERP rows submitted for reconciliation, in their stored order,
together with the suggestions retrieved for each row and the decision
recorded against it.

Suggestions are stored as JSON snapshots of the catalog assets at
retrieval time; they are deliberately not foreign keys.
"""

from __future__ import annotations

import enum
import uuid
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from assetrecon.database.models.base import Base, TimestampMixin


class JobStatus(enum.Enum):
    """Lifecycle status for a reconciliation job.

    States:
        pending: Rows stored, no external calls made yet.
        processing: The row loop is running (or was interrupted).
        completed: The row loop reached the last row.
    """

    pending = "pending"
    processing = "processing"
    completed = "completed"


class RowDecision(enum.Enum):
    """Decision recorded against a legacy row."""

    pending = "pending"
    match = "match"
    no_match = "no_match"


class ReconciliationJob(TimestampMixin, Base):
    """A batch of legacy ERP rows to reconcile against the catalog.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        status: Current lifecycle status.
        total_rows: Number of rows stored with the job.
        processed_rows: Rows that received suggestions in the current run.
        location_filter: Optional location path restricting candidates to a subtree.
        created_at: Row creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "reconciliation_jobs"

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status"),
        default=JobStatus.pending,
        nullable=False,
    )
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_rows: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    location_filter: Mapped[str | None] = mapped_column(Text, nullable=True)


class JobRow(Base):
    """A legacy ERP row belonging to a reconciliation job.

    Attributes:
        id: UUID primary key.
        job_id: Foreign key to the owning job.
        position: Zero-based stored order within the job.
        row_number: Caller-supplied row number, unique within the job.
        sap_description: Raw legacy description.
        sap_location: Raw legacy location string.
        suggestions: Ranked suggestion snapshots, most similar first.
        decision: Decision recorded for the row.
        selected_asset_id: Catalog asset chosen when decision is match.
    """

    __tablename__ = "reconciliation_job_rows"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reconciliation_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    sap_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sap_location: Mapped[str] = mapped_column(Text, nullable=False, default="")
    suggestions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
    )
    decision: Mapped[RowDecision] = mapped_column(
        Enum(RowDecision, name="row_decision"),
        default=RowDecision.pending,
        nullable=False,
    )
    selected_asset_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        UniqueConstraint("job_id", "row_number", name="uq_job_rows_job_row_number"),
        UniqueConstraint("job_id", "position", name="uq_job_rows_job_position"),
    )
