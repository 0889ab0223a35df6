"""Request and response models for reconciliation jobs.

All models accept and emit camelCase field names (``rowNumber``,
``sapDescription``) and also accept snake_case names on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from assetrecon.database.models.job import (
    JobRow,
    JobStatus,
    ReconciliationJob,
    RowDecision,
)
from assetrecon.intelligence.retrieval import Suggestion


class ApiModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LegacyRow(ApiModel):
    """A legacy ERP row submitted for reconciliation.

    Attributes:
        row_number: Caller-supplied identifier, unique within a job.
        sap_description: Free-text description.
        sap_location: Free-text location.
    """

    row_number: int
    sap_description: str
    sap_location: str = ""

    @field_validator("sap_location", mode="before")
    @classmethod
    def default_location(cls, v: Any) -> Any:
        """Treat a missing location as empty."""
        return "" if v is None else v


class CreateJobRequest(ApiModel):
    """Body of a job creation request."""

    rows: list[LegacyRow] = Field(min_length=1)
    location_filter: str | None = None


class JobCreated(ApiModel):
    """Identifier and size of a newly created job."""

    job_id: UUID
    total_rows: int


class JobHeader(ApiModel):
    """Job metadata without rows."""

    job_id: UUID
    status: JobStatus
    total_rows: int
    processed_rows: int
    location_filter: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, job: ReconciliationJob) -> JobHeader:
        return cls(
            job_id=job.id,
            status=job.status,
            total_rows=job.total_rows,
            processed_rows=job.processed_rows,
            location_filter=job.location_filter,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobRowView(ApiModel):
    """A job row with its suggestions and decision."""

    row_number: int
    sap_description: str
    sap_location: str
    suggestions: list[Suggestion] = Field(default_factory=list)
    decision: RowDecision
    selected_asset_id: UUID | None = None

    @classmethod
    def from_model(cls, row: JobRow) -> JobRowView:
        return cls(
            row_number=row.row_number,
            sap_description=row.sap_description,
            sap_location=row.sap_location,
            suggestions=[Suggestion.model_validate(s) for s in row.suggestions or []],
            decision=row.decision,
            selected_asset_id=row.selected_asset_id,
        )


class JobView(JobHeader):
    """A page of a job's rows, with row counts per decision for the whole job."""

    offset: int
    limit: int
    decision_counts: dict[RowDecision, int] = Field(default_factory=dict)
    rows: list[JobRowView]


class JobExport(JobHeader):
    """A job with all of its rows."""

    rows: list[JobRowView]


class DecisionRequest(ApiModel):
    """Decision recorded against one row.

    ``match`` requires ``selected_asset_id``; other decisions ignore it.
    """

    row_number: int
    decision: RowDecision
    selected_asset_id: UUID | None = None

    @model_validator(mode="after")
    def require_asset_for_match(self) -> DecisionRequest:
        if self.decision == RowDecision.match and self.selected_asset_id is None:
            raise ValueError('selectedAssetId is required when decision is "match"')
        return self


class ActionResult(ApiModel):
    """Acknowledgement of a completed write."""

    success: bool = True


class ProcessingAck(ApiModel):
    """Acknowledgement that a processing run was scheduled."""

    job_id: UUID
    status: JobStatus = JobStatus.processing


class ProcessResult(ApiModel):
    """Outcome of a processing run.

    Attributes:
        job_id: Processed job.
        status: Final job status.
        processed_rows: Rows that received suggestions.
        skipped_rows: Rows with an empty description.
        failed_rows: Rows whose embedding or retrieval failed.
    """

    job_id: UUID
    status: JobStatus
    processed_rows: int
    skipped_rows: int = 0
    failed_rows: int = 0


class AutoReconcileRequest(ApiModel):
    """Body of an automatic reconciliation request."""

    min_score: float | None = Field(default=None, ge=0.0, le=1.0)


class AutoMatch(ApiModel):
    """A match recorded by automatic reconciliation."""

    row_number: int
    asset_id: UUID
    score: float


class AutoReconcileResult(ApiModel):
    """Outcome of automatic reconciliation.

    Attributes:
        job_id: Reconciled job.
        min_score: Threshold that was applied.
        auto_matched: Rows matched by this call.
        total_rows: Rows in the job.
        matches: The recorded matches, in the order they were made.
    """

    job_id: UUID
    min_score: float
    auto_matched: int
    total_rows: int
    matches: list[AutoMatch] = Field(default_factory=list)


class SuggestRequest(ApiModel):
    """Ad-hoc semantic search for one legacy description."""

    sap_description: str = Field(min_length=1)
    location_filter: str | None = None
    limit: int = Field(default=5, ge=1, le=50)


class SuggestResult(ApiModel):
    """Suggestions for an ad-hoc search."""

    query: str
    results: list[Suggestion]
