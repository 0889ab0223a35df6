"""Reconciliation job REST API endpoints for Assetrecon.

Provides FastAPI routes for creating jobs from legacy rows, scheduling their
processing, paging through suggestions, recording decisions, automatic
reconciliation, export and deletion. Domain errors raised by the engine are
mapped to HTTP statuses by the application's exception handlers.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, Depends, Query

from assetrecon.reconciliation.schemas import (
    ActionResult,
    AutoReconcileRequest,
    AutoReconcileResult,
    CreateJobRequest,
    DecisionRequest,
    JobCreated,
    JobExport,
    JobHeader,
    JobView,
    ProcessingAck,
)
from assetrecon.services import Services
from assetrecon.web.dependencies import get_services

logger = structlog.get_logger(__name__)


def create_jobs_router() -> APIRouter:
    """Create the reconciliation jobs router.

    Routes:
        POST /reconciliation/jobs - Create a job
        GET /reconciliation/jobs - List jobs by creation date
        GET /reconciliation/jobs/{job_id} - Job header and a page of rows
        POST /reconciliation/jobs/{job_id}/process - Schedule processing
        POST /reconciliation/jobs/{job_id}/decision - Record a row decision
        POST /reconciliation/jobs/{job_id}/auto-reconcile - Automatic matching
        GET /reconciliation/jobs/{job_id}/export - Job with all rows
        DELETE /reconciliation/jobs/{job_id} - Delete a job
    """
    router = APIRouter(prefix="/reconciliation/jobs", tags=["reconciliation"])

    @router.post("", response_model=JobCreated, status_code=201)
    async def create_job_endpoint(
        body: CreateJobRequest,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> JobCreated:
        """Store legacy rows as a new pending job."""
        return await services.engine.create_job(body.rows, body.location_filter)

    @router.get("", response_model=list[JobHeader])
    async def list_jobs_endpoint(
        from_date: date | None = Query(default=None, alias="fromDate"),
        to_date: date | None = Query(default=None, alias="toDate"),
        services: Services = Depends(get_services),  # noqa: B008
    ) -> list[JobHeader]:
        """List jobs created between two dates (both inclusive), newest first."""
        return await services.engine.list_jobs(from_date, to_date)

    @router.get("/{job_id}", response_model=JobView)
    async def get_job_endpoint(
        job_id: UUID,
        offset: int = Query(default=0),
        limit: int | None = Query(default=None),
        services: Services = Depends(get_services),  # noqa: B008
    ) -> JobView:
        """Return a job with one page of rows (limit clamped to 1..100)."""
        return await services.engine.get_job(job_id, offset, limit)

    @router.post("/{job_id}/process", response_model=ProcessingAck, status_code=202)
    async def process_job_endpoint(
        job_id: UUID,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> ProcessingAck:
        """Schedule processing in the background; poll the job for progress."""
        return await services.engine.start_processing(job_id)

    @router.post("/{job_id}/decision", response_model=ActionResult)
    async def decision_endpoint(
        job_id: UUID,
        body: DecisionRequest,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> ActionResult:
        """Record a decision on one row."""
        return await services.engine.set_decision(
            job_id,
            body.row_number,
            body.decision,
            body.selected_asset_id,
        )

    @router.post("/{job_id}/auto-reconcile", response_model=AutoReconcileResult)
    async def auto_reconcile_endpoint(
        job_id: UUID,
        body: AutoReconcileRequest | None = Body(default=None),  # noqa: B008
        services: Services = Depends(get_services),  # noqa: B008
    ) -> AutoReconcileResult:
        """Match pending rows whose best free suggestion clears the threshold."""
        min_score = body.min_score if body is not None else None
        return await services.engine.auto_reconcile(job_id, min_score)

    @router.get("/{job_id}/export", response_model=JobExport)
    async def export_job_endpoint(
        job_id: UUID,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> JobExport:
        """Return a job with all of its rows."""
        return await services.engine.export_job(job_id)

    @router.delete("/{job_id}", response_model=ActionResult)
    async def delete_job_endpoint(
        job_id: UUID,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> ActionResult:
        """Delete a job and its rows."""
        result = await services.engine.delete_job(job_id)
        logger.info("job_deleted_via_api", job_id=str(job_id))
        return result

    return router
