"""Reconciliation job query functions for Assetrecon.

Provides async functions for creating, reading, progressing and deleting
reconciliation jobs and their legacy rows. Row-level writes are scoped to a
single (job_id, row_number) pair.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assetrecon.database.models.job import (
    JobRow,
    JobStatus,
    ReconciliationJob,
    RowDecision,
)

logger = structlog.get_logger(__name__)


async def create_job(
    session: AsyncSession,
    rows: Sequence[Mapping[str, Any]],
    location_filter: str | None = None,
) -> ReconciliationJob:
    """Create a pending job and store its rows in the given order.

    Args:
        session: Active async database session.
        rows: Row mappings with ``row_number``, ``sap_description`` and
            ``sap_location`` keys.
        location_filter: Optional location path restricting candidates.

    Returns:
        The newly created ReconciliationJob instance.
    """
    job = ReconciliationJob(
        status=JobStatus.pending,
        total_rows=len(rows),
        processed_rows=0,
        location_filter=location_filter,
    )
    session.add(job)
    await session.flush()

    session.add_all(
        JobRow(
            job_id=job.id,
            position=position,
            row_number=row["row_number"],
            sap_description=row.get("sap_description") or "",
            sap_location=row.get("sap_location") or "",
            suggestions=[],
            decision=RowDecision.pending,
        )
        for position, row in enumerate(rows)
    )
    await session.commit()

    logger.info(
        "job_created",
        job_id=str(job.id),
        total_rows=job.total_rows,
        location_filter=location_filter,
    )
    return job


async def get_job(
    session: AsyncSession,
    job_id: UUID,
) -> ReconciliationJob | None:
    """Retrieve a job header by ID.

    Args:
        session: Active async database session.
        job_id: UUID of the job to retrieve.

    Returns:
        The ReconciliationJob instance if found, None otherwise.
    """
    stmt = select(ReconciliationJob).where(ReconciliationJob.id == job_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_job_rows(
    session: AsyncSession,
    job_id: UUID,
    offset: int = 0,
    limit: int | None = None,
) -> list[JobRow]:
    """Retrieve a job's rows in stored order.

    Args:
        session: Active async database session.
        job_id: UUID of the owning job.
        offset: Number of rows to skip.
        limit: Maximum number of rows to return (None for all).

    Returns:
        List of JobRow instances ordered by position.
    """
    stmt = (
        select(JobRow)
        .where(JobRow.job_id == job_id)
        .order_by(JobRow.position.asc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_job_row(
    session: AsyncSession,
    job_id: UUID,
    row_number: int,
) -> JobRow | None:
    """Retrieve a single row by its caller-supplied row number."""
    stmt = (
        select(JobRow)
        .where(JobRow.job_id == job_id)
        .where(JobRow.row_number == row_number)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_jobs(
    session: AsyncSession,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
) -> list[ReconciliationJob]:
    """List job headers, newest first.

    Args:
        session: Active async database session.
        from_date: Inclusive lower bound on created_at.
        to_date: Inclusive upper bound on created_at.

    Returns:
        List of ReconciliationJob instances ordered by created_at descending.
    """
    stmt = select(ReconciliationJob)

    if from_date is not None:
        stmt = stmt.where(ReconciliationJob.created_at >= from_date)
    if to_date is not None:
        stmt = stmt.where(ReconciliationJob.created_at <= to_date)

    stmt = stmt.order_by(ReconciliationJob.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def begin_processing(
    session: AsyncSession,
    job_id: UUID,
) -> bool:
    """Move a non-completed job to processing and restart its progress.

    Args:
        session: Active async database session.
        job_id: UUID of the job to start.

    Returns:
        True if the job was moved, False if it is missing or completed.
    """
    stmt = (
        update(ReconciliationJob)
        .where(ReconciliationJob.id == job_id)
        .where(ReconciliationJob.status != JobStatus.completed)
        .values(status=JobStatus.processing, processed_rows=0)
    )
    result = await session.execute(stmt)
    await session.commit()

    started = bool(result.rowcount)
    if started:
        logger.info("job_processing_started", job_id=str(job_id))
    return started


async def complete_job(
    session: AsyncSession,
    job_id: UUID,
) -> None:
    """Mark a job as completed."""
    stmt = (
        update(ReconciliationJob)
        .where(ReconciliationJob.id == job_id)
        .values(status=JobStatus.completed)
    )
    await session.execute(stmt)
    await session.commit()

    logger.info("job_completed", job_id=str(job_id))


async def increment_processed_rows(
    session: AsyncSession,
    job_id: UUID,
) -> bool:
    """Advance a job's progress counter by one, never past total_rows.

    Args:
        session: Active async database session.
        job_id: UUID of the job to advance.

    Returns:
        True if the counter moved.
    """
    stmt = (
        update(ReconciliationJob)
        .where(ReconciliationJob.id == job_id)
        .where(ReconciliationJob.processed_rows < ReconciliationJob.total_rows)
        .values(processed_rows=ReconciliationJob.processed_rows + 1)
    )
    result = await session.execute(stmt)
    await session.commit()
    return bool(result.rowcount)


async def store_row_suggestions(
    session: AsyncSession,
    job_id: UUID,
    row_number: int,
    suggestions: list[dict[str, Any]],
) -> bool:
    """Replace a row's suggestion list.

    Args:
        session: Active async database session.
        job_id: UUID of the owning job.
        row_number: Row to update.
        suggestions: JSON-ready suggestion snapshots, best first.

    Returns:
        True if the row exists and was updated.
    """
    stmt = (
        update(JobRow)
        .where(JobRow.job_id == job_id)
        .where(JobRow.row_number == row_number)
        .values(suggestions=suggestions)
    )
    result = await session.execute(stmt)
    await session.commit()
    return bool(result.rowcount)


async def set_row_decision(
    session: AsyncSession,
    job_id: UUID,
    row_number: int,
    decision: RowDecision,
    selected_asset_id: UUID | None = None,
    clear_suggestions: bool = False,
) -> bool:
    """Record a decision on a single row.

    Args:
        session: Active async database session.
        job_id: UUID of the owning job.
        row_number: Row to update.
        decision: Decision to record.
        selected_asset_id: Chosen asset; stored only for ``match``.
        clear_suggestions: Also empty the row's suggestion list.

    Returns:
        True if the row exists and was updated.
    """
    values: dict[str, Any] = {
        "decision": decision,
        "selected_asset_id": (
            selected_asset_id if decision == RowDecision.match else None
        ),
    }
    if clear_suggestions:
        values["suggestions"] = []

    stmt = (
        update(JobRow)
        .where(JobRow.job_id == job_id)
        .where(JobRow.row_number == row_number)
        .values(**values)
    )
    result = await session.execute(stmt)
    await session.commit()

    updated = bool(result.rowcount)
    if updated:
        logger.info(
            "row_decision_recorded",
            job_id=str(job_id),
            row_number=row_number,
            decision=decision.value,
            selected_asset_id=str(selected_asset_id) if selected_asset_id else None,
        )
    return updated


async def get_matched_asset_ids(
    session: AsyncSession,
    job_id: UUID,
) -> set[UUID]:
    """Return the assets already selected by ``match`` rows of a job."""
    stmt = (
        select(JobRow.selected_asset_id)
        .where(JobRow.job_id == job_id)
        .where(JobRow.decision == RowDecision.match)
        .where(JobRow.selected_asset_id.is_not(None))
    )
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def count_rows_by_decision(
    session: AsyncSession,
    job_id: UUID,
) -> dict[RowDecision, int]:
    """Count a job's rows per decision value."""
    stmt = (
        select(JobRow.decision, func.count())
        .where(JobRow.job_id == job_id)
        .group_by(JobRow.decision)
    )
    result = await session.execute(stmt)
    counts = {decision: 0 for decision in RowDecision}
    for decision, count in result.all():
        counts[decision] = int(count)
    return counts


async def delete_job(
    session: AsyncSession,
    job_id: UUID,
) -> bool:
    """Delete a job and all of its rows.

    Args:
        session: Active async database session.
        job_id: UUID of the job to delete.

    Returns:
        True if the job existed and was deleted.
    """
    await session.execute(delete(JobRow).where(JobRow.job_id == job_id))
    result = await session.execute(
        delete(ReconciliationJob).where(ReconciliationJob.id == job_id)
    )
    await session.commit()

    deleted = bool(result.rowcount)
    if deleted:
        logger.info("job_deleted", job_id=str(job_id))
    return deleted
