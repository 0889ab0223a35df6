"""Reconciliation job engine.

The engine owns the job lifecycle: it stores legacy rows, runs the per-row
retrieval pipeline (normalize, embed, retrieve, store suggestions), records
human or automatic decisions, and flags confirmed catalog assets as
reconciled.

Processing runs as a background asyncio task per job. Rows are handled
strictly one after another; a failing row is logged and counted, and the
run moves on. Re-processing a job that is not completed starts again from
the first row.

Recording a ``match`` writes the row decision and then flags the catalog
asset. The two writes are not atomic: if the second fails, the row keeps its
decision and the asset stays unflagged until the decision is recorded again.

Example usage:
    >>> engine = ReconciliationJobEngine(
    ...     session_factory=database.session_factory,
    ...     embedding_service=service,
    ...     retriever=retriever,
    ...     config=JobConfig(),
    ... )
    >>> created = await engine.create_job(rows, location_filter="Site A")
    >>> result = await engine.process_job(created.job_id)
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time, timezone
from typing import Any
from uuid import UUID

import pydantic
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetrecon.config import JobConfig
from assetrecon.database.models.job import JobStatus, ReconciliationJob, RowDecision
from assetrecon.database.queries import asset as asset_queries
from assetrecon.database.queries import job as job_queries
from assetrecon.errors import (
    JobStateError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from assetrecon.intelligence.embeddings import EmbeddingService
from assetrecon.intelligence.location import build_location_filter
from assetrecon.intelligence.retrieval import CandidateRetriever
from assetrecon.intelligence.text import normalize_text
from assetrecon.logging import bind_job_context
from assetrecon.reconciliation.matcher import RowCandidates, plan_auto_matches
from assetrecon.reconciliation.schemas import (
    ActionResult,
    AutoMatch,
    AutoReconcileResult,
    JobCreated,
    JobExport,
    JobHeader,
    JobRowView,
    JobView,
    LegacyRow,
    ProcessingAck,
    ProcessResult,
    SuggestResult,
)
from assetrecon.reconciliation.state_machine import ensure_transition

logger = structlog.get_logger(__name__)


def _as_utc(value: date | datetime) -> datetime:
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _end_of_day(value: date | datetime) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def _parse_decision(decision: RowDecision | str) -> RowDecision:
    if isinstance(decision, RowDecision):
        return decision
    try:
        return RowDecision(decision)
    except ValueError:
        valid = ", ".join(d.value for d in RowDecision)
        raise ValidationError(f"decision must be one of: {valid}") from None


class ReconciliationJobEngine:
    """Creates, processes and resolves reconciliation jobs.

    Attributes:
        session_factory: Async session factory for database access
        embedding_service: Embedding service used for legacy descriptions
        retriever: Candidate retriever over the catalog
        config: Job configuration
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_service: EmbeddingService,
        retriever: CandidateRetriever,
        config: JobConfig,
    ) -> None:
        self.session_factory = session_factory
        self.embedding_service = embedding_service
        self.retriever = retriever
        self.config = config
        self._tasks: dict[UUID, asyncio.Task[ProcessResult | None]] = {}

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    async def create_job(
        self,
        rows: Sequence[LegacyRow | Mapping[str, Any]],
        location_filter: str | None = None,
    ) -> JobCreated:
        """Store a new pending job. No external calls are made.

        Args:
            rows: Legacy rows, as models or camelCase/snake_case mappings
            location_filter: Optional location path restricting candidates

        Returns:
            Identifier and row count of the new job

        Raises:
            ValidationError: If rows are empty, malformed, or repeat a row number
        """
        if not rows:
            raise ValidationError("rows must be a non-empty list")

        try:
            parsed = [
                row if isinstance(row, LegacyRow) else LegacyRow.model_validate(row)
                for row in rows
            ]
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid row: {e}") from e

        seen: set[int] = set()
        for row in parsed:
            if row.row_number in seen:
                raise ValidationError(f"Duplicate rowNumber {row.row_number}")
            seen.add(row.row_number)

        location = (location_filter or "").strip() or None

        async with self.session_factory() as session:
            job = await job_queries.create_job(
                session,
                [row.model_dump() for row in parsed],
                location_filter=location,
            )

        return JobCreated(job_id=job.id, total_rows=job.total_rows)

    async def _require_job(
        self,
        session: AsyncSession,
        job_id: UUID,
    ) -> ReconciliationJob:
        job = await job_queries.get_job(session, job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    async def get_job(
        self,
        job_id: UUID,
        offset: int = 0,
        limit: int | None = None,
    ) -> JobView:
        """Return a job header with one page of rows.

        Args:
            job_id: Job to read
            offset: Rows to skip (negative values count as 0)
            limit: Page size, clamped to 1..max_page_size

        Raises:
            NotFoundError: If the job does not exist
        """
        offset = max(0, offset)
        page = self.config.default_page_size if limit is None else limit
        page = max(1, min(self.config.max_page_size, page))

        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
            rows = await job_queries.get_job_rows(session, job_id, offset, page)
            counts = await job_queries.count_rows_by_decision(session, job_id)

        header = JobHeader.from_model(job)
        return JobView(
            **header.model_dump(),
            offset=offset,
            limit=page,
            decision_counts=counts,
            rows=[JobRowView.from_model(row) for row in rows],
        )

    async def export_job(self, job_id: UUID) -> JobExport:
        """Return a job with all of its rows.

        Raises:
            NotFoundError: If the job does not exist
        """
        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
            rows = await job_queries.get_job_rows(session, job_id)

        header = JobHeader.from_model(job)
        return JobExport(
            **header.model_dump(),
            rows=[JobRowView.from_model(row) for row in rows],
        )

    async def list_jobs(
        self,
        from_date: date | datetime | None = None,
        to_date: date | datetime | None = None,
    ) -> list[JobHeader]:
        """List jobs created within a date range, newest first.

        Args:
            from_date: Inclusive start; a bare date means its first instant
            to_date: Inclusive end; always extended to the end of that day

        Returns:
            Job headers ordered by creation time, descending
        """
        lower = _as_utc(from_date) if from_date is not None else None
        upper = _end_of_day(_as_utc(to_date)) if to_date is not None else None

        async with self.session_factory() as session:
            jobs = await job_queries.list_jobs(session, lower, upper)
        return [JobHeader.from_model(job) for job in jobs]

    async def delete_job(self, job_id: UUID) -> ActionResult:
        """Delete a job and its rows.

        Raises:
            NotFoundError: If the job does not exist
        """
        async with self.session_factory() as session:
            deleted = await job_queries.delete_job(session, job_id)
        if not deleted:
            raise NotFoundError("job", job_id)
        return ActionResult()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def start_processing(self, job_id: UUID) -> ProcessingAck:
        """Schedule a processing run in the background.

        Args:
            job_id: Job to process

        Returns:
            Acknowledgement; progress is visible through get_job()

        Raises:
            NotFoundError: If the job does not exist
            JobStateError: If the job is already completed
        """
        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
        ensure_transition(job.status, JobStatus.processing, str(job_id))

        task = asyncio.create_task(self._run_in_background(job_id))
        self._tasks[job_id] = task
        task.add_done_callback(lambda done: self._forget_task(job_id, done))

        logger.info("job_processing_scheduled", job_id=str(job_id))
        return ProcessingAck(job_id=job_id)

    def _forget_task(self, job_id: UUID, task: asyncio.Task[ProcessResult | None]) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    async def _run_in_background(self, job_id: UUID) -> ProcessResult | None:
        try:
            return await self.process_job(job_id)
        except ReconciliationError as e:
            logger.error(
                "job_processing_failed",
                job_id=str(job_id),
                error=str(e),
                error_type=type(e).__name__,
            )
        except Exception:
            logger.exception("job_processing_crashed", job_id=str(job_id))
        return None

    async def wait_for_processing(self, job_id: UUID) -> ProcessResult | None:
        """Wait for a background run of the job, if one is in flight."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await task

    async def drain(self) -> None:
        """Wait for every in-flight background run to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info("job_engine_draining", running=len(tasks))
            await asyncio.gather(*tasks)

    async def process_job(self, job_id: UUID) -> ProcessResult:
        """Retrieve suggestions for every row of a job.

        The job moves to ``processing`` with its progress counter reset to
        zero, then each row in stored order is normalized, embedded and
        matched against the catalog (honouring the job's location filter and
        excluding reconciled assets). The job ends ``completed`` even when
        some rows failed.

        Args:
            job_id: Job to process

        Returns:
            Counts of processed, skipped and failed rows

        Raises:
            NotFoundError: If the job does not exist
            JobStateError: If the job is already completed
        """
        with bind_job_context(str(job_id)):
            async with self.session_factory() as session:
                job = await self._require_job(session, job_id)
                ensure_transition(job.status, JobStatus.processing, str(job_id))
                if not await job_queries.begin_processing(session, job_id):
                    raise JobStateError(f"Job {job_id} can no longer be processed")
                rows = await job_queries.get_job_rows(session, job_id)

            location_filter = build_location_filter(job.location_filter)
            processed = skipped = failed = 0

            for row in rows:
                text = normalize_text(row.sap_description)
                if not text:
                    skipped += 1
                    logger.debug("job_row_skipped", row_number=row.row_number)
                    continue

                try:
                    vector = await self.embedding_service.generate(text)
                    suggestions = await self.retriever.retrieve(
                        vector,
                        location_filter=location_filter,
                        exclude_reconciled=True,
                    )
                    async with self.session_factory() as session:
                        await job_queries.store_row_suggestions(
                            session,
                            job_id,
                            row.row_number,
                            [s.to_document() for s in suggestions],
                        )
                        await job_queries.increment_processed_rows(session, job_id)
                except Exception as e:
                    failed += 1
                    log = logger.error if isinstance(e, ReconciliationError) else logger.exception
                    log(
                        "job_row_failed",
                        row_number=row.row_number,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue

                processed += 1
                logger.debug(
                    "job_row_processed",
                    row_number=row.row_number,
                    suggestions=len(suggestions),
                )

            async with self.session_factory() as session:
                await job_queries.complete_job(session, job_id)

            logger.info(
                "job_processing_finished",
                processed=processed,
                skipped=skipped,
                failed=failed,
                total_rows=len(rows),
            )

        return ProcessResult(
            job_id=job_id,
            status=JobStatus.completed,
            processed_rows=processed,
            skipped_rows=skipped,
            failed_rows=failed,
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def set_decision(
        self,
        job_id: UUID,
        row_number: int,
        decision: RowDecision | str,
        selected_asset_id: UUID | None = None,
    ) -> ActionResult:
        """Record a decision on one row.

        ``match`` stores the selected asset and flags it reconciled (once;
        an asset already flagged keeps its original back-reference).
        ``no_match`` clears the row's suggestions. ``pending`` resets the row.

        Args:
            job_id: Owning job
            row_number: Row to decide
            decision: Decision value
            selected_asset_id: Chosen catalog asset, required for ``match``

        Raises:
            ValidationError: If the decision is unknown or a match has no asset
            NotFoundError: If the job, row or selected asset does not exist
        """
        value = _parse_decision(decision)
        if value == RowDecision.match and selected_asset_id is None:
            raise ValidationError('selectedAssetId is required when decision is "match"')

        async with self.session_factory() as session:
            await self._require_job(session, job_id)
            row = await job_queries.get_job_row(session, job_id, row_number)
            if row is None:
                raise NotFoundError("row", row_number)

            if value == RowDecision.match:
                asset = await asset_queries.get_asset(session, selected_asset_id)
                if asset is None:
                    raise NotFoundError("asset", selected_asset_id)
                suggested = {s.get("assetId") for s in row.suggestions or []}
                if str(selected_asset_id) not in suggested:
                    logger.info(
                        "decision_asset_not_suggested",
                        job_id=str(job_id),
                        row_number=row_number,
                        asset_id=str(selected_asset_id),
                    )

            await job_queries.set_row_decision(
                session,
                job_id,
                row_number,
                value,
                selected_asset_id,
                clear_suggestions=value == RowDecision.no_match,
            )

            if value == RowDecision.match:
                await asset_queries.mark_reconciled(
                    session, selected_asset_id, job_id, row_number
                )

        return ActionResult()

    async def auto_reconcile(
        self,
        job_id: UUID,
        min_score: float | None = None,
    ) -> AutoReconcileResult:
        """Match pending rows to their best unassigned suggestion.

        Rows are visited from the highest best score down. Assets already
        matched in this job, or flagged reconciled anywhere, are never
        assigned, and no asset is assigned twice.

        Args:
            job_id: Job to reconcile
            min_score: Minimum suggestion score (defaults to the configured one)

        Returns:
            The matches that were recorded

        Raises:
            ValidationError: If min_score is outside [0, 1]
            NotFoundError: If the job does not exist
        """
        threshold = self.config.auto_match_min_score if min_score is None else min_score
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(f"min_score must be between 0 and 1, got {threshold}")

        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
            rows = await job_queries.get_job_rows(session, job_id)
            assigned = {str(a) for a in await job_queries.get_matched_asset_ids(session, job_id)}

            pending = [
                RowCandidates(row.row_number, row.suggestions)
                for row in rows
                if row.decision == RowDecision.pending and row.suggestions
            ]
            candidate_ids = {
                UUID(s["assetId"])
                for row in pending
                for s in row.suggestions
                if float(s.get("score", 0.0)) >= threshold
            }
            reconciled = await asset_queries.get_reconciled_ids(session, candidate_ids)

        plan = plan_auto_matches(
            pending,
            threshold,
            already_assigned=assigned | {str(a) for a in reconciled},
        )

        matches: list[AutoMatch] = []
        for planned in plan:
            asset_id = UUID(planned.asset_id)
            await self.set_decision(job_id, planned.row_number, RowDecision.match, asset_id)
            matches.append(
                AutoMatch(
                    row_number=planned.row_number,
                    asset_id=asset_id,
                    score=planned.score,
                )
            )

        logger.info(
            "job_auto_reconciled",
            job_id=str(job_id),
            min_score=threshold,
            candidates=len(pending),
            matched=len(matches),
        )
        return AutoReconcileResult(
            job_id=job_id,
            min_score=threshold,
            auto_matched=len(matches),
            total_rows=job.total_rows,
            matches=matches,
        )

    # ------------------------------------------------------------------
    # Ad-hoc search
    # ------------------------------------------------------------------

    async def suggest(
        self,
        sap_description: str,
        location_filter: str | None = None,
        limit: int | None = None,
    ) -> SuggestResult:
        """Suggest catalog assets for a single legacy description.

        Args:
            sap_description: Free-text description
            location_filter: Optional location path restricting candidates
            limit: Suggestions wanted (defaults to the configured top_k)

        Raises:
            ValidationError: If the description is blank or limit is out of range
        """
        query = normalize_text(sap_description)
        if not query:
            raise ValidationError("sapDescription is required and may not be blank")

        vector = await self.embedding_service.generate(query)
        results = await self.retriever.retrieve(
            vector,
            location_filter=build_location_filter(location_filter),
            exclude_reconciled=True,
            top_k=limit,
        )
        return SuggestResult(query=query, results=results)
