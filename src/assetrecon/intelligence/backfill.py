"""Resumable embedding backfill for the asset catalog.

The pipeline walks every catalog asset that has neither an embedding nor a
skip reason, in (created_at, id) order, and processes it in batches:

1. Assets whose name is not meaningful are marked ``missing_name`` so later
   scans pass over them.
2. The rest are embedded with one batched provider call.
3. Each vector is written only if the asset is still unembedded.

A batch whose embedding call (after retries) or write fails is counted as
errors and the scan moves past it. Because every write is conditional,
interrupting the pipeline and running it again resumes where it stopped,
and a run over an unchanged catalog writes nothing.

Example usage:
    >>> pipeline = EmbeddingBackfillPipeline(
    ...     session_factory=database.session_factory,
    ...     embedding_service=service,
    ...     config=BackfillConfig(batch_size=200),
    ... )
    >>> summary = await pipeline.run()
    >>> print(summary.processed, summary.skipped, summary.errors)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetrecon.config import BackfillConfig
from assetrecon.database.models.asset import SKIP_REASON_MISSING_NAME
from assetrecon.database.queries.asset import (
    AssetCursor,
    count_assets,
    count_pending_embedding,
    get_assets_pending_embedding,
    mark_embedding_skipped,
    store_embeddings,
)
from assetrecon.errors import ProviderError, ValidationError
from assetrecon.intelligence.embeddings import EmbeddingService
from assetrecon.intelligence.text import build_embedding_text, is_meaningful_value

logger = structlog.get_logger(__name__)


def format_duration(seconds: float) -> str:
    """Format a duration as ``"1h 2m 3s"``, ``"2m 5s"`` or ``"12s"``."""
    total = int(max(seconds, 0))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class BackfillStats:
    """Running counters of a backfill run.

    Attributes:
        total_pending: Assets pending when the run started.
        processed: Embeddings written.
        skipped: Assets marked with a skip reason.
        errors: Assets whose batch failed to embed or store.
        batches: Batches fetched.
        elapsed_seconds: Wall time since the run started.
        dry_run: Whether the run only counted.
    """

    total_pending: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    batches: int = 0
    elapsed_seconds: float = 0.0
    dry_run: bool = False

    @property
    def remaining(self) -> int:
        """Pending assets not yet accounted for."""
        return max(0, self.total_pending - self.processed - self.skipped - self.errors)

    @property
    def rate(self) -> float:
        """Embeddings written per second."""
        return self.processed / max(1.0, self.elapsed_seconds)

    @property
    def eta_seconds(self) -> float | None:
        """Estimated seconds left, or None when unknown or done."""
        if self.remaining == 0 or self.rate == 0:
            return None
        return self.remaining / self.rate


@dataclass
class BackfillPreview:
    """Catalog counts reported before a run.

    Attributes:
        total_assets: All catalog assets.
        pending: Assets with neither embedding nor skip reason.
        batch_size: Effective batch size.
    """

    total_assets: int
    pending: int
    batch_size: int

    @property
    def estimated_batches(self) -> int:
        """Batches a full run would fetch."""
        return -(-self.pending // self.batch_size)


ProgressCallback = Callable[[BackfillStats], None]


class EmbeddingBackfillPipeline:
    """Batch embedding backfill over the catalog.

    Attributes:
        session_factory: Async session factory for database access
        embedding_service: Service producing normalized embeddings
        config: Backfill configuration
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_service: EmbeddingService,
        config: BackfillConfig,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            session_factory: Async session factory
            embedding_service: Embedding service (its retry policy applies
                to each batch call)
            config: Backfill configuration
            on_progress: Called with the running stats after each batch
        """
        self.session_factory = session_factory
        self.embedding_service = embedding_service
        self.config = config
        self.on_progress = on_progress

    def resolve_batch_size(self, batch_size: int | None = None) -> int:
        """Validate and cap a requested batch size.

        Raises:
            ValidationError: If batch_size is below 1.
        """
        size = self.config.batch_size if batch_size is None else batch_size
        if size < 1:
            raise ValidationError(f"batch_size must be at least 1, got {size}")
        if size > self.config.max_batch_size:
            logger.warning(
                "backfill_batch_size_capped",
                requested=size,
                max_batch_size=self.config.max_batch_size,
            )
            size = self.config.max_batch_size
        return size

    async def preview(self, batch_size: int | None = None) -> BackfillPreview:
        """Count the work a run would do, without writing."""
        size = self.resolve_batch_size(batch_size)
        async with self.session_factory() as session:
            total = await count_assets(session)
            pending = await count_pending_embedding(session)
        return BackfillPreview(total_assets=total, pending=pending, batch_size=size)

    async def run(
        self,
        dry_run: bool = False,
        max_batches: int | None = None,
        batch_size: int | None = None,
    ) -> BackfillStats:
        """Run the backfill until no pending assets remain.

        Args:
            dry_run: Only count pending assets; write nothing
            max_batches: Stop after this many batches (None for no limit)
            batch_size: Override the configured batch size

        Returns:
            Final counters of the run
        """
        preview = await self.preview(batch_size)
        stats = BackfillStats(total_pending=preview.pending, dry_run=dry_run)

        logger.info(
            "backfill_started",
            total_assets=preview.total_assets,
            pending=preview.pending,
            batch_size=preview.batch_size,
            dry_run=dry_run,
        )

        if dry_run or preview.pending == 0:
            logger.info("backfill_nothing_to_do", dry_run=dry_run, pending=preview.pending)
            return stats

        start = time.monotonic()
        cursor: AssetCursor | None = None

        while max_batches is None or stats.batches < max_batches:
            async with self.session_factory() as session:
                assets = await get_assets_pending_embedding(
                    session, preview.batch_size, after=cursor
                )
            if not assets:
                break

            cursor = (assets[-1].created_at, assets[-1].id)
            stats.batches += 1

            to_skip = [a.id for a in assets if not is_meaningful_value(a.name)]
            to_embed = [
                (a.id, build_embedding_text(a))
                for a in assets
                if is_meaningful_value(a.name)
            ]

            if to_skip:
                async with self.session_factory() as session:
                    stats.skipped += await mark_embedding_skipped(
                        session,
                        to_skip,
                        SKIP_REASON_MISSING_NAME,
                        self.config.embedding_version,
                    )

            if to_embed:
                await self._embed_batch(to_embed, stats)

            stats.elapsed_seconds = time.monotonic() - start
            self._report(stats)

        stats.elapsed_seconds = time.monotonic() - start
        logger.info(
            "backfill_completed",
            processed=stats.processed,
            skipped=stats.skipped,
            errors=stats.errors,
            batches=stats.batches,
            elapsed=format_duration(stats.elapsed_seconds),
        )
        return stats

    async def _embed_batch(
        self,
        to_embed: list[tuple[UUID, str]],
        stats: BackfillStats,
    ) -> None:
        texts = [embedding_text for _, embedding_text in to_embed]
        try:
            vectors = await self.embedding_service.generate_batch(texts)
            entries = [
                (asset_id, embedding_text, vector)
                for (asset_id, embedding_text), vector in zip(to_embed, vectors)
            ]
            async with self.session_factory() as session:
                stored = await store_embeddings(
                    session, entries, self.config.embedding_version
                )
        except Exception as e:
            stats.errors += len(to_embed)
            log = logger.error if isinstance(e, ProviderError) else logger.exception
            log(
                "backfill_batch_failed",
                batch=stats.batches,
                batch_size=len(to_embed),
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        stats.processed += stored

    def _report(self, stats: BackfillStats) -> None:
        eta = stats.eta_seconds
        logger.info(
            "backfill_progress",
            batch=stats.batches,
            processed=stats.processed,
            total_pending=stats.total_pending,
            errors=stats.errors,
            skipped=stats.skipped,
            rate=round(stats.rate, 1),
            eta=format_duration(eta) if eta is not None else None,
        )
        if self.on_progress is not None:
            self.on_progress(stats)
