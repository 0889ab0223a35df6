"""Service wiring for Assetrecon.

Builds the object graph shared by the HTTP API and the CLI: database handle,
embedding client, retriever, job engine and backfill pipeline. Everything is
constructed from an ``AssetReconConfig`` and torn down in reverse order.

Example usage:
    >>> config = load_config()
    >>> async with open_services(config) as services:
    ...     await services.engine.process_job(job_id)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetrecon.config import AssetReconConfig
from assetrecon.database.connection import Database
from assetrecon.intelligence.backfill import EmbeddingBackfillPipeline, ProgressCallback
from assetrecon.intelligence.embeddings import (
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingClient,
)
from assetrecon.intelligence.retrieval import (
    CandidateRetriever,
    PgVectorSearchEngine,
    VectorSearchEngine,
)
from assetrecon.reconciliation.engine import ReconciliationJobEngine

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Application services built from one configuration.

    Attributes:
        config: Resolved configuration
        session_factory: Async session factory
        embedding_service: Embedding service with the job retry policy
        retriever: Candidate retriever
        engine: Reconciliation job engine
        backfill: Embedding backfill pipeline (with its own retry policy)
        database: Database handle, when the services own the connection
    """

    config: AssetReconConfig
    session_factory: async_sessionmaker[AsyncSession]
    embedding_service: EmbeddingService
    retriever: CandidateRetriever
    engine: ReconciliationJobEngine
    backfill: EmbeddingBackfillPipeline
    database: Database | None = None


def build_services(
    config: AssetReconConfig,
    session_factory: async_sessionmaker[AsyncSession],
    provider: EmbeddingProvider,
    search_engine: VectorSearchEngine | None = None,
    database: Database | None = None,
    on_backfill_progress: ProgressCallback | None = None,
) -> Services:
    """Construct the service graph over an existing session factory.

    Args:
        config: Resolved configuration
        session_factory: Async session factory
        provider: Embedding provider
        search_engine: Vector search engine (defaults to pgvector)
        database: Owning database handle, if any
        on_backfill_progress: Progress callback for the backfill pipeline

    Returns:
        Wired Services instance
    """
    embedding_service = EmbeddingService(provider, config.job.retry)
    retriever = CandidateRetriever(
        search_engine or PgVectorSearchEngine(session_factory),
        config.retrieval,
    )
    engine = ReconciliationJobEngine(
        session_factory=session_factory,
        embedding_service=embedding_service,
        retriever=retriever,
        config=config.job,
    )
    backfill = EmbeddingBackfillPipeline(
        session_factory=session_factory,
        embedding_service=EmbeddingService(provider, config.backfill.retry),
        config=config.backfill,
        on_progress=on_backfill_progress,
    )
    return Services(
        config=config,
        session_factory=session_factory,
        embedding_service=embedding_service,
        retriever=retriever,
        engine=engine,
        backfill=backfill,
        database=database,
    )


@asynccontextmanager
async def open_services(
    config: AssetReconConfig,
    provider: EmbeddingProvider | None = None,
    on_backfill_progress: ProgressCallback | None = None,
) -> AsyncIterator[Services]:
    """Connect to the database and the embedding provider, yield services.

    On exit, in-flight job runs are awaited before the embedding client and
    the database are closed.

    Args:
        config: Resolved configuration
        provider: Embedding provider to use instead of the OpenAI client
        on_backfill_progress: Progress callback for the backfill pipeline

    Yields:
        Wired Services instance

    Raises:
        InfrastructureError: If the database cannot be reached
        ValueError: If no embedding API key is configured
    """
    database = Database(config.database)

    async with AsyncExitStack() as stack:
        await database.connect()
        stack.push_async_callback(database.disconnect)

        if provider is None:
            provider = await stack.enter_async_context(
                OpenAIEmbeddingClient(config.embedding)
            )

        services = build_services(
            config,
            database.session_factory,
            provider,
            database=database,
            on_backfill_progress=on_backfill_progress,
        )
        logger.info("services_started")
        try:
            yield services
        finally:
            await services.engine.drain()
            logger.info("services_stopped")
