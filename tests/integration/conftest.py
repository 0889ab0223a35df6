"""Pytest fixtures for integration tests.

Provides an in-memory SQLite database (via aiosqlite) with the full schema,
a deterministic embedding provider, and a brute-force cosine search engine
standing in for pgvector. While production uses PostgreSQL with pgvector,
these fixtures exercise the query functions, the backfill pipeline, the job
engine and the HTTP API end to end.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import AsyncGenerator, Sequence

import numpy as np
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from assetrecon.config import AssetReconConfig, RetryConfig
from assetrecon.database.models import Base, CatalogAsset
from assetrecon.database.models.asset import EMBEDDING_DIMENSIONS
from assetrecon.errors import FatalProviderError
from assetrecon.intelligence.retrieval import SearchHit
from assetrecon.services import Services, build_services
from assetrecon.web.app import create_app

_TOKEN = re.compile(r"\w+")


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embeddings.

    Each lowercased token is hashed onto one of the vector's dimensions, so
    texts sharing words are close in cosine space. Texts listed in
    ``failing_texts`` make the whole call fail fatally.
    """

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.failing_texts: set[str] = set()
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        vector = np.zeros(self.dimensions, dtype=np.float32)
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimensions] += 1.0
        return vector.tolist()

    def _check(self, texts: Sequence[str]) -> None:
        self.calls.append(list(texts))
        failing = self.failing_texts.intersection(texts)
        if failing:
            raise FatalProviderError(f"Refused input: {sorted(failing)[0]}", status_code=400)

    async def embed(self, text: str) -> list[float]:
        self._check([text])
        return self.vector_for(text)

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self._check(texts)
        return [self.vector_for(t) for t in texts]


class InMemorySearchEngine:
    """Exact cosine search over every embedded asset in the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self.calls: list[dict[str, int | bool]] = []

    async def search(
        self,
        query_vector: Sequence[float],
        *,
        limit: int,
        num_candidates: int,
        exclude_reconciled: bool = True,
    ) -> list[SearchHit]:
        self.calls.append(
            {
                "limit": limit,
                "num_candidates": num_candidates,
                "exclude_reconciled": exclude_reconciled,
            }
        )
        stmt = select(CatalogAsset).where(CatalogAsset.text_embedding.is_not(None))
        if exclude_reconciled:
            stmt = stmt.where(CatalogAsset.is_reconciled.is_(False))

        async with self.session_factory() as session:
            assets = list((await session.execute(stmt)).scalars().all())

        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        hits = []
        for asset in assets:
            vector = np.asarray(asset.text_embedding, dtype=np.float64)
            denominator = query_norm * np.linalg.norm(vector)
            cosine = float(query @ vector / denominator) if denominator else 0.0
            hits.append(SearchHit(asset=asset, score=(1.0 + cosine) / 2.0))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite async engine with all tables."""
    test_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def config() -> AssetReconConfig:
    """Default configuration with retries that never sleep."""
    config = AssetReconConfig()
    no_wait = RetryConfig(max_retries=1, base_delay_seconds=0.0, max_delay_seconds=0.0)
    config.job.retry = no_wait
    config.backfill.retry = no_wait
    return config


@pytest.fixture
def search_engine(session_factory: async_sessionmaker[AsyncSession]) -> InMemorySearchEngine:
    return InMemorySearchEngine(session_factory)


@pytest.fixture
def services(
    config: AssetReconConfig,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
    search_engine: InMemorySearchEngine,
) -> Services:
    """Service graph over the test database, fake provider and search engine."""
    return build_services(config, session_factory, provider, search_engine=search_engine)


@pytest.fixture
def app(config: AssetReconConfig, services: Services) -> FastAPI:
    app = create_app(config)
    app.state.services = services
    return app


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for the application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
