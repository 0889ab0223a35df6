"""Integration tests for the embedding backfill pipeline.

Tests cover:
- Embedding of every pending asset across batches
- Skipping of assets without a meaningful name
- Idempotence of a second run
- Batch failures counted and passed over, whatever the cause
- Dry runs, batch size capping and progress reporting
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import DataError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetrecon.config import BackfillConfig, RetryConfig
from assetrecon.database.models import CatalogAsset
from assetrecon.database.queries.asset import create_asset
from assetrecon.errors import ValidationError
from assetrecon.intelligence.backfill import (
    BackfillStats,
    EmbeddingBackfillPipeline,
    format_duration,
)
from assetrecon.intelligence.embeddings import EmbeddingService

if TYPE_CHECKING:
    from conftest import FakeEmbeddingProvider


@pytest.fixture
def backfill_config() -> BackfillConfig:
    return BackfillConfig(
        batch_size=2,
        max_batch_size=3,
        embedding_version=2,
        retry=RetryConfig(max_retries=0, base_delay_seconds=0.0, max_delay_seconds=0.0),
    )


@pytest.fixture
def pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
    backfill_config: BackfillConfig,
) -> EmbeddingBackfillPipeline:
    return EmbeddingBackfillPipeline(
        session_factory=session_factory,
        embedding_service=EmbeddingService(provider, backfill_config.retry),
        config=backfill_config,
    )


async def _all_assets(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, CatalogAsset]:
    async with session_factory() as session:
        assets = (await session.execute(select(CatalogAsset))).scalars().all()
    return {asset.serial: asset for asset in assets}


async def _seed(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await create_asset(session, name="Bomba centrifuga", brand="Grundfos", model="CR-10", serial="1")
        await create_asset(session, name="Motor electrico", brand="s/m", model="W22", serial="2")
        await create_asset(session, name="  ", brand="ABB", serial="3")
        await create_asset(session, name="Tablero", brand="n/a", model="-", serial="4")
        await create_asset(session, name="N/A", brand="Siemens", serial="5")


@pytest.mark.asyncio
async def test_run_embeds_and_skips(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
) -> None:
    await _seed(session_factory)

    stats = await pipeline.run()

    assert stats.total_pending == 5
    assert stats.processed == 3
    assert stats.skipped == 2
    assert stats.errors == 0
    assert stats.batches == 3

    assets = await _all_assets(session_factory)
    assert assets["1"].embedding_text == "Bomba centrifuga Grundfos CR-10"
    assert assets["2"].embedding_text == "Motor electrico W22"
    assert assets["4"].embedding_text == "Tablero"
    for serial in ("1", "2", "4"):
        assert assets[serial].text_embedding is not None
        assert assets[serial].embedding_version == 2
        assert assets[serial].embedding_skip_reason is None
    for serial in ("3", "5"):
        assert assets[serial].text_embedding is None
        assert assets[serial].embedding_skip_reason == "missing_name"

    embedded_texts = [text for call in provider.calls for text in call]
    assert sorted(embedded_texts) == sorted(
        ["Bomba centrifuga Grundfos CR-10", "Motor electrico W22", "Tablero"]
    )


@pytest.mark.asyncio
async def test_second_run_writes_nothing(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
) -> None:
    await _seed(session_factory)
    await pipeline.run()
    before = await _all_assets(session_factory)
    calls_before = len(provider.calls)

    stats = await pipeline.run()

    assert stats.total_pending == 0
    assert (stats.processed, stats.skipped, stats.errors, stats.batches) == (0, 0, 0, 0)
    assert len(provider.calls) == calls_before
    after = await _all_assets(session_factory)
    assert {s: a.embedding_updated_at for s, a in after.items()} == {
        s: a.embedding_updated_at for s, a in before.items()
    }


@pytest.mark.asyncio
async def test_failed_batch_is_counted_and_passed_over(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
) -> None:
    async with session_factory() as session:
        await create_asset(session, name="Valvula", serial="1")
        await create_asset(session, name="Rechazado", serial="2")
        await create_asset(session, name="Compresor", serial="3")
    provider.failing_texts = {"Rechazado"}

    stats = await pipeline.run()

    assert stats.errors == 2
    assert stats.processed == 1
    assets = await _all_assets(session_factory)
    assert assets["1"].text_embedding is None
    assert assets["2"].text_embedding is None
    assert assets["3"].text_embedding is not None

    provider.failing_texts = set()
    retry = await pipeline.run()
    assert retry.total_pending == 2
    assert retry.processed == 2
    assert retry.errors == 0


@pytest.mark.asyncio
async def test_unexpected_provider_error_does_not_end_run(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
) -> None:
    async with session_factory() as session:
        await create_asset(session, name="Valvula", serial="1")
        await create_asset(session, name="Bomba", serial="2")
        await create_asset(session, name="Compresor", serial="3")
    embed_batch = provider.embed_batch

    async def disconnect_on_first_batch(texts):
        if "Valvula" in texts:
            raise httpx.RemoteProtocolError("Server disconnected without sending a response.")
        return await embed_batch(texts)

    provider.embed_batch = disconnect_on_first_batch

    stats = await pipeline.run()

    assert (stats.errors, stats.processed, stats.batches) == (2, 1, 2)
    assets = await _all_assets(session_factory)
    assert assets["3"].text_embedding is not None


@pytest.mark.asyncio
async def test_rejected_write_does_not_end_run(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        await create_asset(session, name="Valvula", serial="1")
        await create_asset(session, name="Bomba", serial="2")
        await create_asset(session, name="Compresor", serial="3")
    rejected = DataError(
        "UPDATE catalog_assets", {}, Exception("expected 1536 dimensions, not 768")
    )
    store = AsyncMock(side_effect=[rejected, 1])

    with patch("assetrecon.intelligence.backfill.store_embeddings", store):
        stats = await pipeline.run()

    assert (stats.errors, stats.processed, stats.batches) == (2, 1, 2)
    assert store.await_count == 2


@pytest.mark.asyncio
async def test_dry_run_counts_only(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
    provider: FakeEmbeddingProvider,
) -> None:
    await _seed(session_factory)

    stats = await pipeline.run(dry_run=True)

    assert stats.dry_run is True
    assert stats.total_pending == 5
    assert stats.processed == 0
    assert provider.calls == []
    assert all(a.embedding_skip_reason is None for a in (await _all_assets(session_factory)).values())


@pytest.mark.asyncio
async def test_max_batches_stops_early(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await _seed(session_factory)

    stats = await pipeline.run(max_batches=1)

    assert stats.batches == 1
    assert stats.processed + stats.skipped == 2
    assert (await pipeline.preview()).pending == 3


@pytest.mark.asyncio
async def test_progress_reported_after_each_batch(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await _seed(session_factory)
    seen: list[tuple[int, int]] = []
    pipeline.on_progress = lambda stats: seen.append((stats.batches, stats.processed + stats.skipped))

    await pipeline.run()

    assert seen == [(1, 2), (2, 4), (3, 5)]


@pytest.mark.asyncio
async def test_preview_and_batch_size(
    pipeline: EmbeddingBackfillPipeline,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await _seed(session_factory)

    preview = await pipeline.preview()
    assert (preview.total_assets, preview.pending, preview.batch_size) == (5, 5, 2)
    assert preview.estimated_batches == 3

    assert pipeline.resolve_batch_size(10) == 3
    with pytest.raises(ValidationError):
        pipeline.resolve_batch_size(0)


def test_stats_rate_and_eta() -> None:
    stats = BackfillStats(total_pending=100, processed=40, skipped=10, errors=10, elapsed_seconds=20.0)

    assert stats.remaining == 40
    assert stats.rate == pytest.approx(2.0)
    assert stats.eta_seconds == pytest.approx(20.0)


@pytest.mark.parametrize(
    "seconds,expected",
    [(12, "12s"), (125, "2m 5s"), (3723, "1h 2m 3s")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert format_duration(seconds) == expected
