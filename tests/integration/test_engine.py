"""Integration tests for the reconciliation job engine.

Runs the engine against SQLite with the fake embedding provider and the
in-memory cosine search engine. Covers job creation, the per-row pipeline,
snapshot semantics of suggestions, reprocessing, decisions, automatic
reconciliation and the CRUD wrappers.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetrecon.database.models import CatalogAsset
from assetrecon.database.models.job import JobStatus, RowDecision
from assetrecon.database.queries import asset as asset_queries
from assetrecon.database.queries import job as job_queries
from assetrecon.errors import JobStateError, NotFoundError, ValidationError
from assetrecon.services import Services

if TYPE_CHECKING:
    from conftest import FakeEmbeddingProvider, InMemorySearchEngine

CATALOG = {
    "pump": ("Bomba centrifuga", "Grundfos", "CR-10", "Site A/Pump room"),
    "motor": ("Motor electrico", "WEG", "W22", "Site A/Building 2"),
    "panel": ("Tablero electrico", "ABB", "s/m", "Site B"),
    "compressor": ("Compresor de aire", "Atlas Copco", "GA-30", "Site A/Building 20"),
}


@pytest_asyncio.fixture
async def catalog(
    services: Services,
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, UUID]:
    """Seed the catalog and embed every asset."""
    ids: dict[str, UUID] = {}
    async with session_factory() as session:
        for key, (name, brand, model, location) in CATALOG.items():
            asset = await asset_queries.create_asset(
                session, name=name, brand=brand, model=model, location_path=location
            )
            ids[key] = asset.id

    stats = await services.backfill.run()
    assert stats.processed == len(CATALOG)
    return ids


def _rows(*descriptions: str) -> list[dict]:
    return [
        {"rowNumber": n, "sapDescription": d, "sapLocation": "Planta"}
        for n, d in enumerate(descriptions, start=1)
    ]


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_creates_pending_job_without_provider_calls(
        self, services: Services, provider: FakeEmbeddingProvider
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba", "Motor"), "  Site A ")

        view = await services.engine.get_job(created.job_id)
        assert created.total_rows == 2
        assert view.status == JobStatus.pending
        assert view.processed_rows == 0
        assert view.location_filter == "Site A"
        assert [r.row_number for r in view.rows] == [1, 2]
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_blank_location_means_no_filter(self, services: Services) -> None:
        created = await services.engine.create_job(_rows("Bomba"), "   ")
        assert (await services.engine.get_job(created.job_id)).location_filter is None

    @pytest.mark.asyncio
    async def test_rejects_empty_rows(self, services: Services) -> None:
        with pytest.raises(ValidationError):
            await services.engine.create_job([])

    @pytest.mark.asyncio
    async def test_rejects_duplicate_row_numbers(self, services: Services) -> None:
        rows = _rows("Bomba", "Motor")
        rows[1]["rowNumber"] = 1
        with pytest.raises(ValidationError, match="Duplicate rowNumber 1"):
            await services.engine.create_job(rows)

    @pytest.mark.asyncio
    async def test_rejects_malformed_rows(self, services: Services) -> None:
        with pytest.raises(ValidationError, match="Invalid row"):
            await services.engine.create_job([{"rowNumber": "one", "sapDescription": "x"}])

    @pytest.mark.asyncio
    async def test_missing_location_is_empty(self, services: Services) -> None:
        created = await services.engine.create_job([{"rowNumber": 5, "sapDescription": "Bomba"}])
        view = await services.engine.get_job(created.job_id)
        assert view.rows[0].sap_location == ""


class TestProcessJob:
    @pytest.mark.asyncio
    async def test_end_to_end(self, services: Services, catalog: dict[str, UUID]) -> None:
        created = await services.engine.create_job(
            _rows("Bomba centrifuga Grundfos", "   ", "motor electrico WEG")
        )

        result = await services.engine.process_job(created.job_id)

        assert result.status == JobStatus.completed
        assert (result.processed_rows, result.skipped_rows, result.failed_rows) == (2, 1, 0)

        view = await services.engine.get_job(created.job_id)
        assert view.status == JobStatus.completed
        assert view.processed_rows == 2

        pump_row, blank_row, motor_row = view.rows
        assert pump_row.suggestions[0].asset_id == str(catalog["pump"])
        assert pump_row.suggestions[0].name == "Bomba centrifuga"
        assert motor_row.suggestions[0].asset_id == str(catalog["motor"])
        assert blank_row.suggestions == []
        scores = [s.score for s in pump_row.suggestions]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)
        assert len(pump_row.suggestions) <= services.config.retrieval.top_k

    @pytest.mark.asyncio
    async def test_location_filter_limits_candidates(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(_rows("Tablero electrico ABB"), "Site A")

        await services.engine.process_job(created.job_id)

        view = await services.engine.get_job(created.job_id)
        suggestions = view.rows[0].suggestions
        assert suggestions
        assert str(catalog["panel"]) not in {s.asset_id for s in suggestions}
        assert all(
            s.location_path == "Site A" or s.location_path.startswith("Site A/")
            for s in suggestions
        )

    @pytest.mark.asyncio
    async def test_suggestions_are_snapshots(
        self,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: dict[str, UUID],
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba centrifuga"))
        await services.engine.process_job(created.job_id)

        async with session_factory() as session:
            await session.execute(
                update(CatalogAsset)
                .where(CatalogAsset.id == catalog["pump"])
                .values(name="Bomba sumergible", location_path="Site C")
            )
            await session.commit()

        export = await services.engine.export_job(created.job_id)
        best = export.rows[0].suggestions[0]
        assert best.asset_id == str(catalog["pump"])
        assert best.name == "Bomba centrifuga"
        assert best.location_path == "Site A/Pump room"

    @pytest.mark.asyncio
    async def test_completed_job_is_rejected(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba"))
        await services.engine.process_job(created.job_id)

        with pytest.raises(JobStateError):
            await services.engine.process_job(created.job_id)
        with pytest.raises(JobStateError):
            await services.engine.start_processing(created.job_id)

    @pytest.mark.asyncio
    async def test_reprocessing_restarts_from_first_row(
        self,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
        provider: FakeEmbeddingProvider,
        catalog: dict[str, UUID],
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba", "Motor", "Tablero"))
        async with session_factory() as session:
            await job_queries.begin_processing(session, created.job_id)
            await job_queries.increment_processed_rows(session, created.job_id)
            await job_queries.increment_processed_rows(session, created.job_id)
        calls_before = len(provider.calls)

        result = await services.engine.process_job(created.job_id)

        assert result.processed_rows == 3
        assert len(provider.calls) - calls_before == 3
        assert provider.calls[calls_before] == ["Bomba"]
        assert (await services.engine.get_job(created.job_id)).processed_rows == 3

    @pytest.mark.asyncio
    async def test_row_failure_does_not_abort_run(
        self,
        services: Services,
        provider: FakeEmbeddingProvider,
        catalog: dict[str, UUID],
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba", "Motor", "Tablero"))
        provider.failing_texts = {"Motor"}

        result = await services.engine.process_job(created.job_id)

        assert (result.processed_rows, result.failed_rows) == (2, 1)
        view = await services.engine.get_job(created.job_id)
        assert view.status == JobStatus.completed
        assert view.processed_rows == 2
        assert view.rows[1].suggestions == []
        assert view.rows[2].suggestions

    @pytest.mark.asyncio
    async def test_unexpected_row_error_does_not_abort_run(
        self,
        services: Services,
        provider: FakeEmbeddingProvider,
        catalog: dict[str, UUID],
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba", "Motor", "Tablero"))
        embed = provider.embed

        async def disconnect_on_motor(text: str) -> list[float]:
            if text == "Motor":
                raise httpx.RemoteProtocolError("Server disconnected without sending a response.")
            return await embed(text)

        provider.embed = disconnect_on_motor

        result = await services.engine.process_job(created.job_id)

        assert (result.processed_rows, result.failed_rows) == (2, 1)
        view = await services.engine.get_job(created.job_id)
        assert view.status == JobStatus.completed
        assert view.processed_rows == 2
        assert view.rows[1].suggestions == []
        assert view.rows[2].suggestions

    @pytest.mark.asyncio
    async def test_progress_only_moves_forward(
        self,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
        search_engine: InMemorySearchEngine,
        catalog: dict[str, UUID],
    ) -> None:
        created = await services.engine.create_job(
            _rows("Bomba", "Motor", "Tablero", "Compresor")
        )
        observed: list[int] = []
        search = search_engine.search

        async def recording_search(query_vector, **kwargs):
            async with session_factory() as session:
                job = await job_queries.get_job(session, created.job_id)
            observed.append(job.processed_rows)
            return await search(query_vector, **kwargs)

        search_engine.search = recording_search

        await services.engine.process_job(created.job_id)

        assert observed == [0, 1, 2, 3]
        assert (await services.engine.get_job(created.job_id)).processed_rows == 4

    @pytest.mark.asyncio
    async def test_progress_never_passes_total_rows(
        self,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
        search_engine: InMemorySearchEngine,
        catalog: dict[str, UUID],
    ) -> None:
        created = await services.engine.create_job(
            _rows("Bomba", "Motor", "Tablero", "Compresor")
        )
        observed: list[int] = []
        search = search_engine.search

        async def racing_search(query_vector, **kwargs):
            async with session_factory() as session:
                if not observed:
                    # a second run of the same job advancing the shared counter
                    await job_queries.increment_processed_rows(session, created.job_id)
                    await job_queries.increment_processed_rows(session, created.job_id)
                job = await job_queries.get_job(session, created.job_id)
            observed.append(job.processed_rows)
            return await search(query_vector, **kwargs)

        search_engine.search = racing_search

        result = await services.engine.process_job(created.job_id)

        assert result.processed_rows == 4
        assert observed == sorted(observed)
        assert all(value <= 4 for value in observed)
        assert (await services.engine.get_job(created.job_id)).processed_rows == 4

    @pytest.mark.asyncio
    async def test_background_processing(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba", "Motor"))

        ack = await services.engine.start_processing(created.job_id)
        await services.engine.wait_for_processing(created.job_id)

        assert ack.status == JobStatus.processing
        view = await services.engine.get_job(created.job_id)
        assert view.status == JobStatus.completed
        assert view.processed_rows == 2

    @pytest.mark.asyncio
    async def test_drain_waits_for_later_run_of_same_job(
        self, services: Services, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba"))
        gates = {"first": asyncio.Event(), "second": asyncio.Event()}
        order = iter(gates)
        finished: list[str] = []

        async def gated_process(job_id: UUID) -> None:
            name = next(order)
            await gates[name].wait()
            finished.append(name)

        monkeypatch.setattr(services.engine, "process_job", gated_process)
        await services.engine.start_processing(created.job_id)
        await services.engine.start_processing(created.job_id)

        gates["first"].set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert finished == ["first"]

        draining = asyncio.create_task(services.engine.drain())
        for _ in range(5):
            await asyncio.sleep(0)
        assert not draining.done()

        gates["second"].set()
        await draining
        assert finished == ["first", "second"]

    @pytest.mark.asyncio
    async def test_unknown_job(self, services: Services) -> None:
        with pytest.raises(NotFoundError):
            await services.engine.process_job(uuid4())
        with pytest.raises(NotFoundError):
            await services.engine.start_processing(uuid4())


class TestDecisions:
    @pytest_asyncio.fixture
    async def processed_job(self, services: Services, catalog: dict[str, UUID]) -> UUID:
        created = await services.engine.create_job(
            _rows("Bomba centrifuga", "Motor electrico", "Tablero electrico")
        )
        await services.engine.process_job(created.job_id)
        return created.job_id

    @pytest.mark.asyncio
    async def test_match_flags_asset_with_back_reference(
        self,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: dict[str, UUID],
        processed_job: UUID,
    ) -> None:
        await services.engine.set_decision(processed_job, 1, "match", catalog["pump"])

        view = await services.engine.get_job(processed_job)
        row = view.rows[0]
        assert row.decision == RowDecision.match
        assert row.selected_asset_id == catalog["pump"]
        assert row.suggestions
        assert view.decision_counts[RowDecision.match] == 1
        async with session_factory() as session:
            asset = await asset_queries.get_asset(session, catalog["pump"])
        assert asset.is_reconciled is True
        assert asset.reconciled_job_id == processed_job
        assert asset.reconciled_row_number == 1

    @pytest.mark.asyncio
    async def test_reconciled_flag_is_set_once(
        self,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: dict[str, UUID],
        processed_job: UUID,
    ) -> None:
        await services.engine.set_decision(processed_job, 1, RowDecision.match, catalog["pump"])
        other = await services.engine.create_job(_rows("Bomba"))

        await services.engine.set_decision(other.job_id, 1, RowDecision.match, catalog["pump"])

        async with session_factory() as session:
            asset = await asset_queries.get_asset(session, catalog["pump"])
        assert asset.reconciled_job_id == processed_job
        other_view = await services.engine.get_job(other.job_id)
        assert other_view.rows[0].selected_asset_id == catalog["pump"]

    @pytest.mark.asyncio
    async def test_no_match_clears_suggestions(
        self, services: Services, processed_job: UUID
    ) -> None:
        await services.engine.set_decision(processed_job, 2, "no_match")

        row = (await services.engine.get_job(processed_job)).rows[1]
        assert row.decision == RowDecision.no_match
        assert row.suggestions == []
        assert row.selected_asset_id is None

    @pytest.mark.asyncio
    async def test_pending_resets_row(
        self, services: Services, catalog: dict[str, UUID], processed_job: UUID
    ) -> None:
        await services.engine.set_decision(processed_job, 3, "match", catalog["panel"])
        await services.engine.set_decision(processed_job, 3, "pending")

        row = (await services.engine.get_job(processed_job)).rows[2]
        assert row.decision == RowDecision.pending
        assert row.selected_asset_id is None

    @pytest.mark.asyncio
    async def test_decisions_allowed_on_pending_job(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba"))
        await services.engine.set_decision(created.job_id, 1, "match", catalog["pump"])
        view = await services.engine.get_job(created.job_id)
        assert view.status == JobStatus.pending
        assert view.rows[0].decision == RowDecision.match

    @pytest.mark.asyncio
    async def test_invalid_decisions(
        self, services: Services, catalog: dict[str, UUID], processed_job: UUID
    ) -> None:
        with pytest.raises(ValidationError):
            await services.engine.set_decision(processed_job, 1, "match")
        with pytest.raises(ValidationError):
            await services.engine.set_decision(processed_job, 1, "maybe", catalog["pump"])
        with pytest.raises(NotFoundError):
            await services.engine.set_decision(processed_job, 99, "no_match")
        with pytest.raises(NotFoundError):
            await services.engine.set_decision(processed_job, 1, "match", uuid4())
        with pytest.raises(NotFoundError):
            await services.engine.set_decision(uuid4(), 1, "no_match")

    @pytest.mark.asyncio
    async def test_reconciled_assets_leave_later_suggestions(
        self, services: Services, catalog: dict[str, UUID], processed_job: UUID
    ) -> None:
        await services.engine.set_decision(processed_job, 1, "match", catalog["pump"])
        created = await services.engine.create_job(_rows("Bomba centrifuga"))

        await services.engine.process_job(created.job_id)

        suggestions = (await services.engine.get_job(created.job_id)).rows[0].suggestions
        assert str(catalog["pump"]) not in {s.asset_id for s in suggestions}


class TestAutoReconcile:
    @pytest.mark.asyncio
    async def test_no_asset_assigned_twice(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(
            _rows(
                "Bomba centrifuga Grundfos CR-10",
                "Bomba centrifuga Grundfos CR-10",
                "Motor electrico WEG W22",
            )
        )
        await services.engine.process_job(created.job_id)

        result = await services.engine.auto_reconcile(created.job_id, 0.9)

        assert result.auto_matched == 2
        assert result.total_rows == 3
        assigned = [m.asset_id for m in result.matches]
        assert sorted(assigned) == sorted([catalog["pump"], catalog["motor"]])
        view = await services.engine.get_job(created.job_id)
        decisions = [r.decision for r in view.rows]
        assert decisions.count(RowDecision.match) == 2
        assert decisions.count(RowDecision.pending) == 1

        again = await services.engine.auto_reconcile(created.job_id, 0.9)
        assert again.auto_matched == 0

    @pytest.mark.asyncio
    async def test_skips_assets_reconciled_elsewhere(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba centrifuga Grundfos CR-10"))
        await services.engine.process_job(created.job_id)
        other = await services.engine.create_job(_rows("Bomba"))
        await services.engine.set_decision(other.job_id, 1, "match", catalog["pump"])

        result = await services.engine.auto_reconcile(created.job_id, 0.9)

        assert result.auto_matched == 0

    @pytest.mark.asyncio
    async def test_uses_configured_threshold(
        self, services: Services, catalog: dict[str, UUID]
    ) -> None:
        created = await services.engine.create_job(_rows("Bomba centrifuga"))
        await services.engine.process_job(created.job_id)

        default = await services.engine.auto_reconcile(created.job_id)
        lenient = await services.engine.auto_reconcile(created.job_id, 0.7)

        assert default.min_score == 0.9
        assert default.auto_matched == 0
        assert lenient.auto_matched == 1
        assert lenient.matches[0].asset_id == catalog["pump"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("min_score", [-0.1, 1.1])
    async def test_rejects_invalid_threshold(self, services: Services, min_score: float) -> None:
        created = await services.engine.create_job(_rows("Bomba"))
        with pytest.raises(ValidationError):
            await services.engine.auto_reconcile(created.job_id, min_score)


class TestReads:
    @pytest.mark.asyncio
    async def test_page_limits_are_clamped(self, services: Services) -> None:
        created = await services.engine.create_job(_rows(*[f"Item {i}" for i in range(25)]))

        default = await services.engine.get_job(created.job_id)
        smallest = await services.engine.get_job(created.job_id, offset=-5, limit=0)
        largest = await services.engine.get_job(created.job_id, offset=20, limit=1000)

        assert (default.limit, len(default.rows)) == (20, 20)
        assert (smallest.offset, smallest.limit, len(smallest.rows)) == (0, 1, 1)
        assert (largest.limit, len(largest.rows)) == (100, 5)
        assert largest.rows[0].row_number == 21
        assert default.decision_counts[RowDecision.pending] == 25

    @pytest.mark.asyncio
    async def test_export_has_every_row(self, services: Services) -> None:
        created = await services.engine.create_job(_rows(*[f"Item {i}" for i in range(25)]))
        export = await services.engine.export_job(created.job_id)
        assert len(export.rows) == 25

    @pytest.mark.asyncio
    async def test_list_jobs_by_date(self, services: Services) -> None:
        first = await services.engine.create_job(_rows("Bomba"))
        second = await services.engine.create_job(_rows("Motor"))
        today = datetime.now(timezone.utc).date()

        listed = await services.engine.list_jobs(today, today)
        assert [j.job_id for j in listed] == [second.job_id, first.job_id]
        assert await services.engine.list_jobs(to_date=today - timedelta(days=1)) == []
        assert await services.engine.list_jobs(from_date=today + timedelta(days=1)) == []
        assert len(await services.engine.list_jobs()) == 2

    @pytest.mark.asyncio
    async def test_delete_job(self, services: Services) -> None:
        created = await services.engine.create_job(_rows("Bomba"))

        assert (await services.engine.delete_job(created.job_id)).success is True
        with pytest.raises(NotFoundError):
            await services.engine.get_job(created.job_id)
        with pytest.raises(NotFoundError):
            await services.engine.delete_job(created.job_id)
        with pytest.raises(NotFoundError):
            await services.engine.export_job(created.job_id)


class TestSuggest:
    @pytest.mark.asyncio
    async def test_ad_hoc_search(self, services: Services, catalog: dict[str, UUID]) -> None:
        result = await services.engine.suggest("  compresor   de aire ", limit=2)

        assert result.query == "compresor de aire"
        assert len(result.results) == 2
        assert result.results[0].asset_id == str(catalog["compressor"])

    @pytest.mark.asyncio
    async def test_location_filter(self, services: Services, catalog: dict[str, UUID]) -> None:
        result = await services.engine.suggest("compresor de aire", location_filter="Site A/Building 2")
        assert [s.asset_id for s in result.results] == [str(catalog["motor"])]

    @pytest.mark.asyncio
    async def test_blank_description(self, services: Services) -> None:
        with pytest.raises(ValidationError):
            await services.engine.suggest("   ")
