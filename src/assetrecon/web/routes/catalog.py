"""Catalog search and maintenance endpoints for Assetrecon.

Provides ad-hoc semantic search for a single legacy description, the list of
known catalog locations, an embedding diagnostic, and a bounded backfill run
for topping up embeddings from the API.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from assetrecon.database.queries.asset import list_location_paths
from assetrecon.errors import ValidationError
from assetrecon.intelligence.location import build_location_filter
from assetrecon.intelligence.text import normalize_text
from assetrecon.logging import get_logger
from assetrecon.reconciliation.schemas import ApiModel, SuggestRequest, SuggestResult
from assetrecon.services import Services
from assetrecon.web.dependencies import get_services

logger = get_logger(__name__)

PREVIEW_VALUES = 5


class EmbeddingPreviewRequest(BaseModel):
    """Text to embed for inspection."""

    text: str = Field(min_length=1)


class EmbeddingPreview(BaseModel):
    """Shape and leading values of an embedding."""

    text: str
    dimensions: int
    preview: list[float]


class LocationsResponse(BaseModel):
    """Distinct catalog location paths."""

    locations: list[str]


class BackfillRunResult(ApiModel):
    """Counters of a bounded backfill run."""

    processed: int
    skipped: int
    errors: int
    pending_before: int


def create_catalog_router() -> APIRouter:
    """Create the catalog router.

    Routes:
        POST /search/assets - Suggestions for one legacy description
        GET /locations - Distinct catalog location paths, sorted (optionally one subtree)
        POST /embeddings/preview - Embedding dimensions and first values
        POST /catalog/backfill - Embed one batch of pending assets
    """
    router = APIRouter(tags=["catalog"])

    @router.post("/search/assets", response_model=SuggestResult)
    async def search_assets(
        body: SuggestRequest,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> SuggestResult:
        """Suggest catalog assets for a legacy description (reconciled excluded)."""
        return await services.engine.suggest(
            body.sap_description,
            location_filter=body.location_filter,
            limit=body.limit,
        )

    @router.get("/locations", response_model=LocationsResponse)
    async def locations(
        under: str | None = Query(default=None, description="Only list this subtree"),
        services: Services = Depends(get_services),  # noqa: B008
    ) -> LocationsResponse:
        """List the distinct non-empty location paths of the catalog."""
        async with services.session_factory() as session:
            paths = await list_location_paths(session, build_location_filter(under))
        return LocationsResponse(locations=paths)

    @router.post("/embeddings/preview", response_model=EmbeddingPreview)
    async def embedding_preview(
        body: EmbeddingPreviewRequest,
        services: Services = Depends(get_services),  # noqa: B008
    ) -> EmbeddingPreview:
        """Embed a text and report its dimensions and first values."""
        text = normalize_text(body.text)
        if not text:
            raise ValidationError("text may not be blank")
        vector = await services.embedding_service.generate(text)
        return EmbeddingPreview(
            text=text,
            dimensions=len(vector),
            preview=vector[:PREVIEW_VALUES],
        )

    @router.post("/catalog/backfill", response_model=BackfillRunResult)
    async def backfill_batch(
        limit: int = Query(default=20, ge=1, le=500),
        services: Services = Depends(get_services),  # noqa: B008
    ) -> BackfillRunResult:
        """Embed up to ``limit`` pending assets in a single batch."""
        stats = await services.backfill.run(max_batches=1, batch_size=limit)
        logger.info(
            "backfill_batch_via_api",
            processed=stats.processed,
            skipped=stats.skipped,
            errors=stats.errors,
        )
        return BackfillRunResult(
            processed=stats.processed,
            skipped=stats.skipped,
            errors=stats.errors,
            pending_before=stats.total_pending,
        )

    return router
