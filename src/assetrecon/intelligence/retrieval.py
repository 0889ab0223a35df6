"""Candidate retrieval over catalog embeddings.

The retriever asks a vector search engine for the nearest catalog assets to
a query vector and turns them into ranked ``Suggestion`` snapshots. When a
location filter applies, the engine is asked for a larger pool which is then
narrowed to the location subtree, so the filter does not starve the result.

Scores are cosine similarities mapped onto [0, 1]:
``score = 1 - cosine_distance / 2``.

Example usage:
    >>> engine = PgVectorSearchEngine(database.session_factory)
    >>> retriever = CandidateRetriever(engine, RetrievalConfig())
    >>> suggestions = await retriever.retrieve(vector, build_location_filter("Site A"))
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetrecon.config import RetrievalConfig
from assetrecon.database.models.asset import CatalogAsset
from assetrecon.errors import ValidationError
from assetrecon.intelligence.location import LocationFilter

logger = structlog.get_logger(__name__)

# Upper bound accepted by pgvector for hnsw.ef_search
MAX_EF_SEARCH = 1000


class Suggestion(BaseModel):
    """Immutable snapshot of a catalog asset proposed for a legacy row.

    Attributes:
        asset_id: Catalog asset identifier.
        name: Asset name at retrieval time.
        brand: Brand at retrieval time.
        model: Model at retrieval time.
        epc: External tag identifier.
        location_path: Location at retrieval time.
        file_ext: Attached media extension.
        is_reconciled: Reconciled flag at retrieval time.
        score: Similarity between 0.0 and 1.0.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    asset_id: str
    name: str | None = None
    brand: str | None = None
    model: str | None = None
    epc: str | None = None
    location_path: str | None = None
    file_ext: str | None = None
    is_reconciled: bool = False
    score: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_asset(cls, asset: Any, score: float) -> Suggestion:
        """Snapshot an asset with its similarity score (clamped to [0, 1])."""
        return cls(
            asset_id=str(asset.id),
            name=asset.name,
            brand=asset.brand,
            model=asset.model,
            epc=asset.epc,
            location_path=asset.location_path,
            file_ext=asset.file_ext,
            is_reconciled=bool(asset.is_reconciled),
            score=max(0.0, min(1.0, score)),
        )

    def to_document(self) -> dict[str, Any]:
        """JSON-ready form stored on job rows."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class SearchHit:
    """A catalog asset returned by a vector search engine, with its score."""

    asset: Any
    score: float


class VectorSearchEngine(Protocol):
    """Protocol for nearest-neighbour search over catalog embeddings."""

    async def search(
        self,
        query_vector: Sequence[float],
        *,
        limit: int,
        num_candidates: int,
        exclude_reconciled: bool = True,
    ) -> list[SearchHit]:
        """Return up to ``limit`` hits ranked by descending score."""
        ...


def cosine_distance_to_score(distance: float) -> float:
    """Map a cosine distance in [0, 2] onto a similarity score in [0, 1]."""
    return max(0.0, min(1.0, 1.0 - distance / 2.0))


class PgVectorSearchEngine:
    """Vector search engine backed by pgvector cosine distance.

    Attributes:
        session_factory: Async session factory for database access.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def search(
        self,
        query_vector: Sequence[float],
        *,
        limit: int,
        num_candidates: int,
        exclude_reconciled: bool = True,
    ) -> list[SearchHit]:
        """Find the nearest embedded assets by cosine distance.

        On PostgreSQL the HNSW candidate list (``hnsw.ef_search``) is set to
        ``num_candidates`` for the duration of the query's transaction.

        Args:
            query_vector: Unit-normalized query embedding.
            limit: Maximum hits to return.
            num_candidates: Approximate-search candidate pool size.
            exclude_reconciled: Skip assets already flagged reconciled.

        Returns:
            Hits ordered by descending score.
        """
        vector = list(query_vector)
        distance = CatalogAsset.text_embedding.cosine_distance(vector)

        stmt = (
            select(CatalogAsset, distance.label("distance"))
            .where(CatalogAsset.text_embedding.is_not(None))
        )
        if exclude_reconciled:
            stmt = stmt.where(CatalogAsset.is_reconciled.is_(False))
        stmt = stmt.order_by(distance).limit(limit)

        async with self.session_factory() as session:
            if session.bind is not None and session.bind.dialect.name == "postgresql":
                ef_search = max(1, min(MAX_EF_SEARCH, int(num_candidates)))
                await session.execute(text(f"SET LOCAL hnsw.ef_search = {ef_search}"))
            result = await session.execute(stmt)
            rows = result.all()

        return [
            SearchHit(asset=row[0], score=cosine_distance_to_score(float(row[1])))
            for row in rows
        ]


class CandidateRetriever:
    """Turns query vectors into ranked suggestion snapshots.

    Attributes:
        engine: Vector search engine to query.
        config: Retrieval policy.
    """

    def __init__(self, engine: VectorSearchEngine, config: RetrievalConfig) -> None:
        self.engine = engine
        self.config = config

    def pool_size(self, top_k: int, filtered: bool) -> tuple[int, int]:
        """Compute the engine (limit, num_candidates) for a request.

        Args:
            top_k: Suggestions wanted.
            filtered: Whether a location filter will narrow the results.

        Returns:
            Tuple of result limit and candidate pool size.
        """
        if filtered:
            limit = top_k * self.config.filtered_oversample
            return limit, limit * 4
        return top_k, top_k * self.config.candidate_multiplier

    async def retrieve(
        self,
        query_vector: Sequence[float],
        location_filter: LocationFilter | None = None,
        exclude_reconciled: bool = True,
        top_k: int | None = None,
    ) -> list[Suggestion]:
        """Retrieve the best catalog candidates for a query vector.

        Args:
            query_vector: Unit-normalized query embedding.
            location_filter: Optional subtree restriction.
            exclude_reconciled: Drop assets already flagged reconciled.
            top_k: Suggestions wanted (defaults to the configured top_k).

        Returns:
            At most top_k suggestions, in engine order.

        Raises:
            ValidationError: If top_k is outside 1..max_top_k.
        """
        k = self.config.top_k if top_k is None else top_k
        if k < 1 or k > self.config.max_top_k:
            raise ValidationError(
                f"top_k must be between 1 and {self.config.max_top_k}, got {k}"
            )

        limit, num_candidates = self.pool_size(k, location_filter is not None)
        hits = await self.engine.search(
            query_vector,
            limit=limit,
            num_candidates=num_candidates,
            exclude_reconciled=exclude_reconciled,
        )

        suggestions: list[Suggestion] = []
        for hit in hits:
            if location_filter is not None and not location_filter.matches(
                hit.asset.location_path
            ):
                continue
            if exclude_reconciled and hit.asset.is_reconciled:
                continue
            suggestions.append(Suggestion.from_asset(hit.asset, hit.score))
            if len(suggestions) >= k:
                break

        logger.debug(
            "candidates_retrieved",
            hits=len(hits),
            returned=len(suggestions),
            top_k=k,
            filtered=location_filter is not None,
        )
        return suggestions
